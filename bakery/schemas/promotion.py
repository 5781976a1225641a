from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from bakery.core.enum_utils import VALID_DISCOUNT_TYPES, normalize_to_uppercase
from bakery.models.promotion import DiscountType
from bakery.schemas.base import BaseCreateSchema, BaseResponseSchema


class PromoValidateRequest(BaseCreateSchema):
    code: str = Field(..., min_length=1, max_length=50)
    order_total: Decimal = Field(..., ge=0)
    delivery_fee: Decimal = Field(Decimal("0"), ge=0)


class PromoValidateResponse(BaseModel):
    valid: bool
    code: str
    discount_type: str
    discount_amount: Decimal
    shipping_discount_amount: Decimal
    final_total: Decimal
    message: str


class PromoCodeCreate(BaseCreateSchema):
    code: str = Field(..., min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator('discount_type', mode='before')
    @classmethod
    def normalize_discount_type(cls, v):
        return normalize_to_uppercase(v, VALID_DISCOUNT_TYPES)

    @field_validator('code')
    @classmethod
    def uppercase_code(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode='after')
    def check_window(self):
        if self.valid_from >= self.valid_until:
            raise ValueError("valid_from must be before valid_until")
        return self


class PromoCodeUpdate(BaseCreateSchema):
    """Partial update. Omitted fields keep their stored value."""
    code: Optional[str] = Field(None, min_length=3, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    user_usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None

    @field_validator('discount_type', mode='before')
    @classmethod
    def normalize_discount_type(cls, v):
        return normalize_to_uppercase(v, VALID_DISCOUNT_TYPES)


class PromoCodeResponse(BaseResponseSchema):
    id: UUID
    code: str
    name: str
    description: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    user_usage_limit: Optional[int] = None
    usage_count: int
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    created_at: datetime


class PromoCodeListResponse(BaseModel):
    items: List[PromoCodeResponse]
    total: int
    skip: int
    limit: int


class PromoUsageResponse(BaseResponseSchema):
    id: UUID
    user_id: Optional[str] = None
    order_id: UUID
    discount_amount: Decimal
    used_at: datetime


class PromoUsageListResponse(BaseModel):
    items: List[PromoUsageResponse]
    total: int
    skip: int
    limit: int
