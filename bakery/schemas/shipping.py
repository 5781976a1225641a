from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from bakery.schemas.base import BaseCreateSchema, BaseResponseSchema
from bakery.schemas.checkout import EstimatedDelivery


class ShippingQuoteRequest(BaseCreateSchema):
    branch_id: UUID
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    order_amount: Decimal = Field(Decimal("0"), ge=0)


class ShippingQuoteResponse(BaseModel):
    branch_id: UUID
    zone: str
    distance_km: Decimal
    effective_distance_km: Decimal
    is_within_range: bool
    base_fee: Decimal
    distance_fee: Decimal
    delivery_fee: Decimal
    free_shipping_applied: bool
    free_shipping_threshold: Optional[Decimal] = None
    estimated_delivery: EstimatedDelivery


class NearestBranchRequest(BaseCreateSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    limit: int = Field(5, ge=1, le=50)


class NearestBranchResponse(BaseModel):
    branch_id: UUID
    name: str
    address: Optional[str] = None
    distance_km: Decimal
    zone: str
    estimated_delivery: EstimatedDelivery


class ZoneResponse(BaseModel):
    id: Optional[UUID] = None
    name: str
    min_distance_km: Decimal
    max_distance_km: Optional[Decimal] = None
    base_price: Decimal
    price_per_km: Decimal
    free_shipping_threshold: Optional[Decimal] = None
    estimated_delivery: EstimatedDelivery


class ZoneListResponse(BaseModel):
    items: List[ZoneResponse]


class ZoneCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=100)
    min_distance_km: Decimal = Field(..., ge=0)
    max_distance_km: Optional[Decimal] = Field(None, gt=0)
    base_price: Decimal = Field(..., ge=0)
    price_per_km: Decimal = Field(Decimal("0"), ge=0)
    free_shipping_threshold: Optional[Decimal] = Field(None, ge=0)
    delivery_time_min_minutes: int = Field(30, ge=0)
    delivery_time_max_minutes: int = Field(60, ge=0)
    sort_order: int = 0
    is_active: bool = True

    @model_validator(mode='after')
    def check_delivery_window(self):
        if self.delivery_time_min_minutes > self.delivery_time_max_minutes:
            raise ValueError("delivery_time_min_minutes cannot exceed delivery_time_max_minutes")
        return self


class ZoneUpdate(BaseCreateSchema):
    """Partial update. Omitted fields keep their stored value."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    min_distance_km: Optional[Decimal] = Field(None, ge=0)
    max_distance_km: Optional[Decimal] = Field(None, gt=0)
    base_price: Optional[Decimal] = Field(None, ge=0)
    price_per_km: Optional[Decimal] = Field(None, ge=0)
    free_shipping_threshold: Optional[Decimal] = Field(None, ge=0)
    delivery_time_min_minutes: Optional[int] = Field(None, ge=0)
    delivery_time_max_minutes: Optional[int] = Field(None, ge=0)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class ZoneRecordResponse(BaseResponseSchema):
    id: UUID
    name: str
    min_distance_km: Decimal
    max_distance_km: Optional[Decimal] = None
    base_price: Decimal
    price_per_km: Decimal
    free_shipping_threshold: Optional[Decimal] = None
    delivery_time_min_minutes: int
    delivery_time_max_minutes: int
    sort_order: int
    is_active: bool


class ZoneRecordListResponse(BaseModel):
    items: List[ZoneRecordResponse]


class BranchZoneOverrideRequest(BaseCreateSchema):
    custom_base_price: Optional[Decimal] = Field(None, ge=0)
    custom_price_per_km: Optional[Decimal] = Field(None, ge=0)
    custom_free_threshold: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode='after')
    def check_any_override(self):
        if (
            self.custom_base_price is None
            and self.custom_price_per_km is None
            and self.custom_free_threshold is None
        ):
            raise ValueError("At least one custom price must be given")
        return self


class BranchZoneOverrideResponse(BaseResponseSchema):
    id: UUID
    branch_id: UUID
    zone_id: UUID
    custom_base_price: Optional[Decimal] = None
    custom_price_per_km: Optional[Decimal] = None
    custom_free_threshold: Optional[Decimal] = None
    is_active: bool
