from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from bakery.schemas.base import BaseCreateSchema, BaseResponseSchema


class StockAvailabilityResponse(BaseModel):
    branch_id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    status: str
    available_quantity: int
    stock_quantity: int
    reserved_quantity: int
    min_stock_level: int
    price_override: Optional[Decimal] = None


class InventoryUpdateRequest(BaseCreateSchema):
    product_id: UUID
    variant_id: Optional[UUID] = None
    stock_quantity: int = Field(..., ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    price_override: Optional[Decimal] = Field(None, ge=0)
    is_available: Optional[bool] = None


class InventoryResponse(BaseResponseSchema):
    id: UUID
    branch_id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    stock_quantity: int
    reserved_quantity: int
    available_quantity: int
    min_stock_level: int
    price_override: Optional[Decimal] = None
    is_available: bool
    updated_at: datetime
