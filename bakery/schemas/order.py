from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from bakery.schemas.base import BaseCreateSchema, BaseResponseSchema


class OrderItemResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderStatusHistoryResponse(BaseResponseSchema):
    from_status: Optional[str] = None
    to_status: str
    notes: Optional[str] = None
    changed_by: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseResponseSchema):
    id: UUID
    order_number: str
    user_id: Optional[str] = None
    branch_id: UUID
    order_type: str
    status: str
    payment_method: str
    payment_status: str

    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    distance_km: Optional[Decimal] = None
    shipping_zone: Optional[str] = None
    special_instructions: Optional[str] = None

    subtotal: Decimal
    delivery_fee_original: Decimal
    delivery_fee: Decimal
    discount_amount: Decimal
    shipping_discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    promo_code: Optional[str] = None

    reservation_expires_at: Optional[datetime] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    items: List[OrderItemResponse] = []
    status_history: List[OrderStatusHistoryResponse] = []


class OrderSummaryResponse(BaseResponseSchema):
    id: UUID
    order_number: str
    branch_id: UUID
    status: str
    payment_status: str
    total_amount: Decimal
    created_at: datetime


class OrderListResponse(BaseModel):
    items: List[OrderSummaryResponse]
    total: int
    skip: int
    limit: int


class OrderCancelRequest(BaseCreateSchema):
    reason: Optional[str] = Field(None, max_length=500)
