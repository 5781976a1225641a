from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from bakery.core.enum_utils import (
    VALID_ORDER_TYPES,
    VALID_PAYMENT_METHODS,
    normalize_to_uppercase,
)
from bakery.models.order import OrderType, PaymentMethod
from bakery.schemas.base import BaseCreateSchema
from bakery.services.inventory_ledger import StockLine
from bakery.services.shipping_engine import Coordinates


# ==================== REQUESTS ====================

class CartItem(BaseCreateSchema):
    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(..., ge=1, le=999)


class DeliveryAddress(BaseCreateSchema):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=500)

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


def merge_cart_items(items: List[CartItem]) -> List[CartItem]:
    """Collapse repeated (product, variant) lines into one, keeping first-seen order."""
    merged: Dict[Tuple[UUID, Optional[UUID]], CartItem] = {}
    for item in items:
        key = (item.product_id, item.variant_id)
        if key in merged:
            merged[key] = merged[key].model_copy(
                update={"quantity": merged[key].quantity + item.quantity}
            )
        else:
            merged[key] = item
    return list(merged.values())


class CheckoutRequest(BaseCreateSchema):
    """Cart + destination + optional branch and promo code."""
    items: List[CartItem] = Field(..., min_length=1, max_length=100)
    order_type: OrderType = OrderType.DELIVERY
    delivery_address: Optional[DeliveryAddress] = None
    branch_id: Optional[UUID] = None
    promo_code: Optional[str] = Field(None, max_length=50)

    @field_validator('order_type', mode='before')
    @classmethod
    def normalize_order_type(cls, v):
        return normalize_to_uppercase(v, VALID_ORDER_TYPES)

    @field_validator('promo_code', mode='before')
    @classmethod
    def normalize_promo_code(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    @field_validator('items')
    @classmethod
    def merge_duplicates(cls, v):
        return merge_cart_items(v)

    @model_validator(mode='after')
    def check_destination(self):
        if self.order_type == OrderType.DELIVERY and self.delivery_address is None:
            raise ValueError("delivery_address is required for delivery orders")
        if self.order_type == OrderType.PICKUP and self.branch_id is None and self.delivery_address is None:
            raise ValueError("Pickup orders need a branch_id or a delivery_address to find the nearest branch")
        return self

    def stock_lines(self) -> List[StockLine]:
        return [
            StockLine(product_id=i.product_id, variant_id=i.variant_id, quantity=i.quantity)
            for i in self.items
        ]

    @property
    def destination(self) -> Optional[Coordinates]:
        return self.delivery_address.coordinates if self.delivery_address else None


class OrderCreateRequest(CheckoutRequest):
    payment_method: PaymentMethod = PaymentMethod.CASH
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=30)
    special_instructions: Optional[str] = Field(None, max_length=1000)

    @field_validator('payment_method', mode='before')
    @classmethod
    def normalize_payment_method(cls, v):
        return normalize_to_uppercase(v, VALID_PAYMENT_METHODS)


class BranchAvailabilityRequest(BaseCreateSchema):
    items: List[CartItem] = Field(..., min_length=1, max_length=100)
    branch_ids: List[UUID] = Field(..., min_length=1, max_length=50)

    @field_validator('items')
    @classmethod
    def merge_duplicates(cls, v):
        return merge_cart_items(v)

    def stock_lines(self) -> List[StockLine]:
        return [
            StockLine(product_id=i.product_id, variant_id=i.variant_id, quantity=i.quantity)
            for i in self.items
        ]


# ==================== RESPONSES ====================

class PricedLineResponse(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class EstimatedDelivery(BaseModel):
    min_minutes: int
    max_minutes: int


class BranchOption(BaseModel):
    branch_id: UUID
    branch_name: str
    distance_km: Decimal


class PriceBreakdownResponse(BaseModel):
    branch_id: UUID
    branch_name: str
    order_type: str
    lines: List[PricedLineResponse]
    subtotal: Decimal
    delivery_fee_original: Decimal
    delivery_fee: Decimal
    discount_amount: Decimal
    shipping_discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    shipping_zone: Optional[str] = None
    distance_km: Optional[Decimal] = None
    is_within_range: bool = True
    free_shipping_applied: bool = False
    estimated_delivery: Optional[EstimatedDelivery] = None
    promo_code: Optional[str] = None
    alternatives: List[BranchOption] = []


class LineAvailabilityResponse(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    requested: int
    available_quantity: int
    status: str


class BranchAvailabilityResponse(BaseModel):
    branch_id: UUID
    status: str
    lines: List[LineAvailabilityResponse]
