# Importing this package registers every table with Base.metadata
from bakery.models.branch import Branch
from bakery.models.catalog import Category, Product, ProductVariant
from bakery.models.inventory import BranchInventory
from bakery.models.promotion import DiscountType, PromoCode, PromoCodeUsage
from bakery.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from bakery.models.shipping import ShippingZone, BranchShippingZone
from bakery.models.settings import SystemSetting, CatalogToggleLog

__all__ = [
    "Branch",
    "Category",
    "Product",
    "ProductVariant",
    "BranchInventory",
    "DiscountType",
    "PromoCode",
    "PromoCodeUsage",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "OrderType",
    "PaymentMethod",
    "PaymentStatus",
    "ShippingZone",
    "BranchShippingZone",
    "SystemSetting",
    "CatalogToggleLog",
]
