from fastapi import APIRouter

from bakery.api.v1.endpoints import (
    # Checkout
    orders,
    inventory,
    shipping,
    promos,
    # Administration
    settings,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(orders.router)
api_router.include_router(inventory.router)
api_router.include_router(shipping.router)
api_router.include_router(promos.router)
api_router.include_router(settings.router)
