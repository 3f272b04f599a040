"""Orders service routers package."""

from services.orders_service.routers.deliveries import router as deliveries_router
from services.orders_service.routers.orders import router as orders_router
from services.orders_service.routers.payments import router as payments_router

__all__ = [
    "deliveries_router",
    "orders_router",
    "payments_router",
]
