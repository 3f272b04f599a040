"""Orders Service models package."""

from services.orders_service.models.delivery import Delivery
from services.orders_service.models.enums import (
    AuditEntityType,
    DeliveryAction,
    DeliveryStatus,
    FulfillmentType,
    OrderAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from services.orders_service.models.order import Order, OrderAuditLog, OrderItem
from services.orders_service.models.payment import Payment
from services.orders_service.models.refs import BranchRef, CoffeeRef, UserRef

__all__ = [
    "AuditEntityType",
    "BranchRef",
    "CoffeeRef",
    "Delivery",
    "DeliveryAction",
    "DeliveryStatus",
    "FulfillmentType",
    "Order",
    "OrderAction",
    "OrderAuditLog",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "UserRef",
]
