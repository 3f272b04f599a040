"""Enum definitions for orders service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class FulfillmentType(str, enum.Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class OrderStatus(str, enum.Enum):
    CREATED = "created"
    ACCEPTED = "accepted"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


class OrderAction(str, enum.Enum):
    ACCEPT = "accept"
    CANCEL = "cancel"
    ASSIGN = "assign"
    PICKUP = "pickup"
    COMPLETE = "complete"
    DELIVER = "deliver"  # alias of complete


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)


class DeliveryAction(str, enum.Enum):
    PICKUP = "pickup"
    IN_TRANSIT = "in_transit"
    COMPLETE = "complete"
    DELIVER = "deliver"  # alias of complete
    FAIL = "fail"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_BANKING = "mobile_banking"
    WALLET = "wallet"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class AuditEntityType(str, enum.Enum):
    ORDER = "order"
    DELIVERY = "delivery"
    PAYMENT = "payment"
