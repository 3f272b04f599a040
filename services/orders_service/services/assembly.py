"""Pricing and order assembly: cart in, priced CREATED order out.

All validation happens before the first write. The order header, its line
items and the audit row are then persisted in one transaction, so readers
either see the complete order or nothing.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from libs.auth.models import UserRole
from libs.common.config import get_settings
from libs.common.currency import ZERO, sum_money, to_money
from libs.common.logging import get_logger
from services.orders_service.errors import ItemUnavailableError, ValidationError
from services.orders_service.models import (
    AuditEntityType,
    BranchRef,
    FulfillmentType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    UserRef,
)
from services.orders_service.services._helpers import log_audit, unit_of_work
from services.orders_service.services.catalog import CatalogLookup, default_catalog
from services.orders_service.services.queries import get_order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartLine:
    item_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    item_id: uuid.UUID
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


# ---------------------------------------------------------------------------
# Validation (no I/O)
# ---------------------------------------------------------------------------


def _coerce_fulfillment(value) -> FulfillmentType:
    try:
        return FulfillmentType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown fulfillment type '{value}'. Use delivery or pickup."
        )


def _coerce_payment_method(value) -> Optional[PaymentMethod]:
    if value is None:
        return None
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{value}'")


def validate_cart(
    items: Sequence[CartLine],
    fulfillment_type: FulfillmentType,
    delivery_address: Optional[str],
) -> Optional[str]:
    """Check the request shape and return the normalized delivery address."""
    if not items:
        raise ValidationError("Cart is empty")

    for line in items:
        if not isinstance(line.quantity, int) or line.quantity < 1:
            raise ValidationError(
                f"Quantity for item {line.item_id} must be at least 1"
            )

    address = delivery_address.strip() if delivery_address else None
    if fulfillment_type == FulfillmentType.DELIVERY:
        if not address:
            raise ValidationError("Delivery address required for delivery orders")
        return address

    if address:
        raise ValidationError("Pickup orders must not carry a delivery address")
    return None


def price_lines(items: Sequence[CartLine], catalog_items: dict) -> list[PricedLine]:
    """Snapshot catalog prices onto the cart, rejecting anything not for sale."""
    missing = [
        line.item_id
        for line in items
        if line.item_id not in catalog_items or not catalog_items[line.item_id].available
    ]
    if missing:
        raise ItemUnavailableError(
            "Some items are not available: " + ", ".join(str(i) for i in missing),
            item_ids=missing,
        )

    return [
        PricedLine(
            item_id=line.item_id,
            name=catalog_items[line.item_id].name,
            quantity=line.quantity,
            unit_price=to_money(catalog_items[line.item_id].unit_price),
        )
        for line in items
    ]


def compute_totals(
    lines: Sequence[PricedLine],
    fulfillment_type: FulfillmentType,
    delivery_fee: Decimal,
) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(subtotal, fee, total)``; the fee only applies to deliveries."""
    subtotal = sum_money(line.line_total for line in lines)
    fee = to_money(delivery_fee) if fulfillment_type == FulfillmentType.DELIVERY else ZERO
    return subtotal, fee, to_money(subtotal + fee)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


async def assemble_order(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    branch_id: uuid.UUID,
    fulfillment_type,
    items: Sequence[CartLine],
    delivery_address: Optional[str] = None,
    payment_method=None,
    notes: Optional[str] = None,
    catalog: Optional[CatalogLookup] = None,
    delivery_fee: Optional[Decimal] = None,
) -> Order:
    """Validate a cart, price it and persist a CREATED order atomically."""
    fulfillment_type = _coerce_fulfillment(fulfillment_type)
    payment_method = _coerce_payment_method(payment_method)
    address = validate_cart(items, fulfillment_type, delivery_address)
    if delivery_fee is None:
        delivery_fee = get_settings().DELIVERY_FEE
    catalog = catalog or default_catalog

    async with unit_of_work(db):
        branch = await db.get(BranchRef, branch_id)
        if not branch or not branch.is_active:
            raise ValidationError("Branch not found or not accepting orders")

        customer = await db.scalar(
            select(UserRef).where(UserRef.id == customer_id, UserRef.is_active.is_(True))
        )
        if not customer:
            raise ValidationError("Customer account not found or inactive")
        if customer.role != UserRole.CUSTOMER:
            raise ValidationError("Only customer accounts can place orders")

        catalog_items = await catalog.get_items(db, [line.item_id for line in items])
        lines = price_lines(items, catalog_items)
        subtotal, fee, total = compute_totals(lines, fulfillment_type, delivery_fee)

        order = Order(
            customer_id=customer_id,
            branch_id=branch_id,
            fulfillment_type=fulfillment_type,
            delivery_address=address,
            status=OrderStatus.CREATED,
            subtotal=subtotal,
            delivery_fee=fee,
            total_amount=total,
            preferred_payment_method=payment_method,
            notes=notes,
        )
        db.add(order)
        await db.flush()  # Get order ID

        for position, line in enumerate(lines):
            db.add(
                OrderItem(
                    order_id=order.id,
                    coffee_id=line.item_id,
                    item_name=line.name,
                    position=position,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
            )

        await log_audit(
            db,
            order_id=order.id,
            entity_type=AuditEntityType.ORDER,
            entity_id=order.id,
            action="created",
            performed_by=customer_id,
            to_status=OrderStatus.CREATED,
            details={"total_amount": str(total), "items": len(lines)},
        )
        order_id = order.id

    logger.info(
        "Created %s order %s for customer %s at branch %s (total=%s)",
        fulfillment_type.value,
        order_id,
        customer_id,
        branch_id,
        total,
    )
    return await get_order(db, order_id)
