"""Unit tests for pricing and order assembly.

Tests call assemble_order directly with the db_session fixture.
No HTTP layer involved.
"""

import uuid
from decimal import Decimal

import pytest
from services.orders_service.errors import (
    InfrastructureFault,
    ItemUnavailableError,
    ValidationError,
)
from services.orders_service.models import (
    BranchRef,
    CoffeeRef,
    FulfillmentType,
    Order,
    OrderAuditLog,
    OrderItem,
    OrderStatus,
    PaymentMethod,
)
from services.orders_service.services.assembly import (
    CartLine,
    assemble_order,
    compute_totals,
    price_lines,
)
from services.orders_service.services.catalog import CatalogItem
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError


async def _count(db, model):
    return await db.scalar(select(func.count()).select_from(model))


def _cart(shop):
    return [
        CartLine(item_id=shop.latte_id, quantity=2),
        CartLine(item_id=shop.mocha_id, quantity=1),
    ]


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delivery_order_total_includes_fee(db_session, shop):
    """2 x 3.00 + 1 x 4.50 + 2.00 delivery fee = 12.50."""
    order = await assemble_order(
        db_session,
        customer_id=shop.user_id("customer"),
        branch_id=shop.branch_id,
        fulfillment_type=FulfillmentType.DELIVERY,
        items=_cart(shop),
        delivery_address="12 Bean Street",
        payment_method=PaymentMethod.CASH,
    )

    assert order.status == OrderStatus.CREATED
    assert order.subtotal == Decimal("10.50")
    assert order.delivery_fee == Decimal("2.00")
    assert order.total_amount == Decimal("12.50")
    assert order.preferred_payment_method == PaymentMethod.CASH
    assert [(i.item_name, i.quantity, i.unit_price) for i in order.items] == [
        ("Latte", 2, Decimal("3.00")),
        ("Mocha", 1, Decimal("4.50")),
    ]
    assert order.delivery is None
    assert order.payments == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pickup_order_has_no_fee(db_session, shop):
    order = await assemble_order(
        db_session,
        customer_id=shop.user_id("customer"),
        branch_id=shop.branch_id,
        fulfillment_type="pickup",
        items=_cart(shop),
    )

    assert order.delivery_fee == Decimal("0.00")
    assert order.total_amount == Decimal("10.50")
    assert order.delivery_address is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delivery_fee_can_be_overridden(db_session, shop):
    order = await assemble_order(
        db_session,
        customer_id=shop.user_id("customer"),
        branch_id=shop.branch_id,
        fulfillment_type=FulfillmentType.DELIVERY,
        items=[CartLine(item_id=shop.latte_id, quantity=1)],
        delivery_address="12 Bean Street",
        delivery_fee=Decimal("3.75"),
    )

    assert order.total_amount == Decimal("6.75")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_price_snapshot_survives_catalog_change(db_session, shop):
    """Changing the menu price later does not touch existing line items."""
    order = await assemble_order(
        db_session,
        customer_id=shop.user_id("customer"),
        branch_id=shop.branch_id,
        fulfillment_type=FulfillmentType.PICKUP,
        items=[CartLine(item_id=shop.latte_id, quantity=1)],
    )

    await db_session.execute(
        update(CoffeeRef)
        .where(CoffeeRef.id == shop.latte_id)
        .values(price=Decimal("9.99"))
    )
    await db_session.commit()

    item = await db_session.scalar(
        select(OrderItem).where(OrderItem.order_id == order.id)
    )
    await db_session.refresh(item)
    assert item.unit_price == Decimal("3.00")


@pytest.mark.unit
def test_compute_totals_rounds_half_up():
    catalog = {
        uuid.UUID(int=1): CatalogItem(uuid.UUID(int=1), "Drip", Decimal("1.005"), True)
    }
    lines = price_lines([CartLine(item_id=uuid.UUID(int=1), quantity=3)], catalog)

    subtotal, fee, total = compute_totals(
        lines, FulfillmentType.PICKUP, Decimal("2.00")
    )

    # 1.005 is captured as 1.01
    assert lines[0].unit_price == Decimal("1.01")
    assert subtotal == Decimal("3.03")
    assert fee == Decimal("0.00")
    assert total == Decimal("3.03")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_cart_rejected_without_writes(db_session, shop):
    with pytest.raises(ValidationError, match="Cart is empty"):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=[],
        )

    assert await _count(db_session, Order) == 0
    assert await _count(db_session, OrderItem) == 0


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("address", [None, "", "   "])
async def test_delivery_requires_address(db_session, shop, address):
    with pytest.raises(ValidationError, match="Delivery address required"):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.DELIVERY,
            items=_cart(shop),
            delivery_address=address,
        )

    assert await _count(db_session, Order) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pickup_rejects_address(db_session, shop):
    with pytest.raises(ValidationError, match="Pickup orders"):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=_cart(shop),
            delivery_address="12 Bean Street",
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_zero_quantity_rejected(db_session, shop):
    with pytest.raises(ValidationError, match="at least 1"):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=[CartLine(item_id=shop.latte_id, quantity=0)],
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inactive_branch_rejected(db_session, shop):
    await db_session.execute(
        update(BranchRef)
        .where(BranchRef.id == shop.other_branch_id)
        .values(is_active=False)
    )
    await db_session.commit()

    with pytest.raises(ValidationError, match="Branch"):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.other_branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=_cart(shop),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_branch_rejected(db_session, shop):
    with pytest.raises(ValidationError, match="Branch"):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=uuid.uuid4(),
            fulfillment_type=FulfillmentType.PICKUP,
            items=_cart(shop),
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unavailable_items_named_in_error(db_session, shop):
    missing_id = uuid.uuid4()

    with pytest.raises(ItemUnavailableError) as exc_info:
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=[
                CartLine(item_id=shop.latte_id, quantity=1),
                CartLine(item_id=shop.sold_out_id, quantity=1),
                CartLine(item_id=missing_id, quantity=1),
            ],
        )

    assert set(exc_info.value.item_ids) == {shop.sold_out_id, missing_id}
    assert exc_info.value.to_dict()["code"] == "ITEM_UNAVAILABLE"
    assert await _count(db_session, Order) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_catalog_fault_is_not_unavailability(db_session, shop):
    """A store failure during lookup surfaces as an infrastructure fault."""

    class BrokenCatalog:
        async def get_items(self, db, item_ids):
            raise OperationalError("SELECT", {}, Exception("connection reset"))

    with pytest.raises(InfrastructureFault):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=_cart(shop),
            catalog=BrokenCatalog(),
        )

    assert await _count(db_session, Order) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failure_after_header_write_leaves_nothing(db_session, shop, monkeypatch):
    """Header, items and audit row are written together or not at all."""
    from services.orders_service.services import assembly

    async def _boom(*args, **kwargs):
        raise RuntimeError("audit store down")

    monkeypatch.setattr(assembly, "log_audit", _boom)

    with pytest.raises(RuntimeError):
        await assemble_order(
            db_session,
            customer_id=shop.user_id("customer"),
            branch_id=shop.branch_id,
            fulfillment_type=FulfillmentType.PICKUP,
            items=_cart(shop),
        )

    assert await _count(db_session, Order) == 0
    assert await _count(db_session, OrderItem) == 0
    assert await _count(db_session, OrderAuditLog) == 0
