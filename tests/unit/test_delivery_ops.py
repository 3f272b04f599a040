"""Unit tests for the delivery coordinator."""

import uuid

import pytest
from libs.auth.models import UserRole
from services.orders_service.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.orders_service.models import (
    Delivery,
    DeliveryStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from services.orders_service.services import delivery_ops
from services.orders_service.services.delivery_ops import (
    complete_delivery,
    create_delivery,
    fail_delivery,
    mark_in_transit,
    pick_up,
    update_delivery,
)
from services.orders_service.services.queries import get_delivery, get_order
from services.orders_service.services.settlement import process_payment
from services.orders_service.services.state_machine import transition_order
from sqlalchemy import func, select


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _assigned_order(db, shop, place_order):
    """Place, accept and assign an order to ``shop``'s agent."""
    order_id = await place_order()
    staff = shop.actor("staff")
    await transition_order(
        db, order_id=order_id, actor_id=staff.user_id, actor_role=staff.role, action="accept"
    )
    order = await transition_order(
        db,
        order_id=order_id,
        actor_id=staff.user_id,
        actor_role=staff.role,
        action="assign",
        delivery_agent_id=shop.user_id("agent"),
    )
    return order_id, order.delivery.id


async def _statuses(db, order_id, delivery_id):
    order = await get_order(db, order_id)
    delivery = await get_delivery(db, delivery_id)
    return order.status, delivery.status


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pick_up_by_bound_agent(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)

    delivery = await pick_up(
        db_session, delivery_id=delivery_id, actor_id=shop.user_id("agent")
    )

    assert delivery.status == DeliveryStatus.PICKED_UP
    assert delivery.picked_up_at is not None
    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.PICKED_UP,
        DeliveryStatus.PICKED_UP,
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_in_transit_then_complete(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)
    agent_id = shop.user_id("agent")

    await pick_up(db_session, delivery_id=delivery_id, actor_id=agent_id)
    delivery = await mark_in_transit(db_session, delivery_id=delivery_id, actor_id=agent_id)
    assert delivery.status == DeliveryStatus.IN_TRANSIT
    # Order has no in-transit state of its own
    assert (await get_order(db_session, order_id)).status == OrderStatus.PICKED_UP

    delivery = await complete_delivery(
        db_session, delivery_id=delivery_id, actor_id=agent_id
    )

    assert delivery.status == DeliveryStatus.DELIVERED
    order = await get_order(db_session, order_id)
    assert order.status == OrderStatus.DELIVERED
    assert order.delivered_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_deliver_is_an_alias_of_complete(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)
    agent_id = shop.user_id("agent")
    await pick_up(db_session, delivery_id=delivery_id, actor_id=agent_id)

    await update_delivery(
        db_session,
        delivery_id=delivery_id,
        actor_id=agent_id,
        actor_role=UserRole.DELIVERY,
        action="deliver",
    )

    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.DELIVERED,
        DeliveryStatus.DELIVERED,
    )


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pick_up_by_other_agent_rejected(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)

    with pytest.raises(AuthorizationError, match="assigned delivery agent"):
        await pick_up(
            db_session, delivery_id=delivery_id, actor_id=shop.user_id("other_agent")
        )

    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.ASSIGNED,
        DeliveryStatus.PENDING,
    )


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("who", ["staff", "admin", "customer"])
async def test_non_agents_cannot_report_progress(db_session, shop, place_order, who):
    _, delivery_id = await _assigned_order(db_session, shop, place_order)
    actor = shop.actor(who)

    with pytest.raises(AuthorizationError):
        await update_delivery(
            db_session,
            delivery_id=delivery_id,
            actor_id=actor.user_id,
            actor_role=actor.role,
            action="pickup",
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_complete_before_pickup_rejected(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)

    with pytest.raises(InvalidTransitionError, match="pending") as exc_info:
        await complete_delivery(
            db_session, delivery_id=delivery_id, actor_id=shop.user_id("agent")
        )

    assert exc_info.value.current_status == "pending"
    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.ASSIGNED,
        DeliveryStatus.PENDING,
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_finished_delivery_is_terminal(db_session, shop, place_order):
    _, delivery_id = await _assigned_order(db_session, shop, place_order)
    agent_id = shop.user_id("agent")
    await pick_up(db_session, delivery_id=delivery_id, actor_id=agent_id)
    await complete_delivery(db_session, delivery_id=delivery_id, actor_id=agent_id)

    with pytest.raises(InvalidTransitionError, match="already delivered"):
        await fail_delivery(
            db_session,
            delivery_id=delivery_id,
            actor_id=agent_id,
            actor_role=UserRole.DELIVERY,
            reason="Too late",
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_delivery(db_session, shop):
    with pytest.raises(NotFoundError):
        await pick_up(db_session, delivery_id=uuid.uuid4(), actor_id=shop.user_id("agent"))


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_delivery_for_order_conflicts(db_session, shop, place_order):
    order_id, _ = await _assigned_order(db_session, shop, place_order)
    order = await get_order(db_session, order_id)

    with pytest.raises(ConflictError):
        await create_delivery(
            db_session,
            order=order,
            agent_id=shop.user_id("other_agent"),
            performed_by=shop.user_id("staff"),
        )
    await db_session.rollback()

    count = await db_session.scalar(
        select(func.count()).select_from(Delivery).where(Delivery.order_id == order_id)
    )
    assert count == 1


# ---------------------------------------------------------------------------
# Atomicity
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_complete_rolls_back_both_rows_on_failure(
    db_session, shop, place_order, monkeypatch
):
    """A failure between the delivery write and the order write undoes both."""
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)
    agent_id = shop.user_id("agent")
    await pick_up(db_session, delivery_id=delivery_id, actor_id=agent_id)

    async def _crash(*args, **kwargs):
        raise RuntimeError("connection dropped mid-transaction")

    monkeypatch.setattr(delivery_ops, "_sync_order_status", _crash)

    with pytest.raises(RuntimeError):
        await complete_delivery(db_session, delivery_id=delivery_id, actor_id=agent_id)

    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.PICKED_UP,
        DeliveryStatus.PICKED_UP,
    )


# ---------------------------------------------------------------------------
# Failure escape valve
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_delivery_cancels_and_refunds(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)
    agent_id = shop.user_id("agent")
    await pick_up(db_session, delivery_id=delivery_id, actor_id=agent_id)
    result = await process_payment(
        db_session,
        order_id=order_id,
        payer_id=shop.user_id("customer"),
        payer_role=UserRole.CUSTOMER,
        method=PaymentMethod.CARD,
    )
    assert result.success

    delivery = await fail_delivery(
        db_session,
        delivery_id=delivery_id,
        actor_id=agent_id,
        actor_role=UserRole.DELIVERY,
        reason="Customer not at address",
    )

    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.failure_reason == "Customer not at address"
    order = await get_order(db_session, order_id)
    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_at is not None
    assert [p.status for p in order.payments] == [PaymentStatus.REFUNDED]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_manager_can_fail_a_delivery(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)

    await fail_delivery(
        db_session,
        delivery_id=delivery_id,
        actor_id=shop.user_id("manager"),
        actor_role=UserRole.MANAGER,
        reason="Agent called in sick",
    )

    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.CANCELLED,
        DeliveryStatus.FAILED,
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_other_branch_staff_cannot_fail_delivery(db_session, shop, place_order):
    _, delivery_id = await _assigned_order(db_session, shop, place_order)

    with pytest.raises(AuthorizationError, match="another branch"):
        await fail_delivery(
            db_session,
            delivery_id=delivery_id,
            actor_id=shop.user_id("other_staff"),
            actor_role=UserRole.STAFF,
            reason="Not ours",
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fail_requires_reason(db_session, shop, place_order):
    order_id, delivery_id = await _assigned_order(db_session, shop, place_order)

    with pytest.raises(ValidationError, match="reason"):
        await fail_delivery(
            db_session,
            delivery_id=delivery_id,
            actor_id=shop.user_id("agent"),
            actor_role=UserRole.DELIVERY,
            reason="  ",
        )

    assert await _statuses(db_session, order_id, delivery_id) == (
        OrderStatus.ASSIGNED,
        DeliveryStatus.PENDING,
    )
