"""Delivery coordinator: agent-driven lifecycle of a delivery-mode order.

A delivery row exists from the moment an order is assigned. Every delivery
step is a compare-and-swap on the delivery status, and the steps that move
the parent order (pickup, completion, failure) change both rows in the same
transaction.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.auth.models import BRANCH_ROLES, UserRole
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.orders_service.models import (
    AuditEntityType,
    Delivery,
    DeliveryAction,
    DeliveryStatus,
    Order,
    OrderStatus,
)
from services.orders_service.services import settlement
from services.orders_service.services._helpers import (
    log_audit,
    swap_delivery_status,
    swap_order_status,
    unit_of_work,
)
from services.orders_service.services.queries import (
    get_actor_branch,
    get_delivery,
    get_order,
)
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryTransition:
    sources: frozenset
    target: DeliveryStatus
    timestamp_field: str
    # Order status the parent must hold for the step, and where it moves
    order_from: Optional[frozenset] = None
    order_to: Optional[OrderStatus] = None


DELIVERY_TRANSITIONS: dict[DeliveryAction, DeliveryTransition] = {
    DeliveryAction.PICKUP: DeliveryTransition(
        sources=frozenset({DeliveryStatus.PENDING}),
        target=DeliveryStatus.PICKED_UP,
        timestamp_field="picked_up_at",
        order_from=frozenset({OrderStatus.ASSIGNED}),
        order_to=OrderStatus.PICKED_UP,
    ),
    DeliveryAction.IN_TRANSIT: DeliveryTransition(
        sources=frozenset({DeliveryStatus.PICKED_UP}),
        target=DeliveryStatus.IN_TRANSIT,
        timestamp_field="in_transit_at",
    ),
    DeliveryAction.COMPLETE: DeliveryTransition(
        sources=frozenset({DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT}),
        target=DeliveryStatus.DELIVERED,
        timestamp_field="delivered_at",
        order_from=frozenset({OrderStatus.PICKED_UP}),
        order_to=OrderStatus.DELIVERED,
    ),
    DeliveryAction.FAIL: DeliveryTransition(
        sources=frozenset(
            {DeliveryStatus.PENDING, DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT}
        ),
        target=DeliveryStatus.FAILED,
        timestamp_field="failed_at",
        order_from=frozenset({OrderStatus.ASSIGNED, OrderStatus.PICKED_UP}),
        order_to=OrderStatus.CANCELLED,
    ),
}

ORDER_TIMESTAMPS = {
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def normalize_action(action) -> DeliveryAction:
    try:
        action = DeliveryAction(action)
    except ValueError:
        raise ValidationError(f"Unknown delivery action '{action}'")
    if action == DeliveryAction.DELIVER:
        return DeliveryAction.COMPLETE
    return action


def check_delivery_transition(
    delivery: Delivery, action: DeliveryAction
) -> DeliveryTransition:
    """Return the rule for ``action`` or raise if the delivery cannot take it."""
    rule = DELIVERY_TRANSITIONS[action]
    if delivery.status.is_terminal:
        raise InvalidTransitionError(
            f"Delivery is already {delivery.status.value}",
            current_status=delivery.status.value,
        )
    if delivery.status not in rule.sources:
        raise InvalidTransitionError(
            f"Cannot {action.value} delivery in status {delivery.status.value}",
            current_status=delivery.status.value,
        )
    return rule


# ---------------------------------------------------------------------------
# Steps running inside the caller's transaction
# ---------------------------------------------------------------------------


async def create_delivery(
    db: AsyncSession,
    *,
    order: Order,
    agent_id: uuid.UUID,
    performed_by: uuid.UUID,
) -> Delivery:
    """Attach the single delivery record to an order being assigned."""
    existing = await db.scalar(select(Delivery.id).where(Delivery.order_id == order.id))
    if existing:
        raise ConflictError("Order already has a delivery")

    now = utc_now()
    delivery = Delivery(
        order_id=order.id,
        branch_id=order.branch_id,
        agent_id=agent_id,
        status=DeliveryStatus.PENDING,
        assigned_at=now,
    )
    db.add(delivery)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("Order already has a delivery") from exc

    await log_audit(
        db,
        order_id=order.id,
        entity_type=AuditEntityType.DELIVERY,
        entity_id=delivery.id,
        action="created",
        performed_by=performed_by,
        to_status=DeliveryStatus.PENDING,
        details={"agent_id": str(agent_id)},
    )
    return delivery


async def _sync_order_status(
    db: AsyncSession,
    *,
    order: Order,
    rule: DeliveryTransition,
    action: DeliveryAction,
    actor_id: uuid.UUID,
    reason: Optional[str] = None,
) -> None:
    if rule.order_to is None:
        return

    if order.status not in rule.order_from:
        raise InvalidTransitionError(
            f"Cannot {action.value} delivery while order is {order.status.value}",
            current_status=order.status.value,
        )

    from_status = order.status
    values = {}
    if rule.order_to in ORDER_TIMESTAMPS:
        values[ORDER_TIMESTAMPS[rule.order_to]] = utc_now()
    await swap_order_status(
        db, order, to=rule.order_to, action=action.value, **values
    )
    await log_audit(
        db,
        order_id=order.id,
        entity_type=AuditEntityType.ORDER,
        entity_id=order.id,
        action=f"delivery_{action.value}",
        performed_by=actor_id,
        from_status=from_status,
        to_status=rule.order_to,
        notes=reason,
    )

    if rule.order_to == OrderStatus.CANCELLED:
        await settlement.refund_completed_payment(
            db, order_id=order.id, performed_by=actor_id
        )


async def apply_delivery_action(
    db: AsyncSession,
    *,
    delivery: Delivery,
    order: Order,
    action,
    actor_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Delivery:
    """Move the delivery (and its order, where the step requires it).

    Authorization is the caller's job. Nothing is committed here.
    """
    action = normalize_action(action)
    rule = check_delivery_transition(delivery, action)

    from_status = delivery.status
    values = {rule.timestamp_field: utc_now()}
    if action == DeliveryAction.FAIL:
        values["failure_reason"] = reason

    await swap_delivery_status(
        db,
        delivery,
        expected=rule.sources,
        to=rule.target,
        action=action.value,
        **values,
    )
    await log_audit(
        db,
        order_id=order.id,
        entity_type=AuditEntityType.DELIVERY,
        entity_id=delivery.id,
        action=action.value,
        performed_by=actor_id,
        from_status=from_status,
        to_status=rule.target,
        notes=reason,
    )
    await _sync_order_status(
        db,
        order=order,
        rule=rule,
        action=action,
        actor_id=actor_id,
        reason=reason,
    )
    return delivery


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


async def _authorize(
    db: AsyncSession,
    *,
    delivery: Delivery,
    action: DeliveryAction,
    actor_id: uuid.UUID,
    actor_role: UserRole,
) -> None:
    is_bound_agent = actor_role == UserRole.DELIVERY and delivery.agent_id == actor_id

    if action != DeliveryAction.FAIL:
        if not is_bound_agent:
            raise AuthorizationError(
                "Only the assigned delivery agent can update this delivery"
            )
        return

    if is_bound_agent:
        return
    if actor_role not in BRANCH_ROLES:
        raise AuthorizationError("Not allowed to fail this delivery")
    if actor_role != UserRole.ADMIN:
        own_branch = await get_actor_branch(db, actor_id)
        if own_branch is not None and own_branch != delivery.branch_id:
            raise AuthorizationError("Delivery belongs to another branch")


async def update_delivery(
    db: AsyncSession,
    *,
    delivery_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_role: UserRole,
    action,
    reason: Optional[str] = None,
) -> Delivery:
    """Apply one agent-reported delivery step in its own transaction."""
    action = normalize_action(action)

    async with unit_of_work(db):
        delivery = await get_delivery(db, delivery_id)
        if not delivery:
            raise NotFoundError("Delivery not found")

        check_delivery_transition(delivery, action)
        await _authorize(
            db,
            delivery=delivery,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
        )
        if action == DeliveryAction.FAIL and not (reason and reason.strip()):
            raise ValidationError("A reason is required to fail a delivery")

        order = await get_order(db, delivery.order_id)
        from_status = delivery.status
        await apply_delivery_action(
            db,
            delivery=delivery,
            order=order,
            action=action,
            actor_id=actor_id,
            reason=reason.strip() if reason else None,
        )

    logger.info(
        "Delivery %s: %s -> %s by %s (order %s now %s)",
        delivery.id,
        from_status.value,
        delivery.status.value,
        actor_id,
        order.id,
        order.status.value,
    )
    return delivery


async def pick_up(
    db: AsyncSession, *, delivery_id: uuid.UUID, actor_id: uuid.UUID
) -> Delivery:
    return await update_delivery(
        db,
        delivery_id=delivery_id,
        actor_id=actor_id,
        actor_role=UserRole.DELIVERY,
        action=DeliveryAction.PICKUP,
    )


async def mark_in_transit(
    db: AsyncSession, *, delivery_id: uuid.UUID, actor_id: uuid.UUID
) -> Delivery:
    return await update_delivery(
        db,
        delivery_id=delivery_id,
        actor_id=actor_id,
        actor_role=UserRole.DELIVERY,
        action=DeliveryAction.IN_TRANSIT,
    )


async def complete_delivery(
    db: AsyncSession, *, delivery_id: uuid.UUID, actor_id: uuid.UUID
) -> Delivery:
    """Mark delivery and order DELIVERED together."""
    return await update_delivery(
        db,
        delivery_id=delivery_id,
        actor_id=actor_id,
        actor_role=UserRole.DELIVERY,
        action=DeliveryAction.COMPLETE,
    )


async def fail_delivery(
    db: AsyncSession,
    *,
    delivery_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_role: UserRole,
    reason: str,
) -> Delivery:
    """Give up on a delivery; the order is cancelled and refunded with it."""
    return await update_delivery(
        db,
        delivery_id=delivery_id,
        actor_id=actor_id,
        actor_role=actor_role,
        action=DeliveryAction.FAIL,
        reason=reason,
    )
