"""Order state machine.

The only writer of ``orders.status``. Every legal move is listed in
``TRANSITIONS``; anything missing from the table is rejected before any
role check runs. Delivery-side steps (pickup, completion on the road) are
handed to the delivery coordinator so both rows change together.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.auth.models import BRANCH_ROLES, UserRole
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.orders_service.models import (
    AuditEntityType,
    DeliveryAction,
    FulfillmentType,
    Order,
    OrderAction,
    OrderStatus,
    UserRef,
)
from services.orders_service.services import delivery_ops, settlement
from services.orders_service.services._helpers import (
    log_audit,
    swap_order_status,
    unit_of_work,
)
from services.orders_service.services.queries import get_actor_branch, get_order
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

AGENT_ONLY = frozenset({UserRole.DELIVERY})
CANCEL_ROLES = BRANCH_ROLES | {UserRole.CUSTOMER}


@dataclass(frozen=True)
class Transition:
    target: OrderStatus
    roles: frozenset
    # None means either fulfillment mode
    fulfillment: Optional[FulfillmentType] = None


TRANSITIONS: dict[tuple[OrderStatus, OrderAction], Transition] = {
    (OrderStatus.CREATED, OrderAction.ACCEPT): Transition(
        OrderStatus.ACCEPTED, BRANCH_ROLES
    ),
    (OrderStatus.CREATED, OrderAction.CANCEL): Transition(
        OrderStatus.CANCELLED, CANCEL_ROLES
    ),
    (OrderStatus.ACCEPTED, OrderAction.CANCEL): Transition(
        OrderStatus.CANCELLED, CANCEL_ROLES
    ),
    (OrderStatus.ACCEPTED, OrderAction.ASSIGN): Transition(
        OrderStatus.ASSIGNED, BRANCH_ROLES, FulfillmentType.DELIVERY
    ),
    (OrderStatus.ACCEPTED, OrderAction.COMPLETE): Transition(
        OrderStatus.DELIVERED, BRANCH_ROLES, FulfillmentType.PICKUP
    ),
    (OrderStatus.ASSIGNED, OrderAction.PICKUP): Transition(
        OrderStatus.PICKED_UP, AGENT_ONLY, FulfillmentType.DELIVERY
    ),
    (OrderStatus.PICKED_UP, OrderAction.COMPLETE): Transition(
        OrderStatus.DELIVERED, AGENT_ONLY, FulfillmentType.DELIVERY
    ),
}

# Order actions carried out by the delivery coordinator
DELIVERY_STEPS = {
    OrderAction.PICKUP: DeliveryAction.PICKUP,
    OrderAction.COMPLETE: DeliveryAction.COMPLETE,
}

TIMESTAMPS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.DELIVERED: "delivered_at",
}


def resolve_transition(order: Order, action: OrderAction) -> Transition:
    """Look up the legal move for ``action`` from the order's current status."""
    if order.status.is_terminal:
        raise InvalidTransitionError(
            f"Order is already {order.status.value}",
            current_status=order.status.value,
        )

    transition = TRANSITIONS.get((order.status, action))
    if transition is None:
        raise InvalidTransitionError(
            f"Cannot {action.value} an order that is {order.status.value}",
            current_status=order.status.value,
        )

    if transition.fulfillment and order.fulfillment_type != transition.fulfillment:
        raise InvalidTransitionError(
            f"Cannot {action.value} a {order.fulfillment_type.value} order",
            current_status=order.status.value,
        )
    return transition


async def _authorize(
    db: AsyncSession,
    *,
    order: Order,
    transition: Transition,
    action: OrderAction,
    actor_id: uuid.UUID,
    actor_role: UserRole,
) -> None:
    if actor_role not in transition.roles:
        raise AuthorizationError(
            f"Role {actor_role.value} cannot {action.value} orders"
        )

    if actor_role == UserRole.CUSTOMER:
        if order.customer_id != actor_id:
            raise AuthorizationError("You can only cancel your own orders")
        if (
            order.status == OrderStatus.ACCEPTED
            and not get_settings().CUSTOMER_CAN_CANCEL_ACCEPTED
        ):
            raise AuthorizationError(
                "Order was already accepted; ask the branch to cancel it"
            )
    elif actor_role == UserRole.DELIVERY:
        if not order.delivery or order.delivery.agent_id != actor_id:
            raise AuthorizationError("This order is assigned to another agent")
    elif actor_role in (UserRole.MANAGER, UserRole.STAFF):
        own_branch = await get_actor_branch(db, actor_id)
        if own_branch is not None and own_branch != order.branch_id:
            raise AuthorizationError("Order belongs to another branch")


async def _validate_agent(
    db: AsyncSession, order: Order, agent_id: Optional[uuid.UUID]
) -> None:
    if agent_id is None:
        raise ValidationError("delivery_agent_id is required to assign an order")

    agent = await db.get(UserRef, agent_id)
    if not agent or not agent.is_active:
        raise ValidationError("Delivery agent not found or inactive")
    if agent.role != UserRole.DELIVERY:
        raise ValidationError("Assigned user is not a delivery agent")
    if agent.branch_id is not None and agent.branch_id != order.branch_id:
        raise ValidationError("Delivery agent works for another branch")


async def transition_order(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_role: UserRole,
    action,
    delivery_agent_id: Optional[uuid.UUID] = None,
    reason: Optional[str] = None,
) -> Order:
    """Apply one order action in its own transaction and return the fresh order."""
    try:
        action = OrderAction(action)
    except ValueError:
        raise ValidationError(f"Unknown order action '{action}'")
    if action == OrderAction.DELIVER:
        action = OrderAction.COMPLETE

    async with unit_of_work(db):
        order = await get_order(db, order_id)
        if not order:
            raise NotFoundError("Order not found")

        transition = resolve_transition(order, action)
        await _authorize(
            db,
            order=order,
            transition=transition,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
        )

        from_status = order.status

        if action in DELIVERY_STEPS and order.delivery is not None:
            await delivery_ops.apply_delivery_action(
                db,
                delivery=order.delivery,
                order=order,
                action=DELIVERY_STEPS[action],
                actor_id=actor_id,
                reason=reason,
            )
        else:
            if action == OrderAction.ASSIGN:
                await _validate_agent(db, order, delivery_agent_id)

            values = {}
            if transition.target in TIMESTAMPS:
                values[TIMESTAMPS[transition.target]] = utc_now()
            await swap_order_status(
                db, order, to=transition.target, action=action.value, **values
            )
            await log_audit(
                db,
                order_id=order.id,
                entity_type=AuditEntityType.ORDER,
                entity_id=order.id,
                action=action.value,
                performed_by=actor_id,
                from_status=from_status,
                to_status=transition.target,
                details=(
                    {"delivery_agent_id": str(delivery_agent_id)}
                    if action == OrderAction.ASSIGN
                    else None
                ),
                notes=reason,
            )

            if action == OrderAction.ASSIGN:
                await delivery_ops.create_delivery(
                    db,
                    order=order,
                    agent_id=delivery_agent_id,
                    performed_by=actor_id,
                )
            elif action == OrderAction.CANCEL:
                await settlement.refund_completed_payment(
                    db, order_id=order.id, performed_by=actor_id
                )

    logger.info(
        "Order %s: %s -> %s (%s by %s %s)",
        order_id,
        from_status.value,
        transition.target.value,
        action.value,
        actor_role.value,
        actor_id,
    )
    return await get_order(db, order_id)
