"""Read side of the order store, scoped by who is asking."""

import uuid
from typing import Optional

from libs.auth.models import BRANCH_ROLES, UserRole
from services.orders_service.errors import AuthorizationError, NotFoundError
from services.orders_service.models import (
    Delivery,
    DeliveryStatus,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    UserRef,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload


def _order_options():
    return (
        selectinload(Order.items),
        selectinload(Order.delivery),
        selectinload(Order.payments),
    )


async def get_order(db: AsyncSession, order_id: uuid.UUID) -> Optional[Order]:
    """Load an order with items, delivery and payments, refreshing stale state."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(*_order_options())
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_delivery(db: AsyncSession, delivery_id: uuid.UUID) -> Optional[Delivery]:
    result = await db.execute(
        select(Delivery)
        .where(Delivery.id == delivery_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_actor_branch(db: AsyncSession, actor_id: uuid.UUID) -> Optional[uuid.UUID]:
    """Branch a staff member belongs to, or None for unscoped users."""
    return await db.scalar(select(UserRef.branch_id).where(UserRef.id == actor_id))


# ---------------------------------------------------------------------------
# Single reads with access checks
# ---------------------------------------------------------------------------


async def get_order_for_actor(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    actor_id: uuid.UUID,
    actor_role: UserRole,
) -> Order:
    order = await get_order(db, order_id)
    if not order:
        raise NotFoundError("Order not found")

    if actor_role == UserRole.CUSTOMER and order.customer_id != actor_id:
        raise AuthorizationError("You can only view your own orders")
    if actor_role == UserRole.DELIVERY and (
        not order.delivery or order.delivery.agent_id != actor_id
    ):
        raise AuthorizationError("You can only view orders assigned to you")
    if actor_role in (UserRole.MANAGER, UserRole.STAFF):
        branch_id = await get_actor_branch(db, actor_id)
        if branch_id is not None and branch_id != order.branch_id:
            raise AuthorizationError("Order belongs to another branch")
    return order


async def get_delivery_for_actor(
    db: AsyncSession,
    delivery_id: uuid.UUID,
    *,
    actor_id: uuid.UUID,
    actor_role: UserRole,
) -> Delivery:
    delivery = await get_delivery(db, delivery_id)
    if not delivery:
        raise NotFoundError("Delivery not found")

    if actor_role == UserRole.DELIVERY and delivery.agent_id != actor_id:
        raise AuthorizationError("You can only view deliveries assigned to you")
    if actor_role == UserRole.CUSTOMER:
        customer_id = await db.scalar(
            select(Order.customer_id).where(Order.id == delivery.order_id)
        )
        if customer_id != actor_id:
            raise AuthorizationError("You can only view your own deliveries")
    if actor_role in (UserRole.MANAGER, UserRole.STAFF):
        branch_id = await get_actor_branch(db, actor_id)
        if branch_id is not None and branch_id != delivery.branch_id:
            raise AuthorizationError("Delivery belongs to another branch")
    return delivery


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


async def list_orders(
    db: AsyncSession,
    *,
    actor_id: uuid.UUID,
    actor_role: UserRole,
    status: Optional[OrderStatus] = None,
    branch_id: Optional[uuid.UUID] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """List orders visible to the actor, newest first."""
    query = select(Order)

    if actor_role == UserRole.CUSTOMER:
        query = query.where(Order.customer_id == actor_id)
    elif actor_role == UserRole.DELIVERY:
        query = query.join(Delivery, Delivery.order_id == Order.id).where(
            Delivery.agent_id == actor_id
        )
    elif actor_role in (UserRole.MANAGER, UserRole.STAFF):
        own_branch = await get_actor_branch(db, actor_id)
        if own_branch is not None:
            branch_id = own_branch

    if branch_id is not None and actor_role in BRANCH_ROLES:
        query = query.where(Order.branch_id == branch_id)
    if status is not None:
        query = query.where(Order.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    result = await db.execute(
        query.options(*_order_options())
        .order_by(Order.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def list_deliveries(
    db: AsyncSession,
    *,
    actor_id: uuid.UUID,
    actor_role: UserRole,
    status: Optional[DeliveryStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Delivery]:
    """Agents see their own deliveries; branch staff see their branch."""
    query = select(Delivery)

    if actor_role == UserRole.DELIVERY:
        query = query.where(Delivery.agent_id == actor_id)
    elif actor_role in (UserRole.MANAGER, UserRole.STAFF):
        own_branch = await get_actor_branch(db, actor_id)
        if own_branch is not None:
            query = query.where(Delivery.branch_id == own_branch)
    elif actor_role != UserRole.ADMIN:
        raise AuthorizationError("Customers track deliveries through their orders")

    if status is not None:
        query = query.where(Delivery.status == status)

    result = await db.execute(
        query.order_by(Delivery.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all())


async def list_payments(
    db: AsyncSession,
    *,
    actor_id: uuid.UUID,
    actor_role: UserRole,
    order_id: Optional[uuid.UUID] = None,
    status: Optional[PaymentStatus] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Payment]:
    """Payment attempts, oldest first; customers only see their own orders."""
    query = select(Payment)

    if order_id is not None:
        # Reuses the order access rules
        await get_order_for_actor(
            db, order_id, actor_id=actor_id, actor_role=actor_role
        )
        query = query.where(Payment.order_id == order_id)
    elif actor_role == UserRole.CUSTOMER:
        query = query.join(Order, Order.id == Payment.order_id).where(
            Order.customer_id == actor_id
        )
    elif actor_role != UserRole.ADMIN:
        raise AuthorizationError("Filter payments by order")

    if status is not None:
        query = query.where(Payment.status == status)

    result = await db.execute(
        query.order_by(Payment.created_at).offset(offset).limit(limit)
    )
    return list(result.scalars().all())
