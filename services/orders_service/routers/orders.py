"""Orders router: checkout, order history and status actions."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from libs.auth.dependencies import get_current_user, require_roles
from libs.auth.models import AuthUser, UserRole
from libs.common.rate_limit import order_action_limit
from libs.db.session import get_async_db
from services.orders_service.models import OrderStatus
from services.orders_service.schemas import (
    OrderActionRequest,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
)
from services.orders_service.services.assembly import CartLine, assemble_order
from services.orders_service.services.queries import get_order_for_actor, list_orders
from services.orders_service.services.state_machine import transition_order
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    current_user: AuthUser = Depends(require_roles(UserRole.CUSTOMER)),
    db: AsyncSession = Depends(get_async_db),
):
    """Place an order from the submitted cart."""
    return await assemble_order(
        db,
        customer_id=current_user.user_id,
        branch_id=payload.branch_id,
        fulfillment_type=payload.fulfillment_type,
        items=[CartLine(item_id=i.item_id, quantity=i.quantity) for i in payload.items],
        delivery_address=payload.delivery_address,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )


@router.get("", response_model=OrderListResponse)
async def get_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    branch_id: Optional[uuid.UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the orders the caller is allowed to see, newest first."""
    orders, total = await list_orders(
        db,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        status=status_filter,
        branch_id=branch_id,
        limit=limit,
        offset=offset,
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_detail(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_order_for_actor(
        db, order_id, actor_id=current_user.user_id, actor_role=current_user.role
    )


@router.post("/{order_id}/actions", response_model=OrderResponse)
@order_action_limit
async def apply_order_action(
    request: Request,
    order_id: uuid.UUID,
    payload: OrderActionRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Accept, cancel, assign, pick up or complete an order."""
    return await transition_order(
        db,
        order_id=order_id,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        action=payload.action,
        delivery_agent_id=payload.delivery_agent_id,
        reason=payload.reason,
    )
