"""Deliveries router: agent status reports and delivery lookups."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import order_action_limit
from libs.db.session import get_async_db
from services.orders_service.models import DeliveryStatus
from services.orders_service.schemas import DeliveryActionRequest, DeliveryResponse
from services.orders_service.services.delivery_ops import update_delivery
from services.orders_service.services.queries import (
    get_delivery_for_actor,
    list_deliveries,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.get("", response_model=list[DeliveryResponse])
async def get_deliveries(
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Agents get their own deliveries, branch staff their branch's."""
    return await list_deliveries(
        db,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        status=status_filter,
        limit=limit,
        offset=offset,
    )


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery_detail(
    delivery_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_delivery_for_actor(
        db, delivery_id, actor_id=current_user.user_id, actor_role=current_user.role
    )


@router.post("/{delivery_id}/actions", response_model=DeliveryResponse)
@order_action_limit
async def apply_delivery_action(
    request: Request,
    delivery_id: uuid.UUID,
    payload: DeliveryActionRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Report pickup, in-transit, delivered or failed."""
    return await update_delivery(
        db,
        delivery_id=delivery_id,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        action=payload.action,
        reason=payload.reason,
    )
