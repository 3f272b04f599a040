"""Payments router: settle an order and list payment attempts."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import payment_limit
from libs.db.session import get_async_db
from services.orders_service.models import PaymentStatus
from services.orders_service.schemas import (
    PaymentCreate,
    PaymentResponse,
    PaymentResultResponse,
)
from services.orders_service.services.queries import list_payments
from services.orders_service.services.settlement import process_payment
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "",
    response_model=PaymentResultResponse,
    responses={402: {"model": PaymentResultResponse, "description": "Declined"}},
)
@payment_limit
async def create_payment(
    request: Request,
    payload: PaymentCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Settle an order. A declined payment answers 402 with the failed attempt."""
    result = await process_payment(
        db,
        order_id=payload.order_id,
        payer_id=current_user.user_id,
        payer_role=current_user.role,
        method=payload.method,
    )
    body = PaymentResultResponse(
        success=result.success,
        message=result.message,
        transaction_id=result.transaction_id,
        payment=PaymentResponse.model_validate(result.payment),
    )
    if not result.success:
        return JSONResponse(status_code=402, content=body.model_dump(mode="json"))
    return body


@router.get("", response_model=list[PaymentResponse])
async def get_payments(
    order_id: Optional[uuid.UUID] = None,
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await list_payments(
        db,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        order_id=order_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
