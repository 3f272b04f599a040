"""Payment settlement: record one attempt to pay for an order.

The order row stays locked for the whole attempt, so two payers racing for
the same order settle one after the other and the second finds the first
COMPLETED row. Payment is informational: it never moves the order.
"""

import asyncio
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from libs.auth.models import BRANCH_ROLES, UserRole
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SettlementTimeoutError,
    ValidationError,
)
from services.orders_service.models import (
    AuditEntityType,
    Delivery,
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from services.orders_service.services._helpers import log_audit, unit_of_work
from services.orders_service.services.queries import get_actor_branch
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementOutcome:
    approved: bool
    reason: Optional[str] = None


class SettlementGateway(Protocol):
    async def settle(
        self, *, order_id: uuid.UUID, amount: Decimal, method: PaymentMethod
    ) -> SettlementOutcome: ...


class CashGateway:
    """Cash handed over in person always settles."""

    async def settle(self, *, order_id, amount, method) -> SettlementOutcome:
        return SettlementOutcome(approved=True)


class SimulatedGateway:
    """Stand-in for card, mobile banking and wallet providers.

    Declines anything above the configured limit and can add latency, which
    is enough to exercise decline and timeout handling end to end.
    """

    def __init__(
        self,
        *,
        card_limit: Optional[Decimal] = None,
        delay_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.card_limit = (
            card_limit if card_limit is not None else settings.SETTLEMENT_CARD_LIMIT
        )
        self.delay_seconds = (
            delay_seconds
            if delay_seconds is not None
            else settings.SETTLEMENT_SIMULATED_DELAY_SECONDS
        )

    async def settle(self, *, order_id, amount, method) -> SettlementOutcome:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if amount > self.card_limit:
            return SettlementOutcome(
                approved=False,
                reason=f"Declined: amount exceeds the {method.value} limit",
            )
        return SettlementOutcome(approved=True)


def get_settlement_gateway(method: PaymentMethod) -> SettlementGateway:
    if method == PaymentMethod.CASH:
        return CashGateway()
    return SimulatedGateway()


@dataclass
class SettlementResult:
    success: bool
    payment: Payment
    transaction_id: Optional[str]
    message: str


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


async def _authorize_payer(
    db: AsyncSession,
    *,
    order: Order,
    payer_id: uuid.UUID,
    payer_role: UserRole,
    method: PaymentMethod,
) -> None:
    if payer_role == UserRole.CUSTOMER:
        if order.customer_id != payer_id:
            raise AuthorizationError("You can only pay for your own orders")
        return

    if method == PaymentMethod.WALLET:
        raise AuthorizationError("Wallet payments can only be made by the customer")

    if payer_role in BRANCH_ROLES:
        if payer_role != UserRole.ADMIN:
            own_branch = await get_actor_branch(db, payer_id)
            if own_branch is not None and own_branch != order.branch_id:
                raise AuthorizationError("Order belongs to another branch")
        return

    if payer_role == UserRole.DELIVERY and method == PaymentMethod.CASH:
        agent_id = await db.scalar(
            select(Delivery.agent_id).where(Delivery.order_id == order.id)
        )
        if agent_id == payer_id:
            return

    raise AuthorizationError("Not allowed to record a payment for this order")


async def process_payment(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    payer_id: uuid.UUID,
    payer_role: UserRole,
    method,
    gateway: Optional[SettlementGateway] = None,
    timeout: Optional[float] = None,
) -> SettlementResult:
    """Settle the order total and record the attempt.

    A decline is an ordinary result (``success=False``) with a FAILED row.
    A second attempt after a COMPLETED payment raises ``ConflictError``.
    If settlement does not answer within ``timeout`` the transaction is
    rolled back and ``SettlementTimeoutError`` propagates.
    """
    try:
        method = PaymentMethod(method)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{method}'")
    gateway = gateway or get_settlement_gateway(method)
    if timeout is None:
        timeout = get_settings().SETTLEMENT_TIMEOUT_SECONDS

    async with unit_of_work(db, conflict_message="Payment already completed"):
        order = await db.scalar(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not order:
            raise NotFoundError("Order not found")
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransitionError(
                "Cannot pay for a cancelled order",
                current_status=order.status.value,
            )

        await _authorize_payer(
            db, order=order, payer_id=payer_id, payer_role=payer_role, method=method
        )

        already_paid = await db.scalar(
            select(Payment.id).where(
                Payment.order_id == order.id,
                Payment.status == PaymentStatus.COMPLETED,
            )
        )
        if already_paid:
            raise ConflictError("Payment already completed")

        amount = order.total_amount
        try:
            outcome = await asyncio.wait_for(
                gateway.settle(order_id=order.id, amount=amount, method=method),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Settlement timed out after %ss for order %s (%s)",
                timeout,
                order.id,
                method.value,
            )
            raise SettlementTimeoutError(
                "Payment could not be confirmed in time, please retry"
            )

        payment = Payment(
            order_id=order.id,
            payer_id=payer_id,
            amount=amount,
            method=method,
        )
        if outcome.approved:
            payment.status = PaymentStatus.COMPLETED
            payment.transaction_id = Payment.generate_transaction_id()
            payment.paid_at = utc_now()
        else:
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = outcome.reason or "Declined"
        db.add(payment)
        await db.flush()

        await log_audit(
            db,
            order_id=order.id,
            entity_type=AuditEntityType.PAYMENT,
            entity_id=payment.id,
            action="settled" if outcome.approved else "declined",
            performed_by=payer_id,
            to_status=payment.status,
            details={"amount": str(amount), "method": method.value},
            notes=payment.failure_reason,
        )

    if outcome.approved:
        logger.info(
            "Payment %s completed for order %s: %s via %s (txn %s)",
            payment.id,
            order_id,
            amount,
            method.value,
            payment.transaction_id,
        )
        return SettlementResult(
            success=True,
            payment=payment,
            transaction_id=payment.transaction_id,
            message="Payment completed",
        )

    logger.warning(
        "Payment declined for order %s via %s: %s",
        order_id,
        method.value,
        payment.failure_reason,
    )
    return SettlementResult(
        success=False,
        payment=payment,
        transaction_id=None,
        message=payment.failure_reason,
    )


async def refund_completed_payment(
    db: AsyncSession, *, order_id: uuid.UUID, performed_by: uuid.UUID
) -> Optional[Payment]:
    """Flip the order's COMPLETED payment to REFUNDED, if there is one.

    Only cancellation paths call this, inside their own transaction.
    """
    payment = await db.scalar(
        select(Payment)
        .where(
            Payment.order_id == order_id,
            Payment.status == PaymentStatus.COMPLETED,
        )
        .with_for_update()
    )
    if not payment:
        return None

    payment.status = PaymentStatus.REFUNDED
    payment.refunded_at = utc_now()
    await db.flush()

    await log_audit(
        db,
        order_id=order_id,
        entity_type=AuditEntityType.PAYMENT,
        entity_id=payment.id,
        action="refunded",
        performed_by=performed_by,
        from_status=PaymentStatus.COMPLETED,
        to_status=PaymentStatus.REFUNDED,
        details={"amount": str(payment.amount)},
    )
    logger.info("Refunded payment %s for cancelled order %s", payment.id, order_id)
    return payment
