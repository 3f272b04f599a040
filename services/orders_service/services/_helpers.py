"""Shared helpers for the orders core: transaction boundary, status swaps, audit."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.orders_service.errors import (
    ConflictError,
    InfrastructureFault,
    InvalidTransitionError,
)
from services.orders_service.models import (
    AuditEntityType,
    Delivery,
    DeliveryStatus,
    Order,
    OrderAuditLog,
    OrderStatus,
)
from sqlalchemy import select, update
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

logger = get_logger(__name__)

# Driver and pool failures: the store could not answer, not a business outcome
STORE_FAULTS = (OperationalError, InterfaceError, PoolTimeoutError)


# ---------------------------------------------------------------------------
# Transaction boundary
# ---------------------------------------------------------------------------


async def _rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError:
        # The connection is already gone; the server discards the transaction.
        logger.warning("Rollback failed, connection discarded", exc_info=True)


@asynccontextmanager
async def unit_of_work(
    db: AsyncSession, *, conflict_message: Optional[str] = None
) -> AsyncIterator[AsyncSession]:
    """Run one public operation inside a single transaction.

    Commits when the block finishes, rolls back on any exception (including
    cancellation), so a failed call leaves the store exactly as it found it.

    - ``IntegrityError`` becomes ``ConflictError`` when ``conflict_message``
      is given.
    - Lost connections, pool exhaustion and statement timeouts become
      ``InfrastructureFault``.
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as exc:
        await _rollback(db)
        if conflict_message:
            raise ConflictError(conflict_message) from exc
        raise
    except STORE_FAULTS as exc:
        await _rollback(db)
        logger.error("Order store unavailable: %s", exc.__class__.__name__)
        raise InfrastructureFault("Order store is unavailable, please retry") from exc
    except BaseException:
        await _rollback(db)
        raise


# ---------------------------------------------------------------------------
# Compare-and-swap status writes
# ---------------------------------------------------------------------------


def _label(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


async def swap_order_status(
    db: AsyncSession,
    order: Order,
    *,
    to: OrderStatus,
    action: str,
    **values,
) -> None:
    """Move ``order`` from its loaded status to ``to``, or fail if someone beat us.

    The UPDATE only matches while the row still holds the status we read, so
    of two concurrent transitions from the same state exactly one wins.
    """
    expected = order.status
    now = utc_now()
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == expected)
        .values(status=to, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await db.scalar(select(Order.status).where(Order.id == order.id))
        label = _label(current) if current is not None else "missing"
        logger.warning(
            "Lost race on order %s: %s expected %s, found %s",
            order.id,
            action,
            expected.value,
            label,
        )
        raise InvalidTransitionError(
            f"Cannot {action} order: its status changed to {label} in the meantime",
            current_status=label,
        )

    # Keep the loaded instance in step without scheduling a second UPDATE
    set_committed_value(order, "status", to)
    set_committed_value(order, "updated_at", now)
    for key, value in values.items():
        set_committed_value(order, key, value)


async def swap_delivery_status(
    db: AsyncSession,
    delivery: Delivery,
    *,
    expected: Iterable[DeliveryStatus],
    to: DeliveryStatus,
    action: str,
    **values,
) -> None:
    """Compare-and-swap on the delivery status, same contract as orders."""
    now = utc_now()
    result = await db.execute(
        update(Delivery)
        .where(Delivery.id == delivery.id, Delivery.status.in_(list(expected)))
        .values(status=to, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await db.scalar(
            select(Delivery.status).where(Delivery.id == delivery.id)
        )
        label = _label(current) if current is not None else "missing"
        logger.warning(
            "Lost race on delivery %s: %s found %s", delivery.id, action, label
        )
        raise InvalidTransitionError(
            f"Cannot {action} delivery: its status changed to {label} in the meantime",
            current_status=label,
        )

    set_committed_value(delivery, "status", to)
    set_committed_value(delivery, "updated_at", now)
    for key, value in values.items():
        set_committed_value(delivery, key, value)


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


async def log_audit(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    entity_type: AuditEntityType,
    entity_id: uuid.UUID,
    action: str,
    performed_by: Optional[uuid.UUID],
    from_status=None,
    to_status=None,
    details: Optional[dict] = None,
    notes: Optional[str] = None,
):
    """Log an audit event in the caller's transaction."""
    audit_log = OrderAuditLog(
        order_id=order_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        from_status=_label(from_status) if from_status is not None else None,
        to_status=_label(to_status) if to_status is not None else None,
        performed_by=performed_by,
        details=details,
        notes=notes,
    )
    db.add(audit_log)
