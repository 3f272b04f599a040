"""Error taxonomy for the orders service.

Business errors are expected outcomes and reach the caller as typed,
presentable responses. ``InfrastructureFault`` means the store (or the
settlement step) could not be reached in time; callers may retry it, and it
must never be shown to a customer as if the business had declined.
"""

from typing import Optional


class OrderServiceError(Exception):
    """Base class for every error raised by the orders core."""

    code = "ORDER_ERROR"
    status_code = 400

    def __init__(self, message: str, *, current_status: Optional[str] = None):
        self.message = message
        self.current_status = current_status
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.current_status is not None:
            body["current_status"] = self.current_status
        return body


class ValidationError(OrderServiceError):
    """Malformed or missing input, caught before any write."""

    code = "VALIDATION_ERROR"
    status_code = 400


class ItemUnavailableError(OrderServiceError):
    """A cart item is missing from the catalog or not currently sold."""

    code = "ITEM_UNAVAILABLE"
    status_code = 400

    def __init__(self, message: str, *, item_ids=()):
        self.item_ids = list(item_ids)
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["item_ids"] = [str(item_id) for item_id in self.item_ids]
        return body


class NotFoundError(OrderServiceError):
    code = "NOT_FOUND"
    status_code = 404


class AuthorizationError(OrderServiceError):
    """Actor lacks the role or ownership the action requires."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidTransitionError(OrderServiceError):
    """Action is not legal from the current status (including lost races)."""

    code = "INVALID_TRANSITION"
    status_code = 409


class ConflictError(OrderServiceError):
    """A uniqueness invariant would be violated."""

    code = "CONFLICT"
    status_code = 409


class InfrastructureFault(Exception):
    """Store or network failure. Not a business outcome; propagate for retry."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class SettlementTimeoutError(InfrastructureFault):
    """Settlement did not answer within its deadline; nothing was recorded."""

    code = "SETTLEMENT_TIMEOUT"
    status_code = 504
