"""Request throttling for the BrewHub services (slowapi).

Callers are keyed by user once the bearer token has been decoded, falling
back to client IP. Counters live in Redis when ``REDIS_URL`` is set so every
replica shares them; otherwise each process counts on its own.

Redis storage needs the ``redis`` extra (``pip install .[redis]``).

Decorated endpoints must accept a ``request: Request`` argument.
"""

from functools import lru_cache
from typing import Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Left-most entry is the original client
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def rate_limit_key(request: Request) -> str:
    """Key a request by authenticated user, or by IP before auth has run."""
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{user.user_id}"
    return f"ip:{_client_ip(request)}"


@lru_cache
def get_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=rate_limit_key,
        storage_uri=settings.REDIS_URL or "memory://",
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Answer 429 in the same ``{"detail", "code"}`` shape as business errors."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded: {exc.detail or 'too many requests'}",
            "code": "RATE_LIMIT_EXCEEDED",
        },
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )


def payment_limit(func: Callable) -> Callable:
    """Throttle settlement attempts per payer."""
    return limiter.limit(lambda: get_settings().RATE_LIMIT_PAYMENTS)(func)


def order_action_limit(func: Callable) -> Callable:
    """Throttle status actions on orders and deliveries."""
    return limiter.limit(lambda: get_settings().RATE_LIMIT_ORDER_ACTIONS)(func)
