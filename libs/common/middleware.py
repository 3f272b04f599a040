"""Request tracing middleware for the BrewHub services.

Every request gets an ``X-Request-ID`` (propagated from the caller when
present) that is attached to all log lines emitted while it is handled.
One summary line is logged per request, tagged with the service name and,
once the bearer token has been decoded, the acting user and role.
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health"})


def _actor_fields(request: Request) -> dict:
    user = getattr(request.state, "user", None)
    if user is None:
        return {}
    return {"actor_id": str(user.user_id), "actor_role": user.role.value}


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, service_name: str):
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get("X-Request-ID"),
            path=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()

        try:
            response = await call_next(request)
            if request.url.path not in QUIET_PATHS:
                # Tracebacks for 5xx are logged by the exception handlers
                level = "info" if response.status_code < 400 else "warning"
                getattr(logger, level)(
                    "%s %s -> %s",
                    request.method,
                    request.url.path,
                    response.status_code,
                    extra={"extra_fields": {
                        "service": self.service_name,
                        "status_code": response.status_code,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        **_actor_fields(request),
                    }},
                )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_request_context()


def add_observability_middleware(app: FastAPI, service_name: str) -> None:
    """Configure logging and install request tracing on ``app``."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware, service_name=service_name)
    logger.info("Request tracing enabled for %s", service_name)
