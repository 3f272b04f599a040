"""Global exception handlers shared by every FastAPI app.

Anything that reaches here unhandled is logged with its traceback and
answered with a generic 500, so internals never leak to clients.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "code": "INTERNAL_ERROR",
            "request_id": get_request_id(),
        },
    )


def add_exception_handlers(app: FastAPI) -> None:
    """Register the catch-all handler on ``app``."""
    app.add_exception_handler(Exception, unhandled_exception_handler)
