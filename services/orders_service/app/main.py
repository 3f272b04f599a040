"""FastAPI application for the Orders Service."""
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.orders_service.errors import InfrastructureFault, OrderServiceError
from services.orders_service.services._helpers import STORE_FAULTS
from services.orders_service.routers import (
    deliveries_router,
    orders_router,
    payments_router,
)

logger = get_logger(__name__)


async def order_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def infrastructure_fault_handler(
    request: Request, exc: InfrastructureFault
) -> JSONResponse:
    logger.error(
        "Infrastructure fault on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code, "retryable": True},
        headers={"Retry-After": "1"},
    )


async def store_fault_handler(request: Request, exc: Exception) -> JSONResponse:
    """Driver or pool errors raised outside a unit of work, e.g. on reads."""
    fault = InfrastructureFault("Order store is unavailable, please retry")
    fault.__cause__ = exc
    return await infrastructure_fault_handler(request, fault)


def create_app() -> FastAPI:
    """Create and configure the Orders Service FastAPI app."""
    app = FastAPI(
        title="BrewHub Orders Service",
        version="0.1.0",
        description="Order lifecycle for BrewHub - checkout, fulfillment, delivery and payment.",
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app, service_name="orders")

    add_exception_handlers(app)
    app.add_exception_handler(OrderServiceError, order_error_handler)
    app.add_exception_handler(InfrastructureFault, infrastructure_fault_handler)
    for fault_type in STORE_FAULTS:
        app.add_exception_handler(fault_type, store_fault_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "orders"}

    app.include_router(orders_router)
    app.include_router(deliveries_router)
    app.include_router(payments_router)

    return app


app = create_app()
