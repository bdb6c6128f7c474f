"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from canteen_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from canteen_ledger.api.v1 import settlement, students, transactions
from canteen_ledger.domain.exceptions import (
    ConcurrencyConflict,
    DomainException,
    JobExecutionError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from canteen_ledger.infrastructure.database.session import SessionLocal
from canteen_ledger.infrastructure.observability.logging import setup_logging
from canteen_ledger.services.scheduler import DailySettlementScheduler
from canteen_ledger.utils.clock import SystemClock
from canteen_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)

ERROR_STATUS = {
    ValidationError: 422,
    OverpaymentError: 422,
    NotFoundError: 404,
    ConcurrencyConflict: 409,
    JobExecutionError: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = DailySettlementScheduler(
            SessionLocal,
            SystemClock(settings.timezone),
            trigger_hour=settings.settlement_trigger_hour,
            tick_seconds=settings.scheduler_tick_seconds,
        )
        scheduler.start()
    yield
    if scheduler is not None:
        await scheduler.stop()


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Map domain errors to HTTP status codes"""
    status_code = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 400)
    log = logging.error if status_code >= 500 else logging.warning
    log(
        f"{type(exc).__name__}: {exc}",
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Canteen Ledger",
        description="Payment, loyalty and account-status engine for the canteen point of sale",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(students.router, prefix="/v1", tags=["students"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(settlement.router, prefix="/v1", tags=["settlement"])

    return app


app = create_app()
