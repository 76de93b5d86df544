"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from billing_engine.api.routes import (
    billing_router,
    health_router,
    invoices_router,
    payroll_router,
    timesheets_router,
)
from billing_engine.calculators.billing import InvalidRateError
from billing_engine.calculators.rate_resolver import RateNotFoundError
from billing_engine.config import configure_logging, get_settings
from billing_engine.database import dispose_db, init_db
from billing_engine.events import AuditEmitter
from billing_engine.services.invoice_service import InvoiceNotFoundError, LedgerValidationError
from billing_engine.services.overlap_service import EntryValidationError
from billing_engine.services.payroll_service import (
    NoLinkedTimeDataError,
    PayrollRunLineNotFoundError,
)
from billing_engine.services.rate_service import InsuranceNotFoundError
from billing_engine.services.state_machine import InvalidTransitionError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    yield
    # Shutdown
    await dispose_db()


def _error_context(exc: Exception) -> dict[str, Any] | None:
    if isinstance(exc, EntryValidationError):
        return {"problems": exc.problems}
    if isinstance(exc, NoLinkedTimeDataError):
        return {"row_count": exc.row_count, "unlinked_count": exc.unlinked_count}
    if isinstance(exc, InvalidTransitionError):
        return {"from_status": exc.from_status, "to_status": exc.to_status}
    if isinstance(exc, RateNotFoundError):
        return {"insurance_id": str(exc.insurance_id) if exc.insurance_id else None}
    return None


# Domain errors → (HTTP status, error code)
ERROR_MAP: dict[type[Exception], tuple[int, str]] = {
    EntryValidationError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "ENTRY_VALIDATION"),
    RateNotFoundError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "RATE_NOT_FOUND"),
    InvalidRateError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "INVALID_RATE"),
    LedgerValidationError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "LEDGER_VALIDATION"),
    NoLinkedTimeDataError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "NO_LINKED_TIME_DATA"),
    InvalidTransitionError: (status.HTTP_409_CONFLICT, "INVALID_TRANSITION"),
    InvoiceNotFoundError: (status.HTTP_404_NOT_FOUND, "INVOICE_NOT_FOUND"),
    InsuranceNotFoundError: (status.HTTP_404_NOT_FOUND, "INSURANCE_NOT_FOUND"),
    PayrollRunLineNotFoundError: (status.HTTP_404_NOT_FOUND, "PAYROLL_LINE_NOT_FOUND"),
    ValueError: (status.HTTP_400_BAD_REQUEST, "BAD_REQUEST"),
}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Billing Engine API",
        description="Timesheet overlap checks, billing, invoicing and payroll runs",
        version=settings.engine_version,
        lifespan=lifespan,
    )
    app.state.emitter = AuditEmitter()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Map domain errors to structured 4xx responses."""
        status_code, code = next(
            (mapped for cls, mapped in ERROR_MAP.items() if isinstance(exc, cls)),
            (status.HTTP_400_BAD_REQUEST, "BAD_REQUEST"),
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "code": code, "context": _error_context(exc)},
        )

    for exc_class in ERROR_MAP:
        app.add_exception_handler(exc_class, domain_exception_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(timesheets_router, prefix="/api/v1")
    app.include_router(billing_router, prefix="/api/v1")
    app.include_router(invoices_router, prefix="/api/v1")
    app.include_router(payroll_router, prefix="/api/v1")

    return app
