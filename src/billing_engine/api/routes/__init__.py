"""API routes."""

from billing_engine.api.routes.billing import router as billing_router
from billing_engine.api.routes.health import router as health_router
from billing_engine.api.routes.invoices import router as invoices_router
from billing_engine.api.routes.payroll import router as payroll_router
from billing_engine.api.routes.timesheets import router as timesheets_router

__all__ = [
    "billing_router",
    "health_router",
    "invoices_router",
    "payroll_router",
    "timesheets_router",
]
