"""ORM models for the billing engine."""

from billing_engine.models.base import Base, TimestampMixin
from billing_engine.models.insurance import Insurance, InsuranceRateHistory
from billing_engine.models.invoice import (
    Invoice,
    InvoiceAdjustment,
    InvoiceEntry,
    InvoiceSequence,
    Payment,
)
from billing_engine.models.payroll import (
    Employee,
    PayrollImport,
    PayrollImportRow,
    PayrollPayment,
    PayrollRun,
    PayrollRunLine,
    PayrollRunStatus,
)
from billing_engine.models.timesheet import (
    INVOICEABLE_STATUSES,
    Client,
    Provider,
    Timesheet,
    TimesheetEntry,
    TimesheetStatus,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Insurance",
    "InsuranceRateHistory",
    "Invoice",
    "InvoiceAdjustment",
    "InvoiceEntry",
    "InvoiceSequence",
    "Payment",
    "Employee",
    "PayrollImport",
    "PayrollImportRow",
    "PayrollPayment",
    "PayrollRun",
    "PayrollRunLine",
    "PayrollRunStatus",
    "INVOICEABLE_STATUSES",
    "Client",
    "Provider",
    "Timesheet",
    "TimesheetEntry",
    "TimesheetStatus",
]
