"""Services for overlap checks, invoicing, ledgers and payroll runs."""

from billing_engine.services.invoice_generator import (
    GenerationSummary,
    GroupOutcome,
    InvoiceGenerator,
    InvoiceIntegrityError,
)
from billing_engine.services.invoice_service import (
    InvoiceNotFoundError,
    InvoiceService,
    LedgerValidationError,
)
from billing_engine.services.overlap_service import EntryValidationError, OverlapDetector
from billing_engine.services.payroll_service import (
    NoLinkedTimeDataError,
    PayrollRunLineNotFoundError,
    PayrollRunResult,
    PayrollRunService,
)
from billing_engine.services.rate_service import InsuranceNotFoundError, RateTableService
from billing_engine.services.sequence_service import InvoiceNumberSequence
from billing_engine.services.state_machine import (
    InvalidTransitionError,
    InvoiceStateMachine,
    InvoiceStatus,
)

__all__ = [
    "EntryValidationError",
    "GenerationSummary",
    "GroupOutcome",
    "InsuranceNotFoundError",
    "InvalidTransitionError",
    "InvoiceGenerator",
    "InvoiceIntegrityError",
    "InvoiceNotFoundError",
    "InvoiceNumberSequence",
    "InvoiceService",
    "InvoiceStateMachine",
    "InvoiceStatus",
    "LedgerValidationError",
    "NoLinkedTimeDataError",
    "OverlapDetector",
    "PayrollRunLineNotFoundError",
    "PayrollRunResult",
    "PayrollRunService",
    "RateTableService",
]
