"""Invoice state machine with transition validation."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from billing_engine.models import Invoice


class InvoiceStatus(str, Enum):
    """Invoice status values."""

    DRAFT = "DRAFT"
    READY = "READY"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvoiceStateMachine:
    """State machine for invoice status transitions.

    Allowed transitions:
    - DRAFT → READY (approve)
    - DRAFT/READY → SENT
    - any unpaid status → PARTIALLY_PAID / PAID (payments)
    - PARTIALLY_PAID → PAID
    - PAID → PARTIALLY_PAID (an adjustment re-opens the balance)

    The generator only ever creates DRAFT invoices.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        InvoiceStatus.DRAFT: [
            InvoiceStatus.READY,
            InvoiceStatus.SENT,
            InvoiceStatus.PARTIALLY_PAID,
            InvoiceStatus.PAID,
        ],
        InvoiceStatus.READY: [
            InvoiceStatus.SENT,
            InvoiceStatus.PARTIALLY_PAID,
            InvoiceStatus.PAID,
        ],
        InvoiceStatus.SENT: [InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID],
        InvoiceStatus.PARTIALLY_PAID: [InvoiceStatus.PAID],
        InvoiceStatus.PAID: [InvoiceStatus.PARTIALLY_PAID],
    }

    # Only drafts may be soft-deleted
    DELETABLE = {InvoiceStatus.DRAFT}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_delete(cls, status: str) -> bool:
        return status in cls.DELETABLE

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def status_for_balance(
        cls, current_status: str, paid_amount: Decimal, outstanding: Decimal
    ) -> str:
        """Status implied by the ledger after a payment or adjustment."""
        if paid_amount > 0 and outstanding <= 0:
            return InvoiceStatus.PAID.value
        if paid_amount > 0:
            return InvoiceStatus.PARTIALLY_PAID.value
        return current_status

    @classmethod
    def apply_balance(cls, invoice: Invoice) -> str:
        """Move ``invoice`` to the status its balance implies."""
        target = cls.status_for_balance(invoice.status, invoice.paid_amount, invoice.outstanding)
        if target != invoice.status:
            cls.validate_transition(invoice.status, target)
            invoice.status = target
        return invoice.status
