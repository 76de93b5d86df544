"""Invoice lifecycle transitions and the payment/adjustment ledger."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing_engine.calculators.billing import round_to_cents
from billing_engine.events import AuditAction, AuditEmitter, AuditEvent
from billing_engine.models import Invoice, InvoiceAdjustment, Payment
from billing_engine.services.state_machine import (
    InvalidTransitionError,
    InvoiceStateMachine,
    InvoiceStatus,
)

logger = logging.getLogger(__name__)


class InvoiceNotFoundError(Exception):
    """Raised when an invoice does not exist or is soft-deleted."""

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class LedgerValidationError(Exception):
    """Raised for an unusable payment or adjustment."""

    def __init__(self, invoice_id: UUID, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Invoice {invoice_id}: {reason}")


class InvoiceService:
    """Service for invoice status changes and ledger postings.

    Operations run inside the caller's transaction: each locks the invoice
    row, applies its change, and recomputes the balance so that
    ``outstanding == total_amount + adjustments - paid_amount`` holds at
    commit. Audit events are emitted only after that commit.
    """

    def __init__(self, session: AsyncSession, emitter: AuditEmitter | None = None):
        self.session = session
        self.emitter = emitter or AuditEmitter()

    async def get_invoice(self, invoice_id: UUID, load_entries: bool = False) -> Invoice | None:
        """Load a live invoice (soft-deleted invoices are not returned)."""
        stmt = select(Invoice).where(
            Invoice.invoice_id == invoice_id,
            Invoice.deleted_at.is_(None),
        )
        if load_entries:
            stmt = stmt.options(selectinload(Invoice.entries))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_invoice(self, invoice_id: UUID) -> Invoice:
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.invoice_id == invoice_id, Invoice.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    async def approve(self, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        """DRAFT → READY."""
        invoice = await self._lock_invoice(invoice_id)
        InvoiceStateMachine.validate_transition(invoice.status, InvoiceStatus.READY)
        invoice.status = InvoiceStatus.READY.value
        invoice.approved_at = datetime.now(timezone.utc)
        await self.session.flush()
        self._audit(AuditAction.APPROVE, invoice, actor_id, {"status": invoice.status})
        return invoice

    async def send(self, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        """DRAFT/READY → SENT (delivery itself happens elsewhere)."""
        invoice = await self._lock_invoice(invoice_id)
        InvoiceStateMachine.validate_transition(invoice.status, InvoiceStatus.SENT)
        now = datetime.now(timezone.utc)
        if invoice.approved_at is None:
            invoice.approved_at = now
        invoice.status = InvoiceStatus.SENT.value
        invoice.sent_at = now
        await self.session.flush()
        self._audit(AuditAction.SEND, invoice, actor_id, {"status": invoice.status})
        return invoice

    async def soft_delete(self, invoice_id: UUID, actor_id: UUID | None = None) -> Invoice:
        """Soft-delete a DRAFT invoice, freeing its week for regeneration.

        The consumed entries stay flagged invoiced; releasing them is a
        separate repair concern.
        """
        invoice = await self._lock_invoice(invoice_id)
        if not InvoiceStateMachine.can_delete(invoice.status):
            raise InvalidTransitionError(
                invoice.status, "DELETED", "only DRAFT invoices can be deleted"
            )
        invoice.deleted_at = datetime.now(timezone.utc)
        invoice.period_key = None
        await self.session.flush()
        self._audit(AuditAction.DELETE, invoice, actor_id, {})
        return invoice

    async def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        payment_date: date,
        reference_number: str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> Payment:
        """Append a payment and recompute the invoice balance.

        Raises:
            LedgerValidationError: If amount is not positive
            InvoiceNotFoundError: If the invoice does not exist
        """
        amount = round_to_cents(Decimal(amount))
        if amount <= 0:
            raise LedgerValidationError(invoice_id, "payment amount must be positive")

        invoice = await self._lock_invoice(invoice_id)
        payment = Payment(
            invoice_id=invoice.invoice_id,
            amount=amount,
            payment_date=payment_date,
            reference_number=reference_number,
            notes=notes,
            created_by=actor_id,
        )
        self.session.add(payment)
        await self.session.flush()
        await self.recalculate(invoice)

        logger.info(
            "Recorded payment %s on invoice %s; outstanding %s",
            amount,
            invoice.invoice_number,
            invoice.outstanding,
        )
        self._audit(
            AuditAction.PAYMENT,
            invoice,
            actor_id,
            {
                "payment_id": payment.payment_id,
                "amount": amount,
                "outstanding": invoice.outstanding,
                "status": invoice.status,
            },
        )
        return payment

    async def record_adjustment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        reason: str,
        actor_id: UUID | None = None,
    ) -> InvoiceAdjustment:
        """Append a signed adjustment and recompute the invoice balance.

        Raises:
            LedgerValidationError: If amount is zero or reason is blank
            InvoiceNotFoundError: If the invoice does not exist
        """
        amount = round_to_cents(Decimal(amount))
        if amount == 0:
            raise LedgerValidationError(invoice_id, "adjustment amount must be non-zero")
        if not reason or not reason.strip():
            raise LedgerValidationError(invoice_id, "adjustment requires a reason")

        invoice = await self._lock_invoice(invoice_id)
        adjustment = InvoiceAdjustment(
            invoice_id=invoice.invoice_id,
            amount=amount,
            reason=reason.strip(),
            created_by=actor_id,
        )
        self.session.add(adjustment)
        await self.session.flush()
        await self.recalculate(invoice)

        self._audit(
            AuditAction.ADJUSTMENT,
            invoice,
            actor_id,
            {
                "adjustment_id": adjustment.adjustment_id,
                "amount": amount,
                "outstanding": invoice.outstanding,
                "status": invoice.status,
            },
        )
        return adjustment

    async def recalculate(self, invoice: Invoice) -> Invoice:
        """Recompute paid, adjustments, outstanding and status from the ledger."""
        paid = await self.session.scalar(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.invoice_id == invoice.invoice_id
            )
        )
        adjusted = await self.session.scalar(
            select(func.coalesce(func.sum(InvoiceAdjustment.amount), 0)).where(
                InvoiceAdjustment.invoice_id == invoice.invoice_id
            )
        )
        invoice.paid_amount = round_to_cents(Decimal(str(paid)))
        invoice.adjustments = round_to_cents(Decimal(str(adjusted)))
        invoice.outstanding = invoice.expected_outstanding()
        InvoiceStateMachine.apply_balance(invoice)
        await self.session.flush()
        return invoice

    def _audit(
        self,
        action: AuditAction,
        invoice: Invoice,
        actor_id: UUID | None,
        metadata: dict,
    ) -> None:
        self.emitter.emit_after_commit(
            self.session,
            AuditEvent(
                action=action,
                entity_type="invoice",
                entity_id=invoice.invoice_id,
                actor_id=actor_id,
                metadata={"invoice_number": invoice.invoice_number, **metadata},
            ),
        )
