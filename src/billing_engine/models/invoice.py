"""Invoice, invoice line, payment, adjustment and numbering models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from billing_engine.models.timesheet import Client


class Invoice(Base, TimestampMixin):
    """Client invoice for one billing week.

    ``period_key`` is the ISO date of the Monday starting the billed week.
    Together with ``client_id`` it is unique, so two concurrent generation
    runs cannot both commit an invoice for the same client and week. It is
    cleared on soft delete so the week can be invoiced again.
    """

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id"),
        nullable=False,
    )
    is_bcba: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_key: Mapped[str | None] = mapped_column(String(10), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    adjustments: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    outstanding: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("client_id", "period_key", name="invoice_client_period_unique"),
        CheckConstraint(
            "status IN ('DRAFT', 'READY', 'SENT', 'PARTIALLY_PAID', 'PAID')",
            name="invoice_status_check",
        ),
        CheckConstraint("end_date >= start_date", name="invoice_dates_check"),
    )

    # Relationships
    client: Mapped[Client] = relationship()
    entries: Mapped[list[InvoiceEntry]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceEntry.service_date",
    )
    payments: Mapped[list[Payment]] = relationship(back_populates="invoice")
    adjustment_rows: Mapped[list[InvoiceAdjustment]] = relationship(back_populates="invoice")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def expected_outstanding(self) -> Decimal:
        """Outstanding balance implied by total, adjustments and payments."""
        return self.total_amount + self.adjustments - self.paid_amount


class InvoiceEntry(Base, TimestampMixin):
    """One billable line: all of a timesheet's entries on one service date."""

    __tablename__ = "invoice_entry"

    invoice_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    timesheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheet.timesheet_id"),
        nullable=False,
    )
    provider_id: Mapped[UUID] = mapped_column(
        ForeignKey("provider.provider_id"),
        nullable=False,
    )
    insurance_id: Mapped[UUID] = mapped_column(
        ForeignKey("insurance.insurance_id"),
        nullable=False,
    )
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    units: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    billable_units: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Relationships
    invoice: Mapped[Invoice] = relationship(back_populates="entries")


class Payment(Base, TimestampMixin):
    """Append-only payment received against an invoice."""

    __tablename__ = "payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (CheckConstraint("amount > 0", name="payment_amount_positive"),)

    # Relationships
    invoice: Mapped[Invoice] = relationship(back_populates="payments")


class InvoiceAdjustment(Base, TimestampMixin):
    """Append-only signed adjustment to an invoice balance."""

    __tablename__ = "invoice_adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    # Relationships
    invoice: Mapped[Invoice] = relationship(back_populates="adjustment_rows")


class InvoiceSequence(Base):
    """Per-year invoice number counter (one row per prefix and year)."""

    __tablename__ = "invoice_sequence"

    prefix: Mapped[str] = mapped_column(String(16), primary_key=True)
    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
