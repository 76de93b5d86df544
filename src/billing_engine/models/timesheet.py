"""Provider, client, timesheet and timesheet entry models."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from billing_engine.models.base import Base, TimestampMixin, as_utc

if TYPE_CHECKING:
    from billing_engine.models.insurance import Insurance
    from billing_engine.models.invoice import Invoice


class TimesheetStatus(str, Enum):
    """Timesheet lifecycle status values."""

    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    EMAILED = "EMAILED"


# Statuses eligible for invoicing
INVOICEABLE_STATUSES = (TimesheetStatus.APPROVED.value, TimesheetStatus.EMAILED.value)


class Provider(Base, TimestampMixin):
    """Therapy provider delivering sessions."""

    __tablename__ = "provider"

    provider_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)


class Client(Base, TimestampMixin):
    """Client receiving services, billed through a payer."""

    __tablename__ = "client"

    client_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    insurance_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("insurance.insurance_id"),
        nullable=True,
    )

    # Relationships
    insurance: Mapped[Insurance | None] = relationship()


class Timesheet(Base, TimestampMixin):
    """A provider's timesheet for one client, owning its entries."""

    __tablename__ = "timesheet"

    timesheet_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    provider_id: Mapped[UUID] = mapped_column(
        ForeignKey("provider.provider_id"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id"),
        nullable=False,
    )
    insurance_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("insurance.insurance_id"),
        nullable=True,
    )
    is_bcba: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=TimesheetStatus.DRAFT.value
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Set once, by the invoice generator
    invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=True,
    )
    invoiced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'APPROVED', 'EMAILED')",
            name="timesheet_status_check",
        ),
        CheckConstraint("end_date >= start_date", name="timesheet_dates_check"),
    )

    # Relationships
    provider: Mapped[Provider] = relationship()
    client: Mapped[Client] = relationship()
    insurance: Mapped[Insurance | None] = relationship()
    invoice: Mapped[Invoice | None] = relationship(foreign_keys=[invoice_id])
    entries: Mapped[list[TimesheetEntry]] = relationship(
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetEntry.date",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class TimesheetEntry(Base, TimestampMixin):
    """One worked interval on a timesheet.

    ``date`` is stored as a UTC instant; ``start_time``/``end_time`` are
    day-local ``HH:MM`` clock times. Entries never cross midnight.
    """

    __tablename__ = "timesheet_entry"

    entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheet.timesheet_id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(String(8), nullable=True)
    invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("minutes >= 0", name="timesheet_entry_minutes_check"),
        Index("ix_timesheet_entry_date", "date"),
        Index("ix_timesheet_entry_timesheet", "timesheet_id"),
    )

    # Relationships
    timesheet: Mapped[Timesheet] = relationship(back_populates="entries")

    @validates("date")
    def _store_utc(self, key: str, value: datetime) -> datetime:
        return as_utc(value)
