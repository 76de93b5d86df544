"""Employee, payroll import, payroll run and payroll payment models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
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
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from billing_engine.models.base import Base, TimestampMixin, as_utc


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    PAID_PARTIAL = "PAID_PARTIAL"
    PAID_FULL = "PAID_FULL"


class Employee(Base, TimestampMixin):
    """Payroll employee with optional daily overtime configuration.

    ``overtime_start_time`` is minutes since midnight; work at or after it
    on any civil day is overtime when ``overtime_enabled`` is set.
    """

    __tablename__ = "payroll_employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    default_hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    overtime_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overtime_rate_hourly: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    overtime_start_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "overtime_start_time IS NULL OR (overtime_start_time >= 0 AND overtime_start_time < 1440)",
            name="payroll_employee_overtime_start_check",
        ),
    )


class PayrollImport(Base, TimestampMixin):
    """A batch of imported clock rows."""

    __tablename__ = "payroll_import"

    import_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Relationships
    rows: Mapped[list[PayrollImportRow]] = relationship(
        back_populates="payroll_import",
        cascade="all, delete-orphan",
    )


class PayrollImportRow(Base, TimestampMixin):
    """One raw clock-in/clock-out (or pre-summed minutes) record."""

    __tablename__ = "payroll_import_row"

    row_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    import_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_import.import_id", ondelete="CASCADE"),
        nullable=False,
    )
    linked_employee_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_employee.employee_id"),
        nullable=True,
    )
    employee_name_raw: Mapped[str | None] = mapped_column(String, nullable=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    in_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    out_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    minutes_worked: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Relationships
    payroll_import: Mapped[PayrollImport] = relationship(back_populates="rows")
    linked_employee: Mapped[Employee | None] = relationship()

    @validates("in_time", "out_time")
    def _store_utc(self, key: str, value: datetime | None) -> datetime | None:
        return as_utc(value)


class PayrollRun(Base, TimestampMixin):
    """Payroll run aggregating per-employee totals for a period."""

    __tablename__ = "payroll_run"

    run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PayrollRunStatus.DRAFT.value
    )
    source_import_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_import.import_id"),
        nullable=True,
    )
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'PAID_PARTIAL', 'PAID_FULL')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("period_end >= period_start", name="payroll_run_dates_check"),
    )

    # Relationships
    lines: Mapped[list[PayrollRunLine]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
    )


class PayrollRunLine(Base, TimestampMixin):
    """Per-employee totals and balance within a payroll run."""

    __tablename__ = "payroll_run_line"

    line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_employee.employee_id"),
        nullable=False,
    )
    hourly_rate_used: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    overtime_rate_used: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    regular_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    overtime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    regular_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    overtime_pay: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    amount_owed: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("amount_owed >= 0", name="payroll_run_line_owed_check"),
    )

    # Relationships
    run: Mapped[PayrollRun] = relationship(back_populates="lines")
    employee: Mapped[Employee] = relationship()


class PayrollPayment(Base, TimestampMixin):
    """Append-only payment made to an employee against a run line."""

    __tablename__ = "payroll_payment"

    payment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.run_id"),
        nullable=False,
    )
    line_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run_line.line_id"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_employee.employee_id"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_at: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(String, nullable=False)
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="payroll_payment_amount_positive"),
    )
