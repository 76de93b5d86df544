"""Payroll run creation from imported clock rows, and payroll payments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing_engine.calculators.billing import round_to_cents
from billing_engine.calculators.overtime import MINUTES_PER_HOUR, aggregate_rows
from billing_engine.calculators.types import (
    EmployeePayProfile,
    OvertimeConfig,
    PayrollAggregate,
    WorkedRow,
)
from billing_engine.config import Settings, get_settings
from billing_engine.events import AuditAction, AuditEmitter, AuditEvent
from billing_engine.models import (
    Employee,
    PayrollImportRow,
    PayrollPayment,
    PayrollRun,
    PayrollRunLine,
    PayrollRunStatus,
)

logger = logging.getLogger(__name__)


class NoLinkedTimeDataError(Exception):
    """Raised when the selected rows contain no time linked to an employee."""

    def __init__(self, import_id: UUID | None, row_count: int, unlinked_count: int):
        self.import_id = import_id
        self.row_count = row_count
        self.unlinked_count = unlinked_count
        super().__init__(
            f"No linked time data to pay: {row_count} row(s) selected, "
            f"{unlinked_count} not linked to an employee"
        )


class PayrollRunLineNotFoundError(Exception):
    """Raised when a payroll run (or its line for an employee) does not exist."""

    def __init__(self, run_id: UUID, employee_id: UUID | None = None, line_id: UUID | None = None):
        self.run_id = run_id
        self.employee_id = employee_id
        self.line_id = line_id
        target = f"line {line_id}" if line_id else f"employee {employee_id}"
        super().__init__(f"Payroll run {run_id} has no {target}")


@dataclass
class PayrollRunResult:
    """A created run with its lines and the row accounting behind it."""

    run: PayrollRun
    lines: list[PayrollRunLine]
    linked_count: int
    unlinked_count: int


class PayrollRunService:
    """Service for payroll runs.

    Operations:
    - build_run: aggregate selected import rows into a run and its lines
    - record_payment: pay an employee's line and update the run status

    Both work in the caller's transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        emitter: AuditEmitter | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.emitter = emitter or AuditEmitter()
        self.settings = settings or get_settings()

    async def get_run(self, run_id: UUID) -> PayrollRun | None:
        result = await self.session.execute(
            select(PayrollRun).where(PayrollRun.run_id == run_id).options(selectinload(PayrollRun.lines))
        )
        return result.scalar_one_or_none()

    async def build_run(
        self,
        name: str,
        period_start: date,
        period_end: date,
        import_id: UUID | None = None,
        row_ids: list[UUID] | None = None,
        rate_overrides: dict[UUID, Decimal] | None = None,
        overtime_rate_overrides: dict[UUID, Decimal] | None = None,
        actor_id: UUID | None = None,
    ) -> PayrollRunResult:
        """Create a payroll run from import rows in ``[period_start, period_end]``.

        Raises:
            NoLinkedTimeDataError: If no selected row is linked to an employee
            ValueError: If the period is inverted or no row source is given
        """
        if period_end < period_start:
            raise ValueError("Payroll period ends before it starts")
        if import_id is None and not row_ids:
            raise ValueError("Select an import or explicit rows to build a run from")

        rows = await self._load_rows(period_start, period_end, import_id, row_ids)
        profiles = await self._load_profiles(rows)
        aggregate = aggregate_rows(
            rows,
            profiles,
            rate_overrides,
            overtime_rate_overrides,
            tz=self.settings.civil_timezone,
        )
        if not aggregate.totals:
            raise NoLinkedTimeDataError(import_id, len(rows), aggregate.unlinked_count)
        if aggregate.unlinked_count:
            logger.warning(
                "Payroll run %s: %d row(s) not linked to an employee were excluded",
                name,
                aggregate.unlinked_count,
            )

        run = PayrollRun(
            name=name,
            period_start=period_start,
            period_end=period_end,
            status=PayrollRunStatus.DRAFT.value,
            source_import_id=import_id,
            created_by=actor_id,
        )
        self.session.add(run)
        await self.session.flush()

        lines = self._build_lines(run, aggregate)
        self.session.add_all(lines)
        await self.session.flush()

        logger.info(
            "Created payroll run %s with %d line(s), gross %s",
            run.run_id,
            len(lines),
            sum((line.gross_pay for line in lines), Decimal("0.00")),
        )
        self.emitter.emit_after_commit(
            self.session,
            AuditEvent(
                action=AuditAction.CREATE,
                entity_type="payroll_run",
                entity_id=run.run_id,
                actor_id=actor_id,
                metadata={
                    "line_count": len(lines),
                    "linked_rows": aggregate.linked_count,
                    "unlinked_rows": aggregate.unlinked_count,
                },
            ),
        )
        return PayrollRunResult(
            run=run,
            lines=lines,
            linked_count=aggregate.linked_count,
            unlinked_count=aggregate.unlinked_count,
        )

    async def _load_rows(
        self,
        period_start: date,
        period_end: date,
        import_id: UUID | None,
        row_ids: list[UUID] | None,
    ) -> list[WorkedRow]:
        stmt = (
            select(PayrollImportRow)
            .where(
                PayrollImportRow.work_date >= period_start,
                PayrollImportRow.work_date <= period_end,
            )
            .order_by(PayrollImportRow.work_date, PayrollImportRow.row_id)
        )
        if import_id is not None:
            stmt = stmt.where(PayrollImportRow.import_id == import_id)
        if row_ids:
            stmt = stmt.where(PayrollImportRow.row_id.in_(row_ids))

        result = await self.session.execute(stmt)
        return [
            WorkedRow(
                row_id=row.row_id,
                employee_id=row.linked_employee_id,
                work_date=row.work_date,
                in_time=row.in_time,
                out_time=row.out_time,
                minutes_worked=row.minutes_worked,
            )
            for row in result.scalars().all()
        ]

    async def _load_profiles(self, rows: list[WorkedRow]) -> dict[UUID, EmployeePayProfile]:
        employee_ids = {row.employee_id for row in rows if row.employee_id is not None}
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(Employee).where(Employee.employee_id.in_(employee_ids))
        )
        return {
            employee.employee_id: EmployeePayProfile(
                employee_id=employee.employee_id,
                hourly_rate=employee.default_hourly_rate,
                overtime=OvertimeConfig(
                    enabled=employee.overtime_enabled,
                    start_minute=employee.overtime_start_time,
                    rate_hourly=employee.overtime_rate_hourly,
                ),
            )
            for employee in result.scalars().all()
        }

    @staticmethod
    def _build_lines(run: PayrollRun, aggregate: PayrollAggregate) -> list[PayrollRunLine]:
        lines = []
        for employee_id in sorted(aggregate.totals, key=str):
            totals = aggregate.totals[employee_id]
            gross = totals.gross_pay
            lines.append(
                PayrollRunLine(
                    run_id=run.run_id,
                    employee_id=employee_id,
                    hourly_rate_used=totals.hourly_rate,
                    overtime_rate_used=totals.overtime_rate,
                    total_minutes=totals.total_minutes,
                    regular_minutes=totals.regular_minutes,
                    overtime_minutes=totals.overtime_minutes,
                    total_hours=round_to_cents(Decimal(totals.total_minutes) / MINUTES_PER_HOUR),
                    regular_pay=totals.regular_pay,
                    overtime_pay=totals.overtime_pay,
                    gross_pay=gross,
                    amount_paid=Decimal("0.00"),
                    amount_owed=gross,
                )
            )
        return lines

    async def record_payment(
        self,
        run_id: UUID,
        amount: Decimal,
        paid_at: date,
        method: str,
        employee_id: UUID | None = None,
        line_id: UUID | None = None,
        reference: str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> PayrollPayment:
        """Record a payment against an employee's line.

        ``amount_owed`` never goes below zero; overpayment is kept in
        ``amount_paid``.

        Raises:
            PayrollRunLineNotFoundError: If the run has no matching line
            ValueError: If amount is not positive or no line is identified
        """
        amount = round_to_cents(Decimal(amount))
        if amount <= 0:
            raise ValueError("Payment amount must be positive")
        if employee_id is None and line_id is None:
            raise ValueError("Identify the line by employee_id or line_id")

        stmt = select(PayrollRunLine).where(PayrollRunLine.run_id == run_id)
        if line_id is not None:
            stmt = stmt.where(PayrollRunLine.line_id == line_id)
        else:
            stmt = stmt.where(PayrollRunLine.employee_id == employee_id)
        result = await self.session.execute(
            stmt.with_for_update().execution_options(populate_existing=True)
        )
        line = result.scalar_one_or_none()
        if line is None:
            raise PayrollRunLineNotFoundError(run_id, employee_id, line_id)

        line.amount_paid = line.amount_paid + amount
        line.amount_owed = max(line.gross_pay - line.amount_paid, Decimal("0.00"))

        payment = PayrollPayment(
            run_id=run_id,
            line_id=line.line_id,
            employee_id=line.employee_id,
            amount=amount,
            paid_at=paid_at,
            method=method,
            reference=reference,
            notes=notes,
            created_by=actor_id,
        )
        self.session.add(payment)
        await self.session.flush()

        status = await self._refresh_status(run_id)
        logger.info(
            "Recorded payroll payment %s for employee %s in run %s; owed %s, run %s",
            amount,
            line.employee_id,
            run_id,
            line.amount_owed,
            status,
        )
        self.emitter.emit_after_commit(
            self.session,
            AuditEvent(
                action=AuditAction.PAYMENT,
                entity_type="payroll_run_line",
                entity_id=line.line_id,
                actor_id=actor_id,
                metadata={
                    "run_id": run_id,
                    "payment_id": payment.payment_id,
                    "amount": amount,
                    "amount_owed": line.amount_owed,
                },
            ),
        )
        return payment

    async def _refresh_status(self, run_id: UUID) -> str:
        result = await self.session.execute(
            select(PayrollRun).where(PayrollRun.run_id == run_id).with_for_update()
        )
        run = result.scalar_one()
        lines = (
            await self.session.execute(
                select(PayrollRunLine).where(PayrollRunLine.run_id == run_id)
            )
        ).scalars().all()

        if lines and all(line.amount_owed <= 0 for line in lines):
            run.status = PayrollRunStatus.PAID_FULL.value
        elif any(line.amount_paid > 0 for line in lines):
            run.status = PayrollRunStatus.PAID_PARTIAL.value
        else:
            run.status = PayrollRunStatus.DRAFT.value
        await self.session.flush()
        return run.status
