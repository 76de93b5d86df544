"""Tests for payroll runs and payroll payments."""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engine.events import AuditAction, AuditEmitter
from billing_engine.services.payroll_service import (
    NoLinkedTimeDataError,
    PayrollRunLineNotFoundError,
    PayrollRunService,
)
from tests.conftest import create_employee, create_import

PERIOD_START = date(2025, 1, 6)
PERIOD_END = date(2025, 1, 12)


def _utc(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def service(session, settings, audit_events):
    emitter = AuditEmitter(default_handler=False)
    emitter.on_all(audit_events.append)
    return PayrollRunService(session, emitter, settings)


@pytest.fixture
async def night_shift_import(session):
    """One overnight shift for an overtime employee plus a day employee and an unlinked row."""
    night = await create_employee(
        session,
        "Nora Night",
        hourly_rate=Decimal("20.00"),
        overtime_enabled=True,
        overtime_rate=Decimal("30.00"),
        overtime_start=23 * 60,
    )
    day = await create_employee(session, "Dana Day", hourly_rate=Decimal("18.00"))
    payroll_import = await create_import(
        session,
        [
            # 22:00-02:00 New York time
            (night, date(2025, 1, 7), _utc(8, 3), _utc(8, 7), None),
            (day, date(2025, 1, 8), None, None, 450),
            (None, date(2025, 1, 8), None, None, 120),
            # Outside the period
            (day, date(2025, 1, 14), None, None, 480),
        ],
    )
    return {"night": night, "day": day, "import": payroll_import}


class TestBuildRun:
    """Test aggregation of import rows into a run."""

    @pytest.mark.asyncio
    async def test_lines_per_employee(self, session, service, night_shift_import, audit_events):
        result = await service.build_run(
            "Week 2",
            PERIOD_START,
            PERIOD_END,
            import_id=night_shift_import["import"].import_id,
        )

        assert result.run.status == "DRAFT"
        assert result.linked_count == 2
        assert result.unlinked_count == 1
        lines = {line.employee_id: line for line in result.lines}

        night = lines[night_shift_import["night"].employee_id]
        assert night.regular_minutes == 60
        assert night.overtime_minutes == 180
        assert night.total_hours == Decimal("4.00")
        assert night.regular_pay == Decimal("20.00")
        assert night.overtime_pay == Decimal("90.00")
        assert night.gross_pay == Decimal("110.00")
        assert night.amount_owed == Decimal("110.00")

        day = lines[night_shift_import["day"].employee_id]
        assert day.total_minutes == 450
        assert day.overtime_rate_used is None
        assert day.gross_pay == Decimal("135.00")

        await session.commit()
        assert [e.action for e in audit_events] == [AuditAction.CREATE]
        assert audit_events[0].metadata["unlinked_rows"] == 1

    @pytest.mark.asyncio
    async def test_rate_overrides(self, service, night_shift_import):
        day_id = night_shift_import["day"].employee_id

        result = await service.build_run(
            "Week 2",
            PERIOD_START,
            PERIOD_END,
            import_id=night_shift_import["import"].import_id,
            rate_overrides={day_id: Decimal("20.00")},
        )

        line = next(line for line in result.lines if line.employee_id == day_id)
        assert line.hourly_rate_used == Decimal("20.00")
        assert line.gross_pay == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_only_unlinked_rows(self, session, service):
        payroll_import = await create_import(session, [(None, date(2025, 1, 8), None, None, 60)])

        with pytest.raises(NoLinkedTimeDataError) as exc_info:
            await service.build_run(
                "Empty", PERIOD_START, PERIOD_END, import_id=payroll_import.import_id
            )

        assert exc_info.value.row_count == 1
        assert exc_info.value.unlinked_count == 1

    @pytest.mark.asyncio
    async def test_invalid_requests(self, service):
        with pytest.raises(ValueError):
            await service.build_run("Inverted", PERIOD_END, PERIOD_START, import_id=uuid4())
        with pytest.raises(ValueError):
            await service.build_run("No source", PERIOD_START, PERIOD_END)


class TestPayrollPayments:
    """Test payments against run lines."""

    @pytest.mark.asyncio
    async def test_partial_then_full_payment(self, service, night_shift_import):
        result = await service.build_run(
            "Week 2", PERIOD_START, PERIOD_END, import_id=night_shift_import["import"].import_id
        )
        night_id = night_shift_import["night"].employee_id
        day_id = night_shift_import["day"].employee_id

        await service.record_payment(
            result.run.run_id, Decimal("50.00"), date(2025, 1, 17), "check", employee_id=night_id
        )
        run = await service.get_run(result.run.run_id)
        assert run.status == "PAID_PARTIAL"
        line = next(line for line in run.lines if line.employee_id == night_id)
        assert line.amount_owed == Decimal("60.00")

        await service.record_payment(
            result.run.run_id, Decimal("60.00"), date(2025, 1, 17), "check", employee_id=night_id
        )
        await service.record_payment(
            result.run.run_id, Decimal("135.00"), date(2025, 1, 17), "ach", employee_id=day_id
        )
        run = await service.get_run(result.run.run_id)
        assert run.status == "PAID_FULL"

    @pytest.mark.asyncio
    async def test_overpayment_floors_owed_at_zero(self, service, night_shift_import):
        result = await service.build_run(
            "Week 2", PERIOD_START, PERIOD_END, import_id=night_shift_import["import"].import_id
        )
        line = result.lines[0]

        await service.record_payment(
            result.run.run_id, line.gross_pay + Decimal("25.00"), date(2025, 1, 17), "cash",
            line_id=line.line_id,
        )

        assert line.amount_owed == Decimal("0.00")
        assert line.amount_paid == line.gross_pay + Decimal("25.00")

    @pytest.mark.asyncio
    async def test_unknown_line(self, service, night_shift_import):
        result = await service.build_run(
            "Week 2", PERIOD_START, PERIOD_END, import_id=night_shift_import["import"].import_id
        )

        with pytest.raises(PayrollRunLineNotFoundError):
            await service.record_payment(
                result.run.run_id, Decimal("10.00"), date(2025, 1, 17), "check", employee_id=uuid4()
            )

    @pytest.mark.asyncio
    async def test_invalid_payment(self, service, night_shift_import):
        result = await service.build_run(
            "Week 2", PERIOD_START, PERIOD_END, import_id=night_shift_import["import"].import_id
        )

        with pytest.raises(ValueError):
            await service.record_payment(
                result.run.run_id, Decimal("0"), date(2025, 1, 17), "check",
                employee_id=night_shift_import["night"].employee_id,
            )
        with pytest.raises(ValueError):
            await service.record_payment(result.run.run_id, Decimal("5.00"), date(2025, 1, 17), "check")
