"""Tests for regular/overtime splitting and payroll aggregation."""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from billing_engine.calculators.overtime import (
    aggregate_rows,
    rows_in_period,
    split_row,
    split_shift,
)
from billing_engine.calculators.types import (
    EmployeePayProfile,
    OvertimeConfig,
    ShiftSplit,
    WorkedRow,
)

NY = "America/New_York"
OT_AT_23 = OvertimeConfig(enabled=True, start_minute=23 * 60, rate_hourly=Decimal("30.00"))


def _utc(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


class TestSplitShift:
    """Test splitting of worked intervals against the daily boundary."""

    def test_overnight_shift_with_late_boundary(self):
        """22:00-02:00 local with a 23:00 boundary is 60 regular and 180 overtime."""
        # EST is UTC-5: 22:00 on Jan 7 is 03:00 UTC on Jan 8
        split = split_shift(_utc(8, 3), _utc(8, 7), OT_AT_23, NY)

        assert split == ShiftSplit(regular_minutes=60, overtime_minutes=180)

    def test_same_day_shift_straddling_boundary(self):
        config = OvertimeConfig(enabled=True, start_minute=17 * 60, rate_hourly=Decimal("30"))
        # 15:00-19:00 local
        split = split_shift(_utc(7, 20), _utc(8, 0), config, NY)

        assert split.regular_minutes == 120
        assert split.overtime_minutes == 120

    def test_shift_entirely_before_boundary(self):
        split = split_shift(_utc(7, 14), _utc(7, 18), OT_AT_23, NY)

        assert split == ShiftSplit(regular_minutes=240, overtime_minutes=0)

    def test_shift_entirely_after_boundary(self):
        # 23:15-23:45 local
        split = split_shift(_utc(8, 4, 15), _utc(8, 4, 45), OT_AT_23, NY)

        assert split == ShiftSplit(regular_minutes=0, overtime_minutes=30)

    def test_overnight_shift_with_early_morning_boundary(self):
        """Evening work is already past an early-morning boundary of the same day."""
        config = OvertimeConfig(enabled=True, start_minute=60, rate_hourly=Decimal("30"))
        # 22:00-02:00 local, overtime from 01:00
        split = split_shift(_utc(8, 3), _utc(8, 7), config, NY)

        assert split == ShiftSplit(regular_minutes=0, overtime_minutes=240)

    def test_overnight_shift_starting_at_midnight_uses_day_two_boundary(self):
        config = OvertimeConfig(enabled=True, start_minute=60, rate_hourly=Decimal("30"))
        # 00:00-02:00 local on Jan 8
        split = split_shift(_utc(8, 5), _utc(8, 7), config, NY)

        assert split == ShiftSplit(regular_minutes=60, overtime_minutes=60)

    def test_disabled_overtime_is_all_regular(self):
        config = OvertimeConfig(enabled=False, start_minute=23 * 60, rate_hourly=Decimal("30"))

        split = split_shift(_utc(8, 3), _utc(8, 7), config, NY)

        assert split == ShiftSplit(regular_minutes=240, overtime_minutes=0)

    def test_unconfigured_overtime_is_all_regular(self):
        config = OvertimeConfig(enabled=True, start_minute=None, rate_hourly=Decimal("30"))

        assert split_shift(_utc(8, 3), _utc(8, 7), config, NY).overtime_minutes == 0

    def test_out_before_in_is_empty(self):
        assert split_shift(_utc(8, 7), _utc(8, 3), OT_AT_23, NY) == ShiftSplit()

    def test_pre_summed_minutes_are_regular(self):
        row = WorkedRow(row_id=None, employee_id=uuid4(), work_date=date(2025, 1, 7), minutes_worked=95)

    def test_overnight_row_with_out_punch_on_work_date(self):
        """An out punch earlier than the in punch is the next morning."""
        # 22:00 on Jan 6 and 02:00 stamped with the same work date
        row = WorkedRow(
            row_id=None,
            employee_id=uuid4(),
            work_date=date(2025, 1, 6),
            in_time=_utc(7, 3),
            out_time=_utc(6, 7),
            minutes_worked=240,
        )

        assert split_row(row, OT_AT_23, NY) == ShiftSplit(regular_minutes=60, overtime_minutes=180)

    def test_row_with_equal_punches_is_empty(self):
        row = WorkedRow(None, uuid4(), date(2025, 1, 6), _utc(7, 3), _utc(7, 3))

        assert split_row(row, OT_AT_23, NY) == ShiftSplit()

        assert split_row(row, OT_AT_23, NY) == ShiftSplit(regular_minutes=95)


class TestSplitShiftAcrossDst:
    """Test boundaries on nights when the clocks change."""

    def test_boundary_in_spring_forward_gap(self):
        """02:30 does not exist on 2025-03-09; the boundary moves to 03:00 EDT."""
        config = OvertimeConfig(enabled=True, start_minute=2 * 60 + 30, rate_hourly=Decimal("30"))
        # 01:00 EST to 03:00 EDT, one hour of real time
        in_time = datetime(2025, 3, 9, 6, 0, tzinfo=timezone.utc)
        out_time = datetime(2025, 3, 9, 7, 0, tzinfo=timezone.utc)

        split = split_shift(in_time, out_time, config, NY)

        assert split == ShiftSplit(regular_minutes=60, overtime_minutes=0)

    def test_boundary_after_spring_forward_gap(self):
        config = OvertimeConfig(enabled=True, start_minute=2 * 60 + 30, rate_hourly=Decimal("30"))
        # 01:00 EST to 04:00 EDT: 60 minutes before the gap, 60 after
        in_time = datetime(2025, 3, 9, 6, 0, tzinfo=timezone.utc)
        out_time = datetime(2025, 3, 9, 8, 0, tzinfo=timezone.utc)

        split = split_shift(in_time, out_time, config, NY)

        assert split == ShiftSplit(regular_minutes=60, overtime_minutes=60)

    def test_ambiguous_boundary_uses_first_occurrence(self):
        """01:30 happens twice on 2025-11-02; overtime starts at the first one."""
        config = OvertimeConfig(enabled=True, start_minute=90, rate_hourly=Decimal("30"))
        # 00:30 EDT to 01:15 EST, 105 minutes of real time
        in_time = datetime(2025, 11, 2, 4, 30, tzinfo=timezone.utc)
        out_time = datetime(2025, 11, 2, 6, 15, tzinfo=timezone.utc)

        split = split_shift(in_time, out_time, config, NY)

        assert split == ShiftSplit(regular_minutes=60, overtime_minutes=45)

    def test_overnight_shift_on_fall_back_night(self):
        # 22:00 EDT Nov 1 to 02:00 EST Nov 2 is five hours of real time
        in_time = datetime(2025, 11, 2, 2, 0, tzinfo=timezone.utc)
        out_time = datetime(2025, 11, 2, 7, 0, tzinfo=timezone.utc)

        split = split_shift(in_time, out_time, OT_AT_23, NY)

        assert split == ShiftSplit(regular_minutes=60, overtime_minutes=240)


class TestAggregateRows:
    """Test per-employee aggregation and pricing."""

    def test_totals_and_pay(self):
        employee_id = uuid4()
        profiles = {
            employee_id: EmployeePayProfile(
                employee_id=employee_id,
                hourly_rate=Decimal("20.00"),
                overtime=OT_AT_23,
            )
        }
        rows = [
            WorkedRow(uuid4(), employee_id, date(2025, 1, 7), _utc(8, 3), _utc(8, 7)),
            WorkedRow(uuid4(), employee_id, date(2025, 1, 9), minutes_worked=90),
        ]

        result = aggregate_rows(rows, profiles, tz=NY)
        totals = result.totals[employee_id]

        assert totals.regular_minutes == 150
        assert totals.overtime_minutes == 180
        assert totals.regular_pay == Decimal("50.00")
        assert totals.overtime_pay == Decimal("90.00")
        assert totals.gross_pay == Decimal("140.00")
        assert result.linked_count == 2

    def test_overnight_row_is_paid(self):
        employee_id = uuid4()
        profiles = {
            employee_id: EmployeePayProfile(
                employee_id=employee_id,
                hourly_rate=Decimal("20.00"),
                overtime=OT_AT_23,
            )
        }
        # Out punch stamped on the work date, before the in punch
        rows = [WorkedRow(uuid4(), employee_id, date(2025, 1, 6), _utc(7, 3), _utc(6, 7), 240)]

        result = aggregate_rows(rows, profiles, tz=NY)
        totals = result.totals[employee_id]

        assert totals.regular_minutes + totals.overtime_minutes == 240
        assert totals.overtime_minutes == 180
        assert totals.gross_pay == Decimal("110.00")

    def test_unlinked_rows_are_counted(self):
        employee_id = uuid4()
        profiles = {employee_id: EmployeePayProfile(employee_id, Decimal("18.00"))}
        rows = [
            WorkedRow(uuid4(), employee_id, date(2025, 1, 7), minutes_worked=60),
            WorkedRow(uuid4(), None, date(2025, 1, 7), minutes_worked=60),
            WorkedRow(uuid4(), uuid4(), date(2025, 1, 7), minutes_worked=60),
        ]

        result = aggregate_rows(rows, profiles, tz=NY)

        assert result.unlinked_count == 2
        assert result.linked_count == 1
        assert result.totals[employee_id].gross_pay == Decimal("18.00")

    def test_rate_overrides(self):
        employee_id = uuid4()
        profiles = {
            employee_id: EmployeePayProfile(employee_id, Decimal("20.00"), OT_AT_23)
        }
        rows = [WorkedRow(uuid4(), employee_id, date(2025, 1, 7), _utc(8, 3), _utc(8, 7))]

        result = aggregate_rows(
            rows,
            profiles,
            rate_overrides={employee_id: Decimal("25.00")},
            overtime_rate_overrides={employee_id: Decimal("40.00")},
            tz=NY,
        )
        totals = result.totals[employee_id]

        assert totals.hourly_rate == Decimal("25.00")
        assert totals.regular_pay == Decimal("25.00")
        assert totals.overtime_pay == Decimal("120.00")

    def test_overtime_rate_ignored_without_overtime(self):
        employee_id = uuid4()
        profiles = {employee_id: EmployeePayProfile(employee_id, Decimal("20.00"))}
        rows = [WorkedRow(uuid4(), employee_id, date(2025, 1, 7), minutes_worked=30)]

        result = aggregate_rows(
            rows, profiles, overtime_rate_overrides={employee_id: Decimal("40.00")}
        )

        assert result.totals[employee_id].overtime_rate is None
        assert result.totals[employee_id].gross_pay == Decimal("10.00")

    def test_rows_in_period(self):
        rows = [
            WorkedRow(None, None, date(2025, 1, 5)),
            WorkedRow(None, None, date(2025, 1, 6)),
            WorkedRow(None, None, date(2025, 1, 12)),
            WorkedRow(None, None, date(2025, 1, 13)),
        ]

        selected = rows_in_period(rows, date(2025, 1, 6), date(2025, 1, 12), NY)

        assert [row.work_date for row in selected] == [date(2025, 1, 6), date(2025, 1, 12)]
