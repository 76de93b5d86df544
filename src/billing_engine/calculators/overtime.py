"""Regular/overtime splitting of worked intervals and per-employee totals."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from billing_engine.calculators.billing import round_to_cents
from billing_engine.calculators.clock import civil_date, civil_instant, get_zone
from billing_engine.calculators.types import (
    EmployeePayProfile,
    EmployeeTotals,
    OvertimeConfig,
    PayrollAggregate,
    ShiftSplit,
    WorkedRow,
)

MINUTES_PER_HOUR = Decimal("60")


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _minutes_between(start: datetime, end: datetime) -> int:
    seconds = (_utc(end) - _utc(start)).total_seconds()
    return max(int(seconds // 60), 0)


def split_shift(
    in_time: datetime,
    out_time: datetime,
    config: OvertimeConfig,
    tz: str | None = None,
) -> ShiftSplit:
    """Split a worked interval into regular and overtime minutes.

    The overtime boundary recurs on every civil day. A shift crossing
    midnight is cut at each civil midnight and every segment is split
    against its own day's boundary; once a boundary has been crossed the
    rest of the shift is overtime, so 22:00-02:00 against a 23:00
    boundary is 60 regular and 180 overtime minutes.

    All comparisons are between UTC instants. A boundary on a DST night
    resolves as ``civil_instant`` does: first occurrence when clocks go
    back, first valid instant after the gap when they go forward.
    """
    start = _utc(in_time)
    end = _utc(out_time)
    if end <= start:
        return ShiftSplit()
    if not config.is_active:
        return ShiftSplit(regular_minutes=_minutes_between(start, end))

    zone = get_zone(tz)
    boundary_minute = config.start_minute or 0

    result = ShiftSplit()
    day = start.astimezone(zone).date()
    last_day = end.astimezone(zone).date()
    while day <= last_day:
        seg_start = max(start, civil_instant(day, 0, tz))
        seg_end = min(end, civil_instant(day + timedelta(days=1), 0, tz))
        if seg_end > seg_start:
            if result.overtime_minutes:
                # Continuation of a shift already in overtime
                boundary = seg_start
            else:
                boundary = civil_instant(day, boundary_minute, tz)
            regular = _minutes_between(seg_start, min(seg_end, boundary))
            overtime = _minutes_between(max(seg_start, boundary), seg_end)
            result = result + ShiftSplit(regular_minutes=regular, overtime_minutes=overtime)
        day += timedelta(days=1)
    return result


def overnight_out_time(in_time: datetime, out_time: datetime, tz: str | None = None) -> datetime:
    """Out punch of a row, moved to the next civil day when it precedes the in punch.

    Both punches of an imported row carry the work date, so an out punch
    earlier than the in punch belongs to the following morning.
    """
    if _utc(out_time) >= _utc(in_time):
        return out_time
    local = _utc(out_time).astimezone(get_zone(tz))
    return (local + timedelta(days=1)).astimezone(timezone.utc)


def split_row(row: WorkedRow, config: OvertimeConfig, tz: str | None = None) -> ShiftSplit:
    """Split one clock row; pre-summed minutes count as regular time."""
    if row.in_time is not None and row.out_time is not None:
        out_time = overnight_out_time(row.in_time, row.out_time, tz)
        return split_shift(row.in_time, out_time, config, tz)
    if row.minutes_worked:
        return ShiftSplit(regular_minutes=max(row.minutes_worked, 0))
    return ShiftSplit()


def price_totals(totals: EmployeeTotals) -> EmployeeTotals:
    """Compute regular and overtime pay from the accumulated minutes."""
    regular_hours = Decimal(totals.regular_minutes) / MINUTES_PER_HOUR
    totals.regular_pay = round_to_cents(regular_hours * totals.hourly_rate)

    if totals.overtime_minutes and totals.overtime_rate is not None:
        overtime_hours = Decimal(totals.overtime_minutes) / MINUTES_PER_HOUR
        totals.overtime_pay = round_to_cents(overtime_hours * totals.overtime_rate)
    else:
        totals.overtime_pay = Decimal("0.00")
    return totals


def aggregate_rows(
    rows: Iterable[WorkedRow],
    profiles: Mapping[UUID, EmployeePayProfile],
    rate_overrides: Mapping[UUID, Decimal] | None = None,
    overtime_rate_overrides: Mapping[UUID, Decimal] | None = None,
    tz: str | None = None,
) -> PayrollAggregate:
    """Aggregate clock rows into priced per-employee totals.

    Rows without a known employee are counted as unlinked.
    """
    rate_overrides = rate_overrides or {}
    overtime_rate_overrides = overtime_rate_overrides or {}
    result = PayrollAggregate()

    for row in rows:
        profile = profiles.get(row.employee_id) if row.employee_id is not None else None
        if profile is None:
            result.unlinked_count += 1
            continue
        result.linked_count += 1

        totals = result.totals.get(profile.employee_id)
        if totals is None:
            overtime_rate = overtime_rate_overrides.get(
                profile.employee_id, profile.overtime.rate_hourly
            )
            totals = EmployeeTotals(
                employee_id=profile.employee_id,
                hourly_rate=rate_overrides.get(profile.employee_id, profile.hourly_rate),
                overtime_rate=overtime_rate if profile.overtime.is_active else None,
            )
            result.totals[profile.employee_id] = totals

        split = split_row(row, profile.overtime, tz)
        totals.regular_minutes += split.regular_minutes
        totals.overtime_minutes += split.overtime_minutes
        totals.row_count += 1

    for totals in result.totals.values():
        price_totals(totals)
    return result


def rows_in_period(
    rows: Iterable[WorkedRow], start: date, end: date, tz: str | None = None
) -> list[WorkedRow]:
    """Rows whose work date falls inside ``[start, end]``."""
    selected = []
    for row in rows:
        day = civil_date(row.work_date, tz)
        if start <= day <= end:
            selected.append(row)
    return selected
