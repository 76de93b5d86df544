"""Unit and amount calculation for timesheet entries."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from billing_engine.calculators.types import (
    BillableEntry,
    BilledEntry,
    BillingSummary,
    EntryType,
    InvoiceLineCandidate,
    RateSelection,
)

CENTS = Decimal("0.01")


class InvalidRateError(Exception):
    """Raised when a rate or unit size cannot be used for billing."""

    def __init__(self, rate_per_unit: Decimal | None, unit_minutes: int | None, reason: str):
        self.rate_per_unit = rate_per_unit
        self.unit_minutes = unit_minutes
        self.reason = reason
        super().__init__(
            f"Invalid rate {rate_per_unit} per {unit_minutes}-minute unit: {reason}"
        )


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def units_for(minutes: int, unit_minutes: int) -> int:
    """Whole units billed for ``minutes``; partial units round up."""
    if minutes <= 0:
        return 0
    return -(-minutes // unit_minutes)


def bill_entry(
    minutes: int,
    entry_type: EntryType,
    rate_per_unit: Decimal,
    unit_minutes: int,
    is_regular_kind: bool,
) -> BilledEntry:
    """Bill one entry.

    Supervision entries on regular timesheets record their units but bill
    nothing. BCBA timesheets bill every entry type normally.

    Raises:
        InvalidRateError: If unit size is not positive or rate is negative
    """
    if unit_minutes is None or unit_minutes <= 0:
        raise InvalidRateError(rate_per_unit, unit_minutes, "unit size must be positive")
    if rate_per_unit is None or rate_per_unit < 0:
        raise InvalidRateError(rate_per_unit, unit_minutes, "rate must not be negative")

    units = units_for(minutes, unit_minutes)
    if is_regular_kind and entry_type is EntryType.SUPERVISION:
        return BilledEntry(units=units, billable_units=0, amount=Decimal("0.00"))

    amount = round_to_cents(Decimal(units) * Decimal(rate_per_unit))
    return BilledEntry(units=units, billable_units=units, amount=amount)


def bill_entries(entries: Iterable[BillableEntry], rate: RateSelection) -> BillingSummary:
    """Bill a set of entries with one resolved rate and total the results."""
    summary = BillingSummary(rate=rate, total_amount=Decimal("0.00"))
    for entry in entries:
        billed = bill_entry(
            entry.minutes,
            entry.entry_type,
            rate.rate_per_unit,
            rate.unit_minutes,
            rate.kind.is_regular,
        )
        summary.results.append((entry, billed))
        summary.total_minutes += max(entry.minutes, 0)
        summary.total_units += billed.units
        summary.billable_units += billed.billable_units
        summary.total_amount += billed.amount
    return summary


def collapse_by_date(summary: BillingSummary) -> list[InvoiceLineCandidate]:
    """Collapse billed entries into one line per (timesheet, service date).

    Amounts are summed from the per-entry results, so a line's amount always
    equals the sum of its entries' amounts.
    """
    lines: dict[tuple[str, str], InvoiceLineCandidate] = {}
    for entry, billed in summary.results:
        key = (entry.service_date.isoformat(), str(entry.timesheet_id))
        line = lines.get(key)
        if line is None:
            line = InvoiceLineCandidate(
                timesheet_id=entry.timesheet_id,
                provider_id=entry.provider_id,
                service_date=entry.service_date,
                rate=summary.rate.rate_per_unit,
                amount=Decimal("0.00"),
            )
            lines[key] = line
        line.entry_count += 1
        line.minutes += max(entry.minutes, 0)
        line.units += billed.units
        line.billable_units += billed.billable_units
        line.amount += billed.amount
        if entry.entry_id is not None:
            line.entry_ids.append(entry.entry_id)
    return [lines[key] for key in sorted(lines)]
