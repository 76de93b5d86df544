"""Type definitions for the time, billing and payroll calculators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from uuid import UUID


class EntryType(str, Enum):
    """Timesheet entry type tag."""

    DIRECT = "DR"
    SUPERVISION = "SV"  # Zero-billing exception on regular timesheets
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_notes(cls, notes: str | None) -> EntryType:
        """Map the stored notes tag to an entry type."""
        if notes is None:
            return cls.UNKNOWN
        tag = notes.strip().upper()
        if tag == cls.DIRECT.value:
            return cls.DIRECT
        if tag == cls.SUPERVISION.value:
            return cls.SUPERVISION
        return cls.UNKNOWN


class TimesheetKind(str, Enum):
    """Timesheet kinds; each is invoiced by its own generation path."""

    REGULAR = "regular"
    BCBA = "bcba"

    @property
    def is_regular(self) -> bool:
        return self is TimesheetKind.REGULAR


class OverlapScope(str, Enum):
    """What a detected overlap collided with."""

    INTERNAL = "internal"
    PROVIDER = "provider"
    CLIENT = "client"
    BOTH = "both"


# ===== Billing periods =====


@dataclass(frozen=True)
class BillingPeriod:
    """Inclusive civil date range, normally one Monday-Sunday week."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Billing period ends ({self.end}) before it starts ({self.start})")

    def previous(self) -> BillingPeriod:
        """The period of equal length immediately before this one."""
        length = (self.end - self.start) + timedelta(days=1)
        return BillingPeriod(start=self.start - length, end=self.end - length)

    @property
    def label(self) -> str:
        return (
            f"{self.start:%a} {self.start.month}/{self.start.day}/{self.start.year} - "
            f"{self.end:%a} {self.end.month}/{self.end.day}/{self.end.year}"
        )


# ===== Overlap detection =====


@dataclass(frozen=True)
class CandidateEntry:
    """An incoming entry to validate before it is persisted.

    ``date`` may be a civil ``date``, a UTC/aware ``datetime`` or an ISO string.
    Times may be ``HH:MM`` (24h) or ``h:mm AM/PM``.
    """

    date: date | datetime | str
    start_time: str
    end_time: str
    entry_type: EntryType = EntryType.UNKNOWN


@dataclass(frozen=True)
class ConflictingEntry:
    """Reference to the persisted entry an overlap collided with."""

    timesheet_id: UUID
    entry_id: UUID
    start_time: str
    end_time: str
    entry_type: EntryType


@dataclass(frozen=True)
class OverlapConflict:
    """A scheduling conflict found for a candidate entry."""

    date: date
    start_time: str
    end_time: str
    entry_type: EntryType
    scope: OverlapScope
    provider_id: UUID
    client_id: UUID
    message: str
    conflicting: ConflictingEntry | None = None
    code: str = "OVERLAP_CONFLICT"


# ===== Billing =====


@dataclass(frozen=True)
class RateSelection:
    """Rate and unit size resolved for one timesheet kind."""

    rate_per_unit: Decimal
    unit_minutes: int
    kind: TimesheetKind
    source: str  # 'bcba', 'regular' or 'legacy'


@dataclass(frozen=True)
class BillableEntry:
    """The fields of a timesheet entry that billing reads."""

    minutes: int
    entry_type: EntryType
    service_date: date
    timesheet_id: UUID | None = None
    provider_id: UUID | None = None
    entry_id: UUID | None = None


@dataclass(frozen=True)
class BilledEntry:
    """Billing result for a single entry."""

    units: int
    billable_units: int
    amount: Decimal


@dataclass
class InvoiceLineCandidate:
    """Billed entries of one timesheet on one service date, collapsed."""

    timesheet_id: UUID | None
    provider_id: UUID | None
    service_date: date
    rate: Decimal
    entry_count: int = 0
    minutes: int = 0
    units: int = 0
    billable_units: int = 0
    amount: Decimal = Decimal("0")
    entry_ids: list[UUID] = field(default_factory=list)


@dataclass
class BillingSummary:
    """Per-entry billing results with totals."""

    rate: RateSelection
    results: list[tuple[BillableEntry, BilledEntry]] = field(default_factory=list)
    total_minutes: int = 0
    total_units: int = 0
    billable_units: int = 0
    total_amount: Decimal = Decimal("0")


# ===== Payroll =====


@dataclass(frozen=True)
class OvertimeConfig:
    """An employee's daily overtime boundary."""

    enabled: bool = False
    start_minute: int | None = None
    rate_hourly: Decimal | None = None

    @property
    def is_active(self) -> bool:
        return self.enabled and self.start_minute is not None and self.rate_hourly is not None


@dataclass(frozen=True)
class ShiftSplit:
    """Regular and overtime minutes of a worked interval."""

    regular_minutes: int = 0
    overtime_minutes: int = 0

    @property
    def total_minutes(self) -> int:
        return self.regular_minutes + self.overtime_minutes

    def __add__(self, other: ShiftSplit) -> ShiftSplit:
        return ShiftSplit(
            regular_minutes=self.regular_minutes + other.regular_minutes,
            overtime_minutes=self.overtime_minutes + other.overtime_minutes,
        )


@dataclass(frozen=True)
class WorkedRow:
    """One clock row as read by the payroll aggregator."""

    row_id: UUID | None
    employee_id: UUID | None
    work_date: date
    in_time: datetime | None = None
    out_time: datetime | None = None
    minutes_worked: int | None = None


@dataclass(frozen=True)
class EmployeePayProfile:
    """Rates and overtime settings used to price an employee's time."""

    employee_id: UUID
    hourly_rate: Decimal
    overtime: OvertimeConfig = field(default_factory=OvertimeConfig)


@dataclass
class EmployeeTotals:
    """Aggregated minutes and pay for one employee in a run."""

    employee_id: UUID
    hourly_rate: Decimal
    overtime_rate: Decimal | None
    regular_minutes: int = 0
    overtime_minutes: int = 0
    row_count: int = 0
    regular_pay: Decimal = Decimal("0")
    overtime_pay: Decimal = Decimal("0")

    @property
    def total_minutes(self) -> int:
        return self.regular_minutes + self.overtime_minutes

    @property
    def gross_pay(self) -> Decimal:
        return self.regular_pay + self.overtime_pay


@dataclass
class PayrollAggregate:
    """Result of aggregating rows for a run."""

    totals: dict[UUID, EmployeeTotals] = field(default_factory=dict)
    unlinked_count: int = 0
    linked_count: int = 0
