"""Pure calculators: clock math, billing, rate resolution, payroll splitting."""

from billing_engine.calculators.billing import (
    InvalidRateError,
    bill_entries,
    bill_entry,
    collapse_by_date,
    round_to_cents,
)
from billing_engine.calculators.clock import (
    INVALID_TIME,
    civil_date,
    duration,
    parse_time,
    ranges_overlap,
    to_12_hour,
    to_24_hour,
    week_key,
    weekly_billing_period,
)
from billing_engine.calculators.grouping import GroupKey, build_groups, group_by_client_week
from billing_engine.calculators.overtime import aggregate_rows, split_shift
from billing_engine.calculators.rate_resolver import RateNotFoundError, RateResolver, resolve_rate
from billing_engine.calculators.types import (
    BillableEntry,
    BilledEntry,
    BillingPeriod,
    BillingSummary,
    CandidateEntry,
    EntryType,
    OverlapConflict,
    OverlapScope,
    OvertimeConfig,
    RateSelection,
    ShiftSplit,
    TimesheetKind,
)

__all__ = [
    "INVALID_TIME",
    "BillableEntry",
    "BilledEntry",
    "BillingPeriod",
    "BillingSummary",
    "CandidateEntry",
    "EntryType",
    "GroupKey",
    "InvalidRateError",
    "OverlapConflict",
    "OverlapScope",
    "OvertimeConfig",
    "RateNotFoundError",
    "RateResolver",
    "RateSelection",
    "ShiftSplit",
    "TimesheetKind",
    "aggregate_rows",
    "bill_entries",
    "bill_entry",
    "build_groups",
    "civil_date",
    "collapse_by_date",
    "duration",
    "group_by_client_week",
    "parse_time",
    "ranges_overlap",
    "resolve_rate",
    "round_to_cents",
    "split_shift",
    "to_12_hour",
    "to_24_hour",
    "week_key",
    "weekly_billing_period",
]
