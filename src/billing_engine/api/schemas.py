"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from billing_engine.calculators.types import EntryType, OverlapScope, TimesheetKind


# ============================================================================
# Overlap schemas
# ============================================================================


class CandidateEntryIn(BaseModel):
    """A candidate entry to check before saving."""

    date: date | datetime
    start_time: str
    end_time: str
    entry_type: EntryType = EntryType.UNKNOWN


class OverlapCheckRequest(BaseModel):
    """Schema for an overlap validation request."""

    provider_id: UUID
    client_id: UUID
    entries: list[CandidateEntryIn]
    exclude_timesheet_id: UUID | None = None
    provider_name: str | None = None
    client_name: str | None = None


class ConflictingEntryResponse(BaseModel):
    """The persisted entry a candidate collided with."""

    model_config = ConfigDict(from_attributes=True)

    timesheet_id: UUID
    entry_id: UUID
    start_time: str
    end_time: str
    entry_type: EntryType


class OverlapConflictResponse(BaseModel):
    """Schema for a single conflict."""

    model_config = ConfigDict(from_attributes=True)

    code: str
    date: date
    start_time: str
    end_time: str
    entry_type: EntryType
    scope: OverlapScope
    provider_id: UUID
    client_id: UUID
    message: str
    conflicting: ConflictingEntryResponse | None = None


class OverlapCheckResponse(BaseModel):
    """Schema for overlap validation results."""

    has_conflicts: bool
    conflicts: list[OverlapConflictResponse]


# ============================================================================
# Billing schemas
# ============================================================================


class BillEntryIn(BaseModel):
    """One entry to bill."""

    minutes: int = Field(ge=0)
    entry_type: EntryType = EntryType.UNKNOWN
    service_date: date | None = None


class BillEntriesRequest(BaseModel):
    """Bill entries against a payer's rates or an explicit rate."""

    kind: TimesheetKind = TimesheetKind.REGULAR
    insurance_id: UUID | None = None
    rate_per_unit: Decimal | None = Field(default=None, gt=0)
    unit_minutes: int | None = Field(default=None, gt=0)
    entries: list[BillEntryIn]

    @model_validator(mode="after")
    def _rate_source(self) -> "BillEntriesRequest":
        if self.insurance_id is None and (self.rate_per_unit is None or self.unit_minutes is None):
            raise ValueError("Provide insurance_id or both rate_per_unit and unit_minutes")
        return self


class BilledEntryResponse(BaseModel):
    """Billing result for one entry."""

    minutes: int
    entry_type: EntryType
    units: int
    billable_units: int
    amount: Decimal


class BillEntriesResponse(BaseModel):
    """Per-entry and total billing results."""

    kind: TimesheetKind
    rate_per_unit: Decimal
    unit_minutes: int
    rate_source: str
    entries: list[BilledEntryResponse]
    total_minutes: int
    total_units: int
    billable_units: int
    total_amount: Decimal


# ============================================================================
# Invoice generation schemas
# ============================================================================


class GenerateInvoicesRequest(BaseModel):
    """Schema for an invoice generation request."""

    period_start: date | None = None
    period_end: date | None = None
    kind: TimesheetKind = TimesheetKind.REGULAR
    client_id: UUID | None = None
    insurance_id: UUID | None = None
    timesheet_ids: list[UUID] | None = None

    @model_validator(mode="after")
    def _period_bounds(self) -> "GenerateInvoicesRequest":
        if (self.period_start is None) != (self.period_end is None):
            raise ValueError("period_start and period_end must be given together")
        if self.period_start and self.period_end and self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class GroupOutcomeResponse(BaseModel):
    """Schema for one client/week group result."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    client_id: UUID
    week_start: date
    week_end: date
    reason: str | None = None
    invoice_id: UUID | None = None
    invoice_number: str | None = None
    total_amount: Decimal | None = None
    line_count: int = 0
    entry_count: int = 0


class GenerationSummaryResponse(BaseModel):
    """Schema for a generation run summary."""

    period_start: date
    period_end: date
    kind: TimesheetKind
    created: list[GroupOutcomeResponse]
    skipped: list[GroupOutcomeResponse]
    errors: list[str]
    created_count: int
    skipped_count: int
    success: bool


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceEntryResponse(BaseModel):
    """Schema for an invoice line."""

    model_config = ConfigDict(from_attributes=True)

    invoice_entry_id: UUID
    timesheet_id: UUID
    provider_id: UUID
    service_date: date
    entry_count: int
    minutes: int
    units: Decimal
    billable_units: Decimal
    rate: Decimal
    amount: Decimal


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    model_config = ConfigDict(from_attributes=True)

    invoice_id: UUID
    invoice_number: str
    client_id: UUID
    is_bcba: bool
    start_date: date
    end_date: date
    status: str
    total_amount: Decimal
    paid_amount: Decimal
    adjustments: Decimal
    outstanding: Decimal
    approved_at: datetime | None = None
    sent_at: datetime | None = None
    entries: list[InvoiceEntryResponse] = []


class PaymentCreate(BaseModel):
    """Schema for recording an invoice payment."""

    amount: Decimal = Field(gt=0)
    payment_date: date
    reference_number: str | None = None
    notes: str | None = None


class PaymentResponse(BaseModel):
    """Schema for a recorded payment with the updated balance."""

    payment_id: UUID
    invoice_id: UUID
    amount: Decimal
    payment_date: date
    invoice_status: str
    paid_amount: Decimal
    outstanding: Decimal


class AdjustmentCreate(BaseModel):
    """Schema for recording an invoice adjustment."""

    amount: Decimal
    reason: str = Field(min_length=1)


class AdjustmentResponse(BaseModel):
    """Schema for a recorded adjustment with the updated balance."""

    adjustment_id: UUID
    invoice_id: UUID
    amount: Decimal
    reason: str
    invoice_status: str
    adjustments: Decimal
    outstanding: Decimal


# ============================================================================
# Rate table schemas
# ============================================================================


class RateUpdateRequest(BaseModel):
    """Rate fields to change; omitted fields are left as they are."""

    rate_per_unit: Decimal | None = None
    regular_rate_per_unit: Decimal | None = None
    regular_unit_minutes: int | None = None
    bcba_rate_per_unit: Decimal | None = None
    bcba_unit_minutes: int | None = None


class RateHistoryResponse(BaseModel):
    """Schema for a rate history row."""

    model_config = ConfigDict(from_attributes=True)

    history_id: UUID
    insurance_id: UUID
    field: str
    old_value: str | None = None
    new_value: str | None = None
    changed_by: UUID | None = None


# ============================================================================
# Payroll schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for building a payroll run."""

    name: str = Field(min_length=1)
    period_start: date
    period_end: date
    import_id: UUID | None = None
    row_ids: list[UUID] | None = None
    rate_overrides: dict[UUID, Decimal] = {}
    overtime_rate_overrides: dict[UUID, Decimal] = {}


class PayrollRunLineResponse(BaseModel):
    """Schema for a payroll run line."""

    model_config = ConfigDict(from_attributes=True)

    line_id: UUID
    employee_id: UUID
    hourly_rate_used: Decimal
    overtime_rate_used: Decimal | None = None
    total_minutes: int
    regular_minutes: int
    overtime_minutes: int
    total_hours: Decimal
    regular_pay: Decimal
    overtime_pay: Decimal
    gross_pay: Decimal
    amount_paid: Decimal
    amount_owed: Decimal


class PayrollRunResponse(BaseModel):
    """Schema for a payroll run."""

    run_id: UUID
    name: str
    period_start: date
    period_end: date
    status: str
    lines: list[PayrollRunLineResponse]
    linked_count: int | None = None
    unlinked_count: int | None = None


class PayrollPaymentCreate(BaseModel):
    """Schema for paying an employee's run line."""

    amount: Decimal = Field(gt=0)
    paid_at: date
    method: str = Field(min_length=1)
    employee_id: UUID | None = None
    line_id: UUID | None = None
    reference: str | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _target(self) -> "PayrollPaymentCreate":
        if self.employee_id is None and self.line_id is None:
            raise ValueError("employee_id or line_id is required")
        return self


class PayrollPaymentResponse(BaseModel):
    """Schema for a recorded payroll payment."""

    payment_id: UUID
    run_id: UUID
    line_id: UUID
    employee_id: UUID
    amount: Decimal
    run_status: str
    amount_owed: Decimal


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
