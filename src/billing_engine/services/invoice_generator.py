"""Weekly invoice generation from approved timesheets.

Each (client, billing week) group is processed in its own transaction:

1. Skip the group if a non-deleted invoice for the client already covers
   any day of the week.
2. Load the group's non-invoiced entries; skip when none remain.
3. Resolve the payer rate once and bill every entry.
4. Allocate an invoice number, insert the invoice and its lines, flag the
   consumed entries invoiced and back-reference the timesheets.

A failure in one group rolls back only that group; the batch carries on
and reports it. Re-running a fully invoiced period creates nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from billing_engine.calculators.billing import bill_entries, collapse_by_date
from billing_engine.calculators.clock import (
    civil_date,
    duration,
    parse_time,
    weekly_billing_period,
)
from billing_engine.calculators.grouping import GroupKey, group_by_client_week
from billing_engine.calculators.rate_resolver import RateResolver
from billing_engine.calculators.types import (
    BillableEntry,
    BillingPeriod,
    EntryType,
    InvoiceLineCandidate,
    TimesheetKind,
)
from billing_engine.config import Settings, get_settings
from billing_engine.database import get_session_factory
from billing_engine.events import AuditAction, AuditEmitter, AuditEvent
from billing_engine.models import (
    INVOICEABLE_STATUSES,
    Client,
    Insurance,
    Invoice,
    InvoiceEntry,
    Timesheet,
    TimesheetEntry,
)
from billing_engine.services.sequence_service import InvoiceNumberSequence
from billing_engine.services.state_machine import InvoiceStatus

logger = logging.getLogger(__name__)

PERIOD_CONSTRAINT = "invoice_client_period_unique"


class InvoiceIntegrityError(Exception):
    """Raised when consumed entries no longer match what was billed."""

    def __init__(self, expected: int, flagged: int, key: str):
        self.expected = expected
        self.flagged = flagged
        self.key = key
        super().__init__(
            f"Group {key}: expected to flag {expected} entries invoiced, flagged {flagged}"
        )


@dataclass(frozen=True)
class _EligibleTimesheet:
    """Read-phase snapshot of an invoiceable timesheet."""

    timesheet_id: UUID
    provider_id: UUID
    client_id: UUID
    client_name: str
    start_date: date
    insurance: Insurance | None


@dataclass
class GroupOutcome:
    """Result for one (client, week) group."""

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


@dataclass
class GenerationSummary:
    """Accumulated results of a generation run."""

    period: BillingPeriod
    kind: TimesheetKind
    created: list[GroupOutcome] = field(default_factory=list)
    skipped: list[GroupOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def success(self) -> bool:
        return not self.errors


def _is_period_conflict(error: IntegrityError) -> bool:
    message = str(error.orig)
    return PERIOD_CONSTRAINT in message or (
        "invoice.client_id" in message and "invoice.period_key" in message
    )


class InvoiceGenerator:
    """Generates DRAFT invoices for one billing period and timesheet kind.

    Regular and BCBA timesheets are invoiced by separate calls and never
    share an invoice.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        emitter: AuditEmitter | None = None,
        settings: Settings | None = None,
        sequence: InvoiceNumberSequence | None = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.settings = settings or get_settings()
        self.emitter = emitter or AuditEmitter()
        self.sequence = sequence or InvoiceNumberSequence(
            self.settings.invoice_number_prefix,
            self.settings.invoice_number_width,
        )
        self.resolver = RateResolver(self.settings.default_unit_minutes)

    @property
    def tz(self) -> str:
        return self.settings.civil_timezone

    async def generate(
        self,
        period: BillingPeriod | None = None,
        kind: TimesheetKind = TimesheetKind.REGULAR,
        client_id: UUID | None = None,
        insurance_id: UUID | None = None,
        timesheet_ids: list[UUID] | None = None,
        actor_id: UUID | None = None,
    ) -> GenerationSummary:
        """Generate invoices.

        Args:
            period: Billing period; defaults to the current civil week
            kind: Which timesheet kind to invoice
            client_id: Restrict to one client
            insurance_id: Restrict to clients of one payer
            timesheet_ids: Explicit timesheet selection instead of the period filter
            actor_id: Recorded as creator and on audit events

        Returns:
            Summary of created, skipped and failed groups
        """
        period = period or weekly_billing_period(tz=self.tz)
        summary = GenerationSummary(period=period, kind=kind)

        eligible = await self._load_eligible(period, kind, client_id, insurance_id, timesheet_ids)
        groups = group_by_client_week(
            eligible,
            client_of=lambda ts: ts.client_id,
            day_of=lambda ts: ts.start_date,
        )
        logger.info(
            "Generating %s invoices for %s: %d timesheet(s) in %d group(s)",
            kind.value,
            period.label,
            len(eligible),
            len(groups),
        )

        for key, members in groups.items():
            client_name = members[0].client_name
            try:
                outcome, created = await self._process_group(key, members, kind, actor_id)
            except IntegrityError as e:
                if _is_period_conflict(e):
                    logger.info("Group %s invoiced by a concurrent run; skipping", key)
                    summary.skipped.append(
                        self._outcome(key, "already invoiced (concurrent run)")
                    )
                else:
                    logger.exception("Integrity error generating invoice for %s", key)
                    summary.errors.append(f"{client_name} ({key.period_key}): {e.orig}")
                continue
            except Exception as e:
                logger.exception("Failed to generate invoice for %s", key)
                summary.errors.append(f"{client_name} ({key.period_key}): {e}")
                continue

            if created:
                summary.created.append(outcome)
            else:
                summary.skipped.append(outcome)

        logger.info(
            "Invoice generation finished: %d created, %d skipped, %d error(s)",
            summary.created_count,
            summary.skipped_count,
            len(summary.errors),
        )
        return summary

    async def _load_eligible(
        self,
        period: BillingPeriod,
        kind: TimesheetKind,
        client_id: UUID | None,
        insurance_id: UUID | None,
        timesheet_ids: list[UUID] | None,
    ) -> list[_EligibleTimesheet]:
        has_open_entry = exists().where(
            TimesheetEntry.timesheet_id == Timesheet.timesheet_id,
            TimesheetEntry.invoiced.is_(False),
        )
        stmt = (
            select(Timesheet)
            .join(Client, Timesheet.client_id == Client.client_id)
            .where(
                Timesheet.status.in_(INVOICEABLE_STATUSES),
                Timesheet.deleted_at.is_(None),
                Timesheet.is_bcba.is_(kind is TimesheetKind.BCBA),
                # Consumed timesheets stay in scope so a re-run reports "already invoiced"
                or_(has_open_entry, Timesheet.invoice_id.is_not(None)),
            )
            .options(selectinload(Timesheet.client).selectinload(Client.insurance))
            .order_by(Timesheet.start_date, Timesheet.timesheet_id)
        )
        if timesheet_ids is not None:
            stmt = stmt.where(Timesheet.timesheet_id.in_(timesheet_ids))
        else:
            stmt = stmt.where(
                Timesheet.start_date >= period.start,
                Timesheet.start_date <= period.end,
            )
        if client_id is not None:
            stmt = stmt.where(Timesheet.client_id == client_id)
        if insurance_id is not None:
            stmt = stmt.where(Client.insurance_id == insurance_id)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                _EligibleTimesheet(
                    timesheet_id=ts.timesheet_id,
                    provider_id=ts.provider_id,
                    client_id=ts.client_id,
                    client_name=ts.client.name,
                    start_date=ts.start_date,
                    insurance=ts.client.insurance,
                )
                for ts in result.scalars().all()
            ]

    async def _process_group(
        self,
        key: GroupKey,
        members: list[_EligibleTimesheet],
        kind: TimesheetKind,
        actor_id: UUID | None,
    ) -> tuple[GroupOutcome, bool]:
        """Run one group in its own transaction. Returns (outcome, created)."""
        async with self.session_factory() as session:
            async with session.begin():
                existing = await self._existing_invoice(session, key)
                if existing is not None:
                    return self._outcome(key, f"already invoiced ({existing})"), False

                timesheets = {m.timesheet_id: m for m in members}
                entries = await self._open_entries(session, timesheets)
                if not entries:
                    return self._outcome(key, "nothing eligible"), False

                insurance = members[0].insurance
                # Raises RateNotFoundError for an uninsured client
                rate = self.resolver.resolve(insurance, kind)
                billing = bill_entries(entries, rate)
                lines = collapse_by_date(billing)

                invoice = await self._create_invoice(
                    session, key, kind, billing.total_amount, actor_id
                )
                self._add_lines(session, invoice, lines, insurance.insurance_id)
                await session.flush()

                entry_ids = [e.entry_id for e in entries if e.entry_id is not None]
                await self._mark_entries_invoiced(session, key, entry_ids)
                await self._link_timesheets(session, invoice, list(timesheets))

                self.emitter.emit_after_commit(
                    session,
                    AuditEvent(
                        action=AuditAction.CREATE,
                        entity_type="invoice",
                        entity_id=invoice.invoice_id,
                        actor_id=actor_id,
                        metadata={
                            "invoice_number": invoice.invoice_number,
                            "client_id": key.client_id,
                            "period_key": key.period_key,
                            "kind": kind.value,
                            "total_amount": invoice.total_amount,
                            "entry_count": len(entry_ids),
                        },
                    ),
                )

        logger.info(
            "Created invoice %s for %s: %s over %d line(s)",
            invoice.invoice_number,
            key,
            invoice.total_amount,
            len(lines),
        )
        outcome = self._outcome(key)
        outcome.invoice_id = invoice.invoice_id
        outcome.invoice_number = invoice.invoice_number
        outcome.total_amount = invoice.total_amount
        outcome.line_count = len(lines)
        outcome.entry_count = len(entries)
        return outcome, True

    async def _existing_invoice(self, session: AsyncSession, key: GroupKey) -> str | None:
        """Number of a live invoice for the client intersecting the week."""
        result = await session.execute(
            select(Invoice.invoice_number)
            .where(
                Invoice.client_id == key.client_id,
                Invoice.deleted_at.is_(None),
                Invoice.start_date <= key.week_end,
                Invoice.end_date >= key.week_start,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _open_entries(
        self,
        session: AsyncSession,
        timesheets: dict[UUID, _EligibleTimesheet],
    ) -> list[BillableEntry]:
        result = await session.execute(
            select(TimesheetEntry)
            .where(
                TimesheetEntry.timesheet_id.in_(list(timesheets)),
                TimesheetEntry.invoiced.is_(False),
            )
            .order_by(TimesheetEntry.date, TimesheetEntry.start_time, TimesheetEntry.entry_id)
        )
        entries = []
        for row in result.scalars().all():
            minutes = row.minutes or duration(parse_time(row.start_time), parse_time(row.end_time))
            entries.append(
                BillableEntry(
                    minutes=minutes,
                    entry_type=EntryType.from_notes(row.notes),
                    service_date=civil_date(row.date, self.tz),
                    timesheet_id=row.timesheet_id,
                    provider_id=timesheets[row.timesheet_id].provider_id,
                    entry_id=row.entry_id,
                )
            )
        return entries

    async def _create_invoice(
        self,
        session: AsyncSession,
        key: GroupKey,
        kind: TimesheetKind,
        total: Decimal,
        actor_id: UUID | None,
    ) -> Invoice:
        year = civil_date(datetime.now(timezone.utc), self.tz).year
        number = await self.sequence.next_number(session, year)
        invoice = Invoice(
            invoice_number=number,
            client_id=key.client_id,
            is_bcba=kind is TimesheetKind.BCBA,
            start_date=key.week_start,
            end_date=key.week_end,
            period_key=key.period_key,
            status=InvoiceStatus.DRAFT.value,
            total_amount=total,
            paid_amount=Decimal("0.00"),
            adjustments=Decimal("0.00"),
            outstanding=total,
            created_by=actor_id,
        )
        session.add(invoice)
        # Surfaces the (client, period) unique violation before any flags change
        await session.flush()
        return invoice

    def _add_lines(
        self,
        session: AsyncSession,
        invoice: Invoice,
        lines: list[InvoiceLineCandidate],
        insurance_id: UUID,
    ) -> None:
        for line in lines:
            session.add(
                InvoiceEntry(
                    invoice_id=invoice.invoice_id,
                    timesheet_id=line.timesheet_id,
                    provider_id=line.provider_id,
                    insurance_id=insurance_id,
                    service_date=line.service_date,
                    entry_count=line.entry_count,
                    minutes=line.minutes,
                    units=Decimal(line.units),
                    billable_units=Decimal(line.billable_units),
                    rate=line.rate,
                    amount=line.amount,
                )
            )

    async def _mark_entries_invoiced(
        self,
        session: AsyncSession,
        key: GroupKey,
        entry_ids: list[UUID],
    ) -> None:
        """Flip ``invoiced`` on exactly the billed entries.

        Raises:
            InvoiceIntegrityError: If any entry was already invoiced
        """
        result = await session.execute(
            update(TimesheetEntry)
            .where(
                TimesheetEntry.entry_id.in_(entry_ids),
                TimesheetEntry.invoiced.is_(False),
            )
            .values(invoiced=True)
            .execution_options(synchronize_session=False)
        )
        flagged = result.rowcount or 0
        if flagged != len(entry_ids):
            raise InvoiceIntegrityError(len(entry_ids), flagged, str(key))

    async def _link_timesheets(
        self,
        session: AsyncSession,
        invoice: Invoice,
        timesheet_ids: list[UUID],
    ) -> None:
        await session.execute(
            update(Timesheet)
            .where(
                Timesheet.timesheet_id.in_(timesheet_ids),
                Timesheet.invoice_id.is_(None),
            )
            .values(invoice_id=invoice.invoice_id, invoiced_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _outcome(key: GroupKey, reason: str | None = None) -> GroupOutcome:
        return GroupOutcome(
            key=key.format(),
            client_id=key.client_id,
            week_start=key.week_start,
            week_end=key.week_end,
            reason=reason,
        )
