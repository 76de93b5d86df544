"""Tests for weekly invoice generation.

The generator opens its own sessions on the shared test connection, so
seed data is committed before each run.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest
from sqlalchemy import func, select

from billing_engine.calculators.types import BillingPeriod, TimesheetKind
from billing_engine.events import AuditAction, AuditEmitter
from billing_engine.models import Invoice, InvoiceEntry, Timesheet, TimesheetEntry
from billing_engine.services.invoice_generator import InvoiceGenerator
from tests.conftest import (
    WEEK_END,
    WEEK_START,
    create_client,
    create_insurance,
    create_provider,
    create_timesheet,
)

WEEK = BillingPeriod(WEEK_START, WEEK_END)
MONDAY = date(2025, 1, 6)
TUESDAY = date(2025, 1, 7)

CLIENT_1 = UUID("10000000-0000-0000-0000-000000000001")
CLIENT_2 = UUID("20000000-0000-0000-0000-000000000002")
CLIENT_3 = UUID("30000000-0000-0000-0000-000000000003")


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def generator(session_factory, settings, audit_events):
    emitter = AuditEmitter(default_handler=False)
    emitter.on_all(audit_events.append)
    return InvoiceGenerator(session_factory, emitter=emitter, settings=settings)


async def _invoices(session) -> list[Invoice]:
    result = await session.execute(select(Invoice).order_by(Invoice.invoice_number))
    return list(result.scalars().all())


class TestGenerate:
    """Test invoice creation for a client week."""

    @pytest.mark.asyncio
    async def test_creates_draft_invoice_with_lines(self, session, generator, audit_events):
        insurance = await create_insurance(session, regular_rate=Decimal("20.00"), regular_unit=15)
        provider = await create_provider(session)
        client = await create_client(session, insurance)
        timesheet = await create_timesheet(
            session,
            provider,
            client,
            [
                (MONDAY, "09:00", "10:00", "DR"),
                (MONDAY, "10:00", "10:16", "DR"),
                (MONDAY, "13:00", "14:00", "SV"),
                (TUESDAY, "09:00", "09:30", "DR"),
            ],
        )
        await session.commit()

        summary = await generator.generate(WEEK)

        assert summary.success
        assert summary.created_count == 1
        outcome = summary.created[0]
        assert outcome.key == f"{client.client_id}|2025-01-06"
        assert outcome.line_count == 2
        assert outcome.entry_count == 4
        # 4 + 2 units, SV zero, 2 units on Tuesday
        assert outcome.total_amount == Decimal("160.00")

        invoices = await _invoices(session)
        assert len(invoices) == 1
        invoice = invoices[0]
        assert invoice.status == "DRAFT"
        assert invoice.start_date == WEEK_START
        assert invoice.end_date == WEEK_END
        assert invoice.period_key == "2025-01-06"
        assert invoice.outstanding == invoice.total_amount
        assert invoice.invoice_number.endswith("-0001")

        lines = (
            await session.execute(
                select(InvoiceEntry)
                .where(InvoiceEntry.invoice_id == invoice.invoice_id)
                .order_by(InvoiceEntry.service_date)
            )
        ).scalars().all()
        assert [line.service_date for line in lines] == [MONDAY, TUESDAY]
        assert lines[0].entry_count == 3
        assert lines[0].amount == Decimal("120.00")
        assert sum(line.amount for line in lines) == invoice.total_amount

        flags = (
            await session.execute(
                select(TimesheetEntry.invoiced).where(
                    TimesheetEntry.timesheet_id == timesheet.timesheet_id
                )
            )
        ).scalars().all()
        assert flags == [True, True, True, True]

        linked = await session.scalar(
            select(Timesheet.invoice_id).where(Timesheet.timesheet_id == timesheet.timesheet_id)
        )
        assert linked == invoice.invoice_id

        assert [e.action for e in audit_events] == [AuditAction.CREATE]
        assert audit_events[0].entity_id == invoice.invoice_id

    @pytest.mark.asyncio
    async def test_rerun_creates_nothing(self, session, generator):
        """A second run for the same client week reports a skip."""
        insurance = await create_insurance(session)
        provider = await create_provider(session)
        client = await create_client(session, insurance)
        await create_timesheet(session, provider, client, [(MONDAY, "09:00", "10:00", "DR")])
        await session.commit()

        first = await generator.generate(WEEK)
        second = await generator.generate(WEEK)

        assert first.created_count == 1
        assert second.created_count == 0
        assert second.skipped_count == 1
        assert second.skipped[0].reason.startswith("already invoiced")
        assert await session.scalar(select(func.count()).select_from(Invoice)) == 1

    @pytest.mark.asyncio
    async def test_timesheets_are_grouped_per_client_week(self, session, generator):
        insurance = await create_insurance(session)
        first_provider = await create_provider(session, "First")
        second_provider = await create_provider(session, "Second")
        client = await create_client(session, insurance)
        await create_timesheet(
            session, first_provider, client, [(MONDAY, "09:00", "10:00", "DR")]
        )
        await create_timesheet(
            session, second_provider, client, [(TUESDAY, "11:00", "12:00", "DR")]
        )
        await session.commit()

        summary = await generator.generate(WEEK)

        assert summary.created_count == 1
        assert summary.created[0].line_count == 2
        assert summary.created[0].total_amount == Decimal("160.00")

    @pytest.mark.asyncio
    async def test_ineligible_timesheets_are_ignored(self, session, generator):
        insurance = await create_insurance(session)
        provider = await create_provider(session)
        client = await create_client(session, insurance)
        await create_timesheet(
            session, provider, client, [(MONDAY, "09:00", "10:00", "DR")], status="DRAFT"
        )
        await create_timesheet(
            session,
            provider,
            client,
            [(date(2025, 1, 14), "09:00", "10:00", "DR")],
            start_date=date(2025, 1, 13),
            end_date=date(2025, 1, 19),
        )
        await session.commit()

        summary = await generator.generate(WEEK)

        assert summary.created_count == 0
        assert summary.skipped_count == 0
        assert summary.success

    @pytest.mark.asyncio
    async def test_client_without_insurance_is_an_error(self, session, generator):
        insurance = await create_insurance(session)
        provider = await create_provider(session)
        insured = await create_client(session, insurance, "Insured", client_id=CLIENT_1)
        uninsured = await create_client(session, None, "Uninsured", client_id=CLIENT_2)
        await create_timesheet(session, provider, insured, [(MONDAY, "09:00", "10:00", "DR")])
        await create_timesheet(session, provider, uninsured, [(MONDAY, "11:00", "12:00", "DR")])
        await session.commit()

        summary = await generator.generate(WEEK)

        assert summary.created_count == 1
        assert not summary.success
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith("Uninsured (2025-01-06)")
        assert "No insurance assigned" in summary.errors[0]


class TestTimesheetKinds:
    """Test that regular and BCBA timesheets are invoiced separately."""

    @pytest.mark.asyncio
    async def test_regular_run_ignores_bcba_timesheets(self, session, generator):
        insurance = await create_insurance(session)
        provider = await create_provider(session)
        regular_client = await create_client(session, insurance, "Regular")
        bcba_client = await create_client(session, insurance, "Supervised")
        await create_timesheet(
            session, provider, regular_client, [(MONDAY, "09:00", "10:00", "DR")]
        )
        await create_timesheet(
            session, provider, bcba_client, [(MONDAY, "11:00", "12:00", "SV")], is_bcba=True
        )
        await session.commit()

        summary = await generator.generate(WEEK, kind=TimesheetKind.REGULAR)

        assert [o.client_id for o in summary.created] == [regular_client.client_id]
        invoices = await _invoices(session)
        assert [i.is_bcba for i in invoices] == [False]

    @pytest.mark.asyncio
    async def test_bcba_batch_by_timesheet_ids(self, session, generator):
        """Selected BCBA timesheets bill supervision at the BCBA rate."""
        insurance = await create_insurance(
            session,
            regular_rate=Decimal("20.00"),
            regular_unit=15,
            bcba_rate=Decimal("45.00"),
            bcba_unit=30,
        )
        provider = await create_provider(session)
        client = await create_client(session, insurance)
        selected = await create_timesheet(
            session, provider, client, [(MONDAY, "09:00", "10:00", "SV")], is_bcba=True
        )
        other_client = await create_client(session, insurance, "Not Selected")
        await create_timesheet(
            session, provider, other_client, [(MONDAY, "13:00", "14:00", "SV")], is_bcba=True
        )
        await session.commit()

        summary = await generator.generate(
            kind=TimesheetKind.BCBA, timesheet_ids=[selected.timesheet_id]
        )

        assert summary.created_count == 1
        assert summary.created[0].total_amount == Decimal("90.00")
        invoices = await _invoices(session)
        assert len(invoices) == 1
        assert invoices[0].is_bcba is True
        assert invoices[0].client_id == client.client_id


class TestFailureIsolation:
    """Test per-group transactions."""

    @pytest.mark.asyncio
    async def test_batch_partial_failure(self, session, session_factory, settings):
        """Group 2 failing leaves groups 1 and 3 created and group 2 untouched."""
        insurance = await create_insurance(session)
        provider = await create_provider(session)
        clients = {}
        for client_id, name in ((CLIENT_1, "One"), (CLIENT_2, "Two"), (CLIENT_3, "Three")):
            clients[client_id] = await create_client(session, insurance, name, client_id=client_id)
        start_hours = {CLIENT_1: "09:00", CLIENT_2: "11:00", CLIENT_3: "13:00"}
        end_hours = {CLIENT_1: "10:00", CLIENT_2: "12:00", CLIENT_3: "14:00"}
        for client_id, client in clients.items():
            await create_timesheet(
                session,
                provider,
                client,
                [(MONDAY, start_hours[client_id], end_hours[client_id], "DR")],
            )
        await session.commit()

        class FailingGenerator(InvoiceGenerator):
            async def _mark_entries_invoiced(self, session, key, entry_ids):
                if key.client_id == CLIENT_2:
                    raise RuntimeError("disk full")
                await super()._mark_entries_invoiced(session, key, entry_ids)

        generator = FailingGenerator(
            session_factory, emitter=AuditEmitter(default_handler=False), settings=settings
        )

        summary = await generator.generate(WEEK)

        assert [o.client_id for o in summary.created] == [CLIENT_1, CLIENT_3]
        assert summary.errors == ["Two (2025-01-06): disk full"]

        invoices = await _invoices(session)
        assert sorted(i.client_id for i in invoices) == [CLIENT_1, CLIENT_3]
        # The failed group's number was rolled back with it
        assert [i.invoice_number[-4:] for i in invoices] == ["0001", "0002"]

        open_entries = await session.scalar(
            select(func.count())
            .select_from(TimesheetEntry)
            .join(Timesheet, TimesheetEntry.timesheet_id == Timesheet.timesheet_id)
            .where(Timesheet.client_id == CLIENT_2, TimesheetEntry.invoiced.is_(False))
        )
        assert open_entries == 1

        # The failed group is picked up by the next run
        retry = await InvoiceGenerator(
            session_factory, emitter=AuditEmitter(default_handler=False), settings=settings
        ).generate(WEEK)
        assert [o.client_id for o in retry.created] == [CLIENT_2]
        assert retry.skipped_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_run_is_reported_as_skip(self, session, session_factory, settings):
        """An invoice committed after the pre-check trips the period constraint."""
        insurance = await create_insurance(session)
        provider = await create_provider(session)
        client = await create_client(session, insurance)
        await create_timesheet(session, provider, client, [(MONDAY, "09:00", "10:00", "DR")])
        session.add(
            Invoice(
                invoice_number="CONCURRENT-1",
                client_id=client.client_id,
                start_date=WEEK_START,
                end_date=WEEK_END,
                period_key="2025-01-06",
                status="DRAFT",
                total_amount=Decimal("80.00"),
                paid_amount=Decimal("0.00"),
                adjustments=Decimal("0.00"),
                outstanding=Decimal("80.00"),
            )
        )
        await session.commit()

        class RacingGenerator(InvoiceGenerator):
            async def _existing_invoice(self, session, key):
                return None

        generator = RacingGenerator(
            session_factory, emitter=AuditEmitter(default_handler=False), settings=settings
        )

        summary = await generator.generate(WEEK)

        assert summary.success
        assert summary.created_count == 0
        assert summary.skipped[0].reason == "already invoiced (concurrent run)"
        assert await session.scalar(select(func.count()).select_from(Invoice)) == 1
        open_entries = await session.scalar(
            select(func.count())
            .select_from(TimesheetEntry)
            .where(TimesheetEntry.invoiced.is_(False))
        )
        assert open_entries == 1
