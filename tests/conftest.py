"""Pytest fixtures for billing engine tests."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billing_engine.calculators.clock import civil_midnight_utc
from billing_engine.config import Settings
from billing_engine.database import make_session_factory
from billing_engine.models import (
    Base,
    Client,
    Employee,
    Insurance,
    PayrollImport,
    PayrollImportRow,
    Provider,
    Timesheet,
    TimesheetEntry,
)

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_TIMEZONE = "America/New_York"

# Week of Monday 2025-01-06 .. Sunday 2025-01-12 (EST, UTC-5)
WEEK_START = date(2025, 1, 6)
WEEK_END = date(2025, 1, 12)


@pytest.fixture
def settings() -> Settings:
    """Settings used by services under test."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        civil_timezone=TEST_TIMEZONE,
        invoice_number_prefix="INV",
        invoice_number_width=4,
        default_unit_minutes=15,
        log_level="DEBUG",
    )


@pytest.fixture
async def engine():
    """Create test database engine with a fresh schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Seed helpers
# ============================================================================


async def create_insurance(
    session: AsyncSession,
    name: str = "Blue Payer",
    regular_rate: Decimal | None = Decimal("20.00"),
    regular_unit: int | None = 15,
    bcba_rate: Decimal | None = None,
    bcba_unit: int | None = None,
    legacy_rate: Decimal | None = None,
) -> Insurance:
    insurance = Insurance(
        insurance_id=uuid4(),
        name=name,
        rate_per_unit=legacy_rate,
        regular_rate_per_unit=regular_rate,
        regular_unit_minutes=regular_unit,
        bcba_rate_per_unit=bcba_rate,
        bcba_unit_minutes=bcba_unit,
    )
    session.add(insurance)
    await session.flush()
    return insurance


async def create_provider(session: AsyncSession, name: str = "Pat Provider") -> Provider:
    provider = Provider(provider_id=uuid4(), name=name)
    session.add(provider)
    await session.flush()
    return provider


async def create_client(
    session: AsyncSession,
    insurance: Insurance | None,
    name: str = "Casey Client",
    client_id: UUID | None = None,
) -> Client:
    client = Client(
        client_id=client_id or uuid4(),
        name=name,
        insurance_id=insurance.insurance_id if insurance else None,
    )
    session.add(client)
    await session.flush()
    return client


async def create_timesheet(
    session: AsyncSession,
    provider: Provider,
    client: Client,
    entries: list[tuple[date, str, str, str]],
    start_date: date = WEEK_START,
    end_date: date = WEEK_END,
    status: str = "APPROVED",
    is_bcba: bool = False,
) -> Timesheet:
    """Create a timesheet; entries are (civil day, start, end, tag)."""
    timesheet = Timesheet(
        timesheet_id=uuid4(),
        provider_id=provider.provider_id,
        client_id=client.client_id,
        insurance_id=client.insurance_id,
        is_bcba=is_bcba,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    session.add(timesheet)
    await session.flush()

    for day, start, end, tag in entries:
        start_h, start_m = map(int, start.split(":"))
        end_h, end_m = map(int, end.split(":"))
        session.add(
            TimesheetEntry(
                entry_id=uuid4(),
                timesheet_id=timesheet.timesheet_id,
                date=civil_midnight_utc(day, TEST_TIMEZONE),
                start_time=start,
                end_time=end,
                minutes=(end_h * 60 + end_m) - (start_h * 60 + start_m),
                notes=tag,
            )
        )
    await session.flush()
    return timesheet


async def create_employee(
    session: AsyncSession,
    name: str = "Emery Employee",
    hourly_rate: Decimal = Decimal("20.00"),
    overtime_enabled: bool = False,
    overtime_rate: Decimal | None = None,
    overtime_start: int | None = None,
) -> Employee:
    employee = Employee(
        employee_id=uuid4(),
        full_name=name,
        default_hourly_rate=hourly_rate,
        overtime_enabled=overtime_enabled,
        overtime_rate_hourly=overtime_rate,
        overtime_start_time=overtime_start,
    )
    session.add(employee)
    await session.flush()
    return employee


async def create_import(
    session: AsyncSession,
    rows: list[tuple[Employee | None, date, datetime | None, datetime | None, int | None]],
    name: str = "January clock export",
) -> PayrollImport:
    """Create an import; rows are (employee, work date, in, out, minutes)."""
    payroll_import = PayrollImport(import_id=uuid4(), name=name)
    session.add(payroll_import)
    await session.flush()

    for employee, work_date, in_time, out_time, minutes in rows:
        session.add(
            PayrollImportRow(
                row_id=uuid4(),
                import_id=payroll_import.import_id,
                linked_employee_id=employee.employee_id if employee else None,
                employee_name_raw=employee.full_name if employee else "Unknown Person",
                work_date=work_date,
                in_time=in_time,
                out_time=out_time,
                minutes_worked=minutes,
            )
        )
    await session.flush()
    return payroll_import
