"""Atomic per-year invoice number allocation."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.models import Invoice, InvoiceSequence

logger = logging.getLogger(__name__)


class InvoiceNumberSequence:
    """Allocates ``PREFIX-YEAR-XXXX`` invoice numbers.

    One counter row per (prefix, year) is incremented with a single UPDATE,
    so concurrent allocators serialize on the row lock instead of counting
    existing invoices. Allocation happens in the caller's transaction; a
    rolled-back invoice also rolls back its number.
    """

    def __init__(self, prefix: str = "INV", width: int = 4):
        self.prefix = prefix
        self.width = width

    def format(self, year: int, value: int) -> str:
        return f"{self.prefix}-{year}-{value:0{self.width}d}"

    async def next_number(self, session: AsyncSession, year: int) -> str:
        """Allocate the next invoice number for ``year``."""
        value = await self.next_value(session, year)
        return self.format(year, value)

    async def next_value(self, session: AsyncSession, year: int) -> int:
        if not await self._increment(session, year):
            await self._create_counter(session, year)
            if not await self._increment(session, year):
                raise RuntimeError(f"Invoice sequence {self.prefix}/{year} could not be created")

        value = await session.scalar(
            select(InvoiceSequence.last_value).where(
                InvoiceSequence.prefix == self.prefix,
                InvoiceSequence.year == year,
            )
        )
        return int(value)

    async def _increment(self, session: AsyncSession, year: int) -> bool:
        result = await session.execute(
            update(InvoiceSequence)
            .where(
                InvoiceSequence.prefix == self.prefix,
                InvoiceSequence.year == year,
            )
            .values(last_value=InvoiceSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def _create_counter(self, session: AsyncSession, year: int) -> None:
        """Insert the year's counter row unless a concurrent caller already did."""
        seed = await self._highest_issued(session, year)
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(InvoiceSequence)
        elif dialect == "sqlite":
            stmt = sqlite.insert(InvoiceSequence)
        else:
            raise NotImplementedError(f"Invoice sequence not supported on {dialect}")

        await session.execute(
            stmt.values(prefix=self.prefix, year=year, last_value=seed).on_conflict_do_nothing(
                index_elements=["prefix", "year"]
            )
        )
        logger.info("Created invoice sequence %s/%s starting after %d", self.prefix, year, seed)

    async def _highest_issued(self, session: AsyncSession, year: int) -> int:
        """Highest number already issued for the year (0 if none).

        Continues numbering for invoices created before the counter existed.
        Suffixes are compared as integers, not as text.
        """
        pattern = f"{self.prefix}-{year}-%"
        numbers = await session.scalars(
            select(Invoice.invoice_number).where(Invoice.invoice_number.like(pattern))
        )
        highest = 0
        for number in numbers:
            suffix = number.rsplit("-", 1)[1]
            if not suffix.isdigit():
                logger.warning("Ignoring unparseable invoice number %s", number)
                continue
            highest = max(highest, int(suffix))
        return highest
