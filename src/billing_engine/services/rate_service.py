"""Payer rate table maintenance with append-only history."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.calculators.billing import InvalidRateError
from billing_engine.events import AuditAction, AuditEmitter, AuditEvent
from billing_engine.models import Insurance, InsuranceRateHistory

logger = logging.getLogger(__name__)

RATE_FIELDS = ("rate_per_unit", "regular_rate_per_unit", "bcba_rate_per_unit")
UNIT_FIELDS = ("regular_unit_minutes", "bcba_unit_minutes")


class InsuranceNotFoundError(Exception):
    """Raised when an insurance record does not exist."""

    def __init__(self, insurance_id: UUID):
        self.insurance_id = insurance_id
        super().__init__(f"Insurance {insurance_id} not found")


class RateTableService:
    """Updates payer rates for future invoices.

    Invoice lines snapshot the rate they were billed at, so changing a rate
    never alters an existing invoice. Each changed field appends one
    history row.
    """

    def __init__(self, session: AsyncSession, emitter: AuditEmitter | None = None):
        self.session = session
        self.emitter = emitter or AuditEmitter()

    async def update_rates(
        self,
        insurance_id: UUID,
        changes: dict[str, Any],
        actor_id: UUID | None = None,
    ) -> list[InsuranceRateHistory]:
        """Apply rate/unit-size changes and record their history.

        Raises:
            InsuranceNotFoundError: If the insurance does not exist
            InvalidRateError: If a rate is not positive or a unit size is not a positive integer
            ValueError: If a field is not a rate field
        """
        unknown = set(changes) - set(RATE_FIELDS) - set(UNIT_FIELDS)
        if unknown:
            raise ValueError(f"Not rate fields: {', '.join(sorted(unknown))}")

        result = await self.session.execute(
            select(Insurance).where(Insurance.insurance_id == insurance_id).with_for_update()
        )
        insurance = result.scalar_one_or_none()
        if insurance is None:
            raise InsuranceNotFoundError(insurance_id)

        history: list[InsuranceRateHistory] = []
        for name in sorted(changes):
            new_value = self._validate(name, changes[name])
            old_value = getattr(insurance, name)
            if old_value == new_value:
                continue
            setattr(insurance, name, new_value)
            row = InsuranceRateHistory(
                insurance_id=insurance_id,
                field=name,
                old_value=None if old_value is None else str(old_value),
                new_value=None if new_value is None else str(new_value),
                changed_by=actor_id,
            )
            self.session.add(row)
            history.append(row)

        if history:
            await self.session.flush()
            logger.info(
                "Updated %d rate field(s) on insurance %s", len(history), insurance.name
            )
            self.emitter.emit_after_commit(
                self.session,
                AuditEvent(
                    action=AuditAction.RATE_CHANGE,
                    entity_type="insurance",
                    entity_id=insurance_id,
                    actor_id=actor_id,
                    metadata={row.field: row.new_value for row in history},
                ),
            )
        return history

    async def get_history(self, insurance_id: UUID) -> list[InsuranceRateHistory]:
        result = await self.session.execute(
            select(InsuranceRateHistory)
            .where(InsuranceRateHistory.insurance_id == insurance_id)
            .order_by(InsuranceRateHistory.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    def _validate(name: str, value: Any) -> Decimal | int | None:
        if value is None:
            return None
        if name in RATE_FIELDS:
            rate = Decimal(str(value))
            if rate <= 0:
                raise InvalidRateError(rate, None, f"{name} must be positive")
            return rate
        minutes = Decimal(str(value))
        if minutes <= 0 or minutes != minutes.to_integral_value():
            raise InvalidRateError(None, None, f"{name} must be a positive whole number")
        return int(minutes)
