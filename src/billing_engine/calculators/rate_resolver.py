"""Payer rate and unit-size resolution per timesheet kind."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from billing_engine.calculators.billing import InvalidRateError
from billing_engine.calculators.types import RateSelection, TimesheetKind

if TYPE_CHECKING:
    from billing_engine.models import Insurance


class RateNotFoundError(Exception):
    """Raised when a payer has no usable rate for a timesheet kind."""

    def __init__(self, insurance_id: UUID | None, kind: TimesheetKind):
        self.insurance_id = insurance_id
        self.kind = kind
        if insurance_id is None:
            message = f"No insurance assigned; cannot bill {kind.value} timesheets"
        else:
            message = f"No {kind.value} rate configured for insurance {insurance_id}"
        super().__init__(message)


class RateResolver:
    """Resolves (rate, unit size) for a payer.

    Rate selection priority:
    1. Regular timesheets: regular rate, then legacy single rate
    2. BCBA timesheets: BCBA rate, then regular rate, then legacy single rate

    Unit size falls back kind-specific -> regular -> configured default.
    A missing rate is reported, never guessed.
    """

    def __init__(self, default_unit_minutes: int = 15):
        self.default_unit_minutes = default_unit_minutes

    def resolve(self, insurance: Insurance | None, kind: TimesheetKind) -> RateSelection:
        """Resolve the rate pair for ``kind``.

        Raises:
            RateNotFoundError: If no rate is configured (or no insurance)
            InvalidRateError: If the selected rate or unit size is not positive
        """
        if insurance is None:
            raise RateNotFoundError(None, kind)

        candidates: list[tuple[str, Decimal | None]] = []
        if kind is TimesheetKind.BCBA:
            candidates.append(("bcba", insurance.bcba_rate_per_unit))
        candidates.append(("regular", insurance.regular_rate_per_unit))
        candidates.append(("legacy", insurance.rate_per_unit))

        source, rate = next(
            ((name, value) for name, value in candidates if value is not None),
            (None, None),
        )
        if source is None or rate is None:
            raise RateNotFoundError(insurance.insurance_id, kind)

        unit_minutes = self._unit_minutes(insurance, kind)
        if rate <= 0:
            raise InvalidRateError(rate, unit_minutes, f"{source} rate must be positive")
        if unit_minutes <= 0:
            raise InvalidRateError(rate, unit_minutes, "unit size must be positive")

        return RateSelection(
            rate_per_unit=Decimal(rate),
            unit_minutes=unit_minutes,
            kind=kind,
            source=source,
        )

    def _unit_minutes(self, insurance: Insurance, kind: TimesheetKind) -> int:
        if kind is TimesheetKind.BCBA and insurance.bcba_unit_minutes is not None:
            return insurance.bcba_unit_minutes
        if insurance.regular_unit_minutes is not None:
            return insurance.regular_unit_minutes
        return self.default_unit_minutes


def resolve_rate(
    insurance: Insurance | None,
    kind: TimesheetKind,
    default_unit_minutes: int = 15,
) -> RateSelection:
    """Convenience wrapper around ``RateResolver.resolve``."""
    return RateResolver(default_unit_minutes).resolve(insurance, kind)
