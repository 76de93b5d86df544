"""Scheduling conflict detection for candidate timesheet entries."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from itertools import combinations
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.calculators.clock import (
    civil_date,
    civil_day_bounds_utc,
    is_valid_time,
    parse_time,
    ranges_overlap,
    to_12_hour,
    to_24_hour,
    validate_range,
)
from billing_engine.calculators.types import (
    CandidateEntry,
    ConflictingEntry,
    EntryType,
    OverlapConflict,
    OverlapScope,
)
from billing_engine.config import Settings, get_settings
from billing_engine.models import Timesheet, TimesheetEntry

logger = logging.getLogger(__name__)


class EntryValidationError(Exception):
    """Raised when candidate entries cannot be checked (bad date or times)."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid entries: " + "; ".join(problems))


@dataclass(frozen=True)
class _Interval:
    index: int
    day: date
    start: int
    end: int
    entry_type: EntryType


@dataclass(frozen=True)
class _PersistedInterval:
    interval: _Interval
    timesheet_id: UUID
    entry_id: UUID
    provider_id: UUID
    client_id: UUID


class OverlapDetector:
    """Detects conflicts between candidate entries and the schedule.

    Conflicts are reported, never resolved: the caller decides whether to
    reject the submission. Detection only reads; it holds no locks, so two
    concurrent submissions can still both pass.

    BCBA timesheets are exempt and never take part in the persisted scan.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    @property
    def tz(self) -> str:
        return self.settings.civil_timezone

    async def detect(
        self,
        provider_id: UUID,
        client_id: UUID,
        entries: Sequence[CandidateEntry],
        exclude_timesheet_id: UUID | None = None,
        provider_name: str | None = None,
        client_name: str | None = None,
    ) -> list[OverlapConflict]:
        """Return every conflict for ``entries``.

        Args:
            provider_id: Provider the entries belong to
            client_id: Client the entries belong to
            entries: Candidate entries, not yet persisted
            exclude_timesheet_id: Timesheet being edited; its own entries are ignored
            provider_name: Display name used in messages
            client_name: Display name used in messages

        Raises:
            EntryValidationError: If any candidate has a bad date or time range
        """
        candidates = self._normalize(entries)
        if not candidates:
            return []

        conflicts = self._internal_conflicts(candidates, provider_id, client_id)

        persisted = await self._load_persisted(
            provider_id,
            client_id,
            {c.day for c in candidates},
            exclude_timesheet_id,
        )
        provider_label = provider_name or "Provider"
        client_label = client_name or "Client"

        for candidate in candidates:
            for other in persisted:
                if other.interval.day != candidate.day:
                    continue
                if not ranges_overlap(
                    candidate.start, candidate.end, other.interval.start, other.interval.end
                ):
                    continue

                scope = self._scope(other, provider_id, client_id)
                if scope is None:
                    continue
                conflicts.append(
                    OverlapConflict(
                        date=candidate.day,
                        start_time=to_24_hour(candidate.start),
                        end_time=to_24_hour(candidate.end),
                        entry_type=candidate.entry_type,
                        scope=scope,
                        provider_id=provider_id,
                        client_id=client_id,
                        message=self._message(scope, candidate, other, provider_label, client_label),
                        conflicting=ConflictingEntry(
                            timesheet_id=other.timesheet_id,
                            entry_id=other.entry_id,
                            start_time=to_24_hour(other.interval.start),
                            end_time=to_24_hour(other.interval.end),
                            entry_type=other.interval.entry_type,
                        ),
                    )
                )

        if conflicts:
            logger.info(
                "Found %d overlap conflict(s) for provider %s / client %s",
                len(conflicts),
                provider_id,
                client_id,
            )
        return conflicts

    def _normalize(self, entries: Sequence[CandidateEntry]) -> list[_Interval]:
        problems: list[str] = []
        intervals: list[_Interval] = []

        for index, entry in enumerate(entries):
            label = f"Entry {index + 1}"
            try:
                day = civil_date(entry.date, self.tz)
            except (TypeError, ValueError):
                problems.append(f"{label}: invalid date {entry.date!r}")
                continue

            start = parse_time(entry.start_time)
            end = parse_time(entry.end_time)
            error = validate_range(start, end)
            if error:
                problems.append(
                    f"{label} on {day.isoformat()}: {error} "
                    f"({entry.start_time!r} - {entry.end_time!r})"
                )
                continue
            intervals.append(_Interval(index, day, start, end, entry.entry_type))

        if problems:
            raise EntryValidationError(problems)
        return intervals

    def _internal_conflicts(
        self,
        candidates: list[_Interval],
        provider_id: UUID,
        client_id: UUID,
    ) -> list[OverlapConflict]:
        conflicts = []
        for a, b in combinations(candidates, 2):
            if a.day != b.day or not ranges_overlap(a.start, a.end, b.start, b.end):
                continue
            conflicts.append(
                OverlapConflict(
                    date=a.day,
                    start_time=to_24_hour(a.start),
                    end_time=to_24_hour(a.end),
                    entry_type=a.entry_type,
                    scope=OverlapScope.INTERNAL,
                    provider_id=provider_id,
                    client_id=client_id,
                    message=(
                        f"Entries {a.index + 1} and {b.index + 1} overlap on "
                        f"{a.day.isoformat()}: {to_12_hour(a.start)}-{to_12_hour(a.end)} and "
                        f"{to_12_hour(b.start)}-{to_12_hour(b.end)}"
                    ),
                )
            )
        return conflicts

    async def _load_persisted(
        self,
        provider_id: UUID,
        client_id: UUID,
        days: set[date],
        exclude_timesheet_id: UUID | None,
    ) -> list[_PersistedInterval]:
        """Load persisted entries on the candidate days.

        The UTC window is widened by a civil day on each side, then every
        row is re-bucketed onto its exact civil date.
        """
        window_start, _ = civil_day_bounds_utc(min(days) - timedelta(days=1), self.tz)
        _, window_end = civil_day_bounds_utc(max(days) + timedelta(days=1), self.tz)

        stmt = (
            select(
                TimesheetEntry,
                Timesheet.provider_id,
                Timesheet.client_id,
            )
            .join(Timesheet, TimesheetEntry.timesheet_id == Timesheet.timesheet_id)
            .where(
                TimesheetEntry.date >= window_start,
                TimesheetEntry.date < window_end,
                Timesheet.deleted_at.is_(None),
                Timesheet.is_bcba.is_(False),
                or_(Timesheet.provider_id == provider_id, Timesheet.client_id == client_id),
            )
            .order_by(TimesheetEntry.date, TimesheetEntry.start_time)
        )
        if exclude_timesheet_id is not None:
            stmt = stmt.where(Timesheet.timesheet_id != exclude_timesheet_id)

        result = await self.session.execute(stmt)
        persisted = []
        for entry, entry_provider_id, entry_client_id in result.all():
            day = civil_date(entry.date, self.tz)
            if day not in days:
                continue
            start = parse_time(entry.start_time)
            end = parse_time(entry.end_time)
            if not (is_valid_time(start) and is_valid_time(end)):
                logger.warning("Skipping stored entry %s with unparseable times", entry.entry_id)
                continue
            persisted.append(
                _PersistedInterval(
                    interval=_Interval(-1, day, start, end, EntryType.from_notes(entry.notes)),
                    timesheet_id=entry.timesheet_id,
                    entry_id=entry.entry_id,
                    provider_id=entry_provider_id,
                    client_id=entry_client_id,
                )
            )
        return persisted

    @staticmethod
    def _scope(
        other: _PersistedInterval, provider_id: UUID, client_id: UUID
    ) -> OverlapScope | None:
        provider_match = other.provider_id == provider_id
        client_match = other.client_id == client_id
        if provider_match and client_match:
            return OverlapScope.BOTH
        if provider_match:
            return OverlapScope.PROVIDER
        if client_match:
            return OverlapScope.CLIENT
        return None

    @staticmethod
    def _message(
        scope: OverlapScope,
        candidate: _Interval,
        other: _PersistedInterval,
        provider_label: str,
        client_label: str,
    ) -> str:
        if scope is OverlapScope.BOTH:
            who = f"{provider_label} and {client_label} are"
        elif scope is OverlapScope.PROVIDER:
            who = f"{provider_label} is"
        else:
            who = f"{client_label} is"
        return (
            f"{who} already scheduled {to_12_hour(other.interval.start)}-"
            f"{to_12_hour(other.interval.end)} on {candidate.day.isoformat()} "
            f"(timesheet {other.timesheet_id}); conflicts with "
            f"{to_12_hour(candidate.start)}-{to_12_hour(candidate.end)}"
        )
