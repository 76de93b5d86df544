"""Deterministic group builder for client/week and employee groupings."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import TypeVar
from uuid import UUID

from billing_engine.calculators.clock import week_end, week_key, week_start

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True)
class GroupKey:
    """A (client, billing week) invoicing cell."""

    client_id: UUID
    week_start: date

    @classmethod
    def for_day(cls, client_id: UUID, day: date) -> GroupKey:
        return cls(client_id=client_id, week_start=week_start(day))

    @property
    def week_end(self) -> date:
        return week_end(self.week_start)

    @property
    def period_key(self) -> str:
        return week_key(self.week_start)

    def format(self) -> str:
        return f"{self.client_id}|{self.period_key}"

    def __str__(self) -> str:
        return self.format()


def build_groups(
    items: Iterable[T],
    key_fn: Callable[[T], K],
    sort_key: Callable[[K], str] = str,
) -> dict[K, list[T]]:
    """Group items by key.

    Groups are ordered by the formatted key and members keep their input
    order, so the same input always produces the same mapping.
    """
    groups: dict[K, list[T]] = {}
    for item in items:
        groups.setdefault(key_fn(item), []).append(item)
    return {key: groups[key] for key in sorted(groups, key=sort_key)}


def group_by_client_week(
    items: Iterable[T],
    client_of: Callable[[T], UUID],
    day_of: Callable[[T], date],
) -> dict[GroupKey, list[T]]:
    """Group items into (client, Monday-start week) cells."""
    return build_groups(
        items,
        lambda item: GroupKey.for_day(client_of(item), day_of(item)),
        GroupKey.format,
    )
