"""Aggregate contributors.

A chunk keeps running aggregates over its entries.  Which aggregates a
chunk keeps, and which ``Delta`` field keys move them, is decided by a
set of contributors rather than by subclassing the chunk: a new entry
type registers the contributors it needs.

The entry count is owned by the chunk itself and is not a contributor.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

from chunk_ledger.domain.entries import AMOUNT, SHARES, Entry, LedgerEntry, StockEntry

TOTAL = "total"
SHARE_TOTAL = "share_total"
ENTRY_COUNT = "entry_count"


class AggregateContributor(Protocol):
    """Maps an entry to the aggregate values it contributes."""

    @property
    def fields(self) -> tuple[str, ...]:
        """Aggregate names this contributor owns."""
        ...

    @property
    def tracked_deltas(self) -> Mapping[str, str]:
        """``Delta.field_key`` → aggregate name it adjusts."""
        ...

    def contribute(self, entry: Entry) -> Mapping[str, float]:
        """``{aggregate: value}`` contributed by *entry*."""
        ...


class FieldSumContributor:
    """Sums one numeric entry field into one aggregate."""

    def __init__(self, field_key: str, aggregate: str) -> None:
        self._field_key = field_key
        self._aggregate = aggregate

    @property
    def fields(self) -> tuple[str, ...]:
        return (self._aggregate,)

    @property
    def tracked_deltas(self) -> Mapping[str, str]:
        return {self._field_key: self._aggregate}

    def contribute(self, entry: Entry) -> Mapping[str, float]:
        return {self._aggregate: float(entry.contributions().get(self._field_key, 0.0))}

    def __repr__(self) -> str:
        return f"FieldSumContributor({self._field_key!r} -> {self._aggregate!r})"


AMOUNT_CONTRIBUTOR = FieldSumContributor(AMOUNT, TOTAL)
SHARE_CONTRIBUTOR = FieldSumContributor(SHARES, SHARE_TOTAL)


class ContributorSet:
    """Several contributors acting as one."""

    def __init__(self, contributors: Iterable[AggregateContributor]) -> None:
        self._contributors = tuple(contributors)
        fields: list[str] = []
        tracked: dict[str, str] = {}
        for contributor in self._contributors:
            for name in contributor.fields:
                if name == ENTRY_COUNT or name in fields:
                    raise ValueError(f"Aggregate {name!r} is owned twice")
                fields.append(name)
            tracked.update(contributor.tracked_deltas)
        self._fields = tuple(fields)
        self._tracked = tracked

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    @property
    def tracked_deltas(self) -> Mapping[str, str]:
        return dict(self._tracked)

    def aggregate_for(self, field_key: str) -> str | None:
        return self._tracked.get(field_key)

    def contribute(self, entry: Entry) -> dict[str, float]:
        values: dict[str, float] = {}
        for contributor in self._contributors:
            values.update(contributor.contribute(entry))
        return values

    def zero(self) -> dict[str, float]:
        return {name: 0.0 for name in self._fields}

    def __repr__(self) -> str:
        return f"ContributorSet({list(self._contributors)!r})"


class ContributorRegistry:
    """Entry type name → contributor set."""

    def __init__(self) -> None:
        self._sets: dict[str, ContributorSet] = {}

    def register(self, type_name: str, *contributors: AggregateContributor) -> ContributorSet:
        contributor_set = ContributorSet(contributors)
        self._sets[type_name] = contributor_set
        return contributor_set

    def for_type(self, type_name: str) -> ContributorSet:
        try:
            return self._sets[type_name]
        except KeyError:
            raise LookupError(f"No contributors registered for {type_name!r}") from None

    def for_entry(self, entry: Entry) -> ContributorSet:
        return self.for_type(getattr(entry, "type_name", type(entry).__name__))


def default_registry() -> ContributorRegistry:
    """Cash entries keep a total; stock entries also keep a share total."""
    registry = ContributorRegistry()
    registry.register(LedgerEntry.type_name, AMOUNT_CONTRIBUTOR)
    registry.register(StockEntry.type_name, AMOUNT_CONTRIBUTOR, SHARE_CONTRIBUTOR)
    return registry
