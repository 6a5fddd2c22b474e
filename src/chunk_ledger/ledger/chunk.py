"""Entry chunks: bounded, persisted groups of entries with live aggregates.

A chunk owns its entries and keeps a set of running aggregates (the
entry count plus whatever its contributors define, e.g. ``total`` and
``share_total``).  Once every published delta has been delivered, the
aggregates equal a full re-summation of the current entries:

* on load they *are* a full re-summation (ground truth, whatever was
  maintained before the file was written);
* ``add_entry`` / ``remove_entry`` adjust them by the entry's
  contribution;
* entries mutated elsewhere publish ``update`` events carrying a
  ``Delta``; the chunk is subscribed by the entry's bus identifier and
  adjusts the matching aggregate by ``new - old``.

For every tracked entry the chunk remembers the contribution it has
actually folded in and the event sequence at which tracking started.
Removal subtracts the folded contribution, not the entry's current
values, and a delta sequenced before tracking started is already part
of the folded contribution and is skipped.  Both hold because entry
mutation and tracking share ``LedgerContext.mutation_lock``.

There is no de-duplication beyond that: delivering the same ``Delta``
event twice moves the aggregate twice.

Each chunk also keeps the date span (``earliest`` / ``latest``) of its
entries and the calendar ``year`` it was opened for, which
``ChunkManager`` uses for routing.

Lifecycle
---------
``OPEN`` → ``SEALED`` when the entry count reaches capacity (no further
adds; removals and deltas still apply).  ``OPEN``/``SEALED`` →
``DELETED`` when the last entry is removed; the file is deleted and
every further mutation raises ``ChunkDeletedError``.

Routing entries to a fresh chunk when one is full is the caller's job
(see ``ChunkManager``).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel

from chunk_ledger.bus.events import Event, EventKind, next_sequence
from chunk_ledger.core.errors import (
    BusHaltedError,
    CapacityExceeded,
    ChunkDeletedError,
    ChunkError,
    EntryNotFound,
    ParseError,
)
from chunk_ledger.core.grammar import extract_all_top_level_bracket_sections
from chunk_ledger.core.ids import new_id
from chunk_ledger.domain.entries import OCCURRED_AT, Entry, LedgerEntry

from .contributors import ENTRY_COUNT, ContributorSet

if TYPE_CHECKING:
    from chunk_ledger.context import LedgerContext

logger = logging.getLogger(__name__)


class ChunkState(str, Enum):
    OPEN = "open"
    SEALED = "sealed"
    DELETED = "deleted"


class ChunkSnapshot(BaseModel):
    """Point-in-time aggregate view for reporting."""

    chunk_id: str
    state: ChunkState
    entry_count: int
    aggregates: dict[str, float]
    year: int | None = None
    earliest: datetime | None = None
    latest: datetime | None = None
    digest: str | None = None
    dirty: bool = False
    path: str = ""


@dataclass
class _Tracked:
    identifier: str
    since: int
    folded: dict[str, float]


class Chunk:
    """A bounded, persisted collection of entries.

    Build with ``Chunk.create`` (new chunk from a first entry) or
    ``Chunk.load`` (existing file, digest-verified).  All mutation is
    serialized by a per-chunk re-entrant lock, since direct calls and
    bus-delivered deltas touch the same aggregates from different threads.
    Direct calls take the context's ``mutation_lock`` before the chunk
    lock; the dispatch thread only ever takes the chunk lock.
    """

    def __init__(
        self,
        chunk_id: str,
        path: Path,
        context: LedgerContext,
        contributors: ContributorSet,
        capacity: int,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.identifier = chunk_id
        self._path = Path(path)
        self._ctx = context
        self._contributors = contributors
        self._capacity = capacity
        self._lock = threading.RLock()
        self._entries: dict[str, Entry] = {}
        self._tracked: dict[str, _Tracked] = {}
        self._keys_by_id: dict[str, str] = {}
        self._aggregates: dict[str, float] = contributors.zero()
        self._entry_count = 0
        self._state = ChunkState.OPEN
        self._year: int | None = None
        self._earliest: datetime | None = None
        self._latest: datetime | None = None
        self._digest: str | None = None
        self._dirty = False
        context.registry.register_identifier(self)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        directory: str | Path,
        first_entry: Entry,
        context: LedgerContext,
        contributors: ContributorSet | None = None,
        capacity: int | None = None,
        *,
        commit: bool = True,
    ) -> Chunk:
        """Open a new chunk in *directory* holding *first_entry*.

        Aggregates are seeded straight from the entry's contribution; the
        incremental add path is not used for the first entry.  The chunk's
        year is the first entry's year.
        """
        if contributors is None:
            contributors = context.contributors.for_entry(first_entry)
        if capacity is None:
            capacity = context.settings.chunk.capacity
        chunk_id = new_id()
        path = Path(directory) / f"{chunk_id}{context.settings.chunk.file_extension}"
        chunk = cls(chunk_id, path, context, contributors, capacity)

        with context.mutation_lock, chunk._lock:
            chunk._entries[first_entry.key] = first_entry
            folded = chunk._track(first_entry)
            chunk._aggregates = {**contributors.zero(), **folded}
            chunk._entry_count = 1
            chunk._year = first_entry.occurred_at.year
            chunk._earliest = chunk._latest = first_entry.occurred_at
            chunk._dirty = True
            if chunk._entry_count >= capacity:
                chunk._state = ChunkState.SEALED

        chunk._emit(Event(EventKind.NEW_CHUNK, chunk, chunk.identifier))
        logger.debug("Created chunk %s at %s", chunk_id, path)
        if commit:
            chunk.commit()
        return chunk

    @classmethod
    def load(
        cls,
        path: str | Path,
        expected_digest: str | None,
        context: LedgerContext,
        contributors: ContributorSet | None = None,
        capacity: int | None = None,
    ) -> Chunk:
        """Rebuild a chunk from *path*, verifying its digest first.

        The loaded chunk's year is the year of its earliest entry.

        Raises
        ------
        IntegrityMismatch
            The file's digest is not *expected_digest*; nothing is loaded.
        ParseError
            The verified content is malformed.
        """
        path = Path(path)
        body, digest = context.files.read(path, expected_digest)
        entries = [
            context.entry_codec.decode(section)
            for section in extract_all_top_level_bracket_sections(body)
        ]
        seen: set[str] = set()
        for entry in entries:
            if entry.key in seen:
                raise ParseError(f"Duplicate entry key {entry.key!r} in {path}", body)
            seen.add(entry.key)
        if contributors is None:
            sample = entries[0] if entries else LedgerEntry()
            contributors = context.contributors.for_entry(sample)
        if capacity is None:
            capacity = context.settings.chunk.capacity

        chunk = cls(path.stem, path, context, contributors, capacity)
        with context.mutation_lock, chunk._lock:
            for entry in entries:
                chunk._entries[entry.key] = entry
                chunk._track(entry)
            chunk.recompute()
            if chunk._earliest is not None:
                chunk._year = chunk._earliest.year
            chunk._digest = digest
            chunk._dirty = False
            if chunk._entry_count >= capacity:
                chunk._state = ChunkState.SEALED
        logger.debug("Loaded chunk %s (%d entries)", chunk.identifier, chunk._entry_count)
        return chunk

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_entry(self, entry: Entry) -> None:
        """Append *entry* and fold its contribution into the aggregates.

        Raises
        ------
        CapacityExceeded
            The chunk is sealed or full.
        """
        with self._ctx.mutation_lock, self._lock:
            self._ensure_live()
            if self._state is ChunkState.SEALED or self._entry_count >= self._capacity:
                raise CapacityExceeded(self.identifier, self._capacity)
            if entry.key in self._entries:
                raise ChunkError(f"Entry {entry.key!r} already in chunk {self.identifier}")

            self._entries[entry.key] = entry
            self._entry_count += 1
            for name, value in self._track(entry).items():
                self._aggregates[name] += value
            self._widen_span(entry.occurred_at)
            self._dirty = True

            self._emit(Event(EventKind.NEW_ENTRY, entry, self.identifier))
            if self._entry_count >= self._capacity:
                self._state = ChunkState.SEALED
                self._emit(Event(EventKind.CHUNK_SEALED, self, self.identifier))
                logger.debug("Chunk %s sealed at %d entries", self.identifier, self._capacity)

    def remove_entry(self, entry_key: str) -> Entry:
        """Remove the entry with *entry_key* and return it.

        The aggregates lose exactly what was folded in for the entry, even
        if deltas for it are still queued on the bus.  Removing the last
        entry deletes the chunk's file.

        Raises
        ------
        EntryNotFound
            No entry with that key is in this chunk.
        """
        with self._ctx.mutation_lock, self._lock:
            self._ensure_live()
            entry = self._entries.pop(entry_key, None)
            if entry is None:
                raise EntryNotFound(self.identifier, entry_key)

            self._entry_count -= 1
            tracked = self._untrack(entry_key)
            for name, value in tracked.folded.items():
                self._aggregates[name] -= value
            self._refresh_span()
            self._dirty = True

            self._emit(Event(EventKind.DELETE_ENTRY, entry, self.identifier))
            if self._entry_count == 0:
                self._delete()
            return entry

    def on_event(self, event: Event) -> None:
        """Apply a ``Delta`` published for one of this chunk's entries."""
        delta = event.delta
        if delta is None:
            return
        with self._lock:
            if self._state is ChunkState.DELETED:
                logger.debug("Delta for deleted chunk %s ignored", self.identifier)
                return
            entry_key = self._keys_by_id.get(event.source_id)
            if entry_key is None:
                return
            tracked = self._tracked[entry_key]
            if event.sequence <= tracked.since:
                logger.debug(
                    "Delta for %s predates its tracking in chunk %s; already folded",
                    entry_key, self.identifier,
                )
                return
            aggregate = self._contributors.aggregate_for(delta.field_key)
            if aggregate is not None:
                change = delta.difference()
                self._aggregates[aggregate] += change
                tracked.folded[aggregate] = tracked.folded.get(aggregate, 0.0) + change
            if delta.field_key == OCCURRED_AT:
                self._refresh_span()
            self._dirty = True
        self._emit(Event(EventKind.UPDATE, delta, self.identifier))

    def recompute(self) -> dict[str, float]:
        """Reset every aggregate to a full re-summation of the entries.

        Deltas already queued for the current entries are skipped when
        they arrive, since their effect is part of the new sums.
        """
        with self._ctx.mutation_lock, self._lock:
            since = next_sequence()
            totals = self._contributors.zero()
            for key, entry in self._entries.items():
                tracked = self._tracked[key]
                tracked.since = since
                tracked.folded = self._contributors.contribute(entry)
                for name, value in tracked.folded.items():
                    totals[name] += value
            self._aggregates = totals
            self._entry_count = len(self._entries)
            self._refresh_span()
            return dict(self._aggregates)

    def commit(self) -> str:
        """Write the entries atomically; return the new digest."""
        with self._lock:
            self._ensure_live()
            body = "".join(
                self._ctx.entry_codec.encode(entry) for entry in self._entries.values()
            )
            self._digest = self._ctx.files.write(self._path, body)
            self._dirty = False
            return self._digest

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _track(self, entry: Entry) -> dict[str, float]:
        # Caller holds the mutation lock.
        entry_id = self._ctx.registry.register_identifier(entry)
        tracked = _Tracked(entry_id, next_sequence(), self._contributors.contribute(entry))
        self._tracked[entry.key] = tracked
        self._keys_by_id[entry_id] = entry.key
        self._ctx.bus.subscribe(EventKind.UPDATE, self.on_event, entry_id)
        return dict(tracked.folded)

    def _untrack(self, entry_key: str) -> _Tracked:
        tracked = self._tracked.pop(entry_key)
        del self._keys_by_id[tracked.identifier]
        self._ctx.bus.unsubscribe(self.on_event, EventKind.UPDATE, tracked.identifier)
        return tracked

    def _widen_span(self, when: datetime) -> None:
        if self._earliest is None or when < self._earliest:
            self._earliest = when
        if self._latest is None or when > self._latest:
            self._latest = when

    def _refresh_span(self) -> None:
        dates = [entry.occurred_at for entry in self._entries.values()]
        self._earliest = min(dates, default=None)
        self._latest = max(dates, default=None)

    def _delete(self) -> None:
        self._state = ChunkState.DELETED
        self._ctx.bus.unsubscribe(self.on_event)
        if not self._ctx.files.store.delete(self._path):
            logger.debug("Chunk %s had no file to delete", self.identifier)
        self._digest = None
        self._dirty = False
        self._emit(Event(EventKind.DELETE_CHUNK, self, self.identifier))
        logger.info("Chunk %s is empty, deleted %s", self.identifier, self._path)

    def _emit(self, event: Event) -> None:
        # Notifications are best effort once dispatch has been halted.
        try:
            self._ctx.bus.publish(event)
        except BusHaltedError:
            logger.debug("Bus halted; %s event from chunk %s dropped", event.kind, self.identifier)

    def _ensure_live(self) -> None:
        if self._state is ChunkState.DELETED:
            raise ChunkDeletedError(f"Chunk {self.identifier} has been deleted")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state(self) -> ChunkState:
        return self._state

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def contributors(self) -> ContributorSet:
        return self._contributors

    @property
    def entry_count(self) -> int:
        return self._entry_count

    @property
    def digest(self) -> str | None:
        return self._digest

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def is_empty(self) -> bool:
        return self._entry_count == 0

    @property
    def is_full(self) -> bool:
        return self._state is not ChunkState.OPEN or self._entry_count >= self._capacity

    @property
    def year(self) -> int | None:
        """Calendar year this chunk holds entries for."""
        return self._year

    @property
    def earliest(self) -> datetime | None:
        return self._earliest

    @property
    def latest(self) -> datetime | None:
        return self._latest

    def covers(self, when: datetime) -> bool:
        """True if *when* lies inside the current date span."""
        with self._lock:
            if self._earliest is None or self._latest is None:
                return False
            return self._earliest <= when <= self._latest

    def distance_to(self, when: datetime) -> timedelta:
        """How far *when* lies outside the date span; zero inside it."""
        with self._lock:
            if self._earliest is None or self._latest is None:
                return timedelta.max
            if when < self._earliest:
                return self._earliest - when
            if when > self._latest:
                return when - self._latest
            return timedelta(0)

    @property
    def aggregates(self) -> dict[str, float]:
        """Current aggregates, including ``entry_count``."""
        with self._lock:
            values = dict(self._aggregates)
            values[ENTRY_COUNT] = float(self._entry_count)
            return values

    def aggregate(self, name: str) -> float:
        return self.aggregates[name]

    @property
    def entries(self) -> tuple[Entry, ...]:
        with self._lock:
            return tuple(self._entries.values())

    def get(self, entry_key: str) -> Entry | None:
        return self._entries.get(entry_key)

    def __contains__(self, entry_key: object) -> bool:
        return entry_key in self._entries

    def __len__(self) -> int:
        return self._entry_count

    def snapshot(self) -> ChunkSnapshot:
        with self._lock:
            return ChunkSnapshot(
                chunk_id=self.identifier,
                state=self._state,
                entry_count=self._entry_count,
                aggregates=dict(self._aggregates),
                year=self._year,
                earliest=self._earliest,
                latest=self._latest,
                digest=self._digest,
                dirty=self._dirty,
                path=str(self._path),
            )

    def __repr__(self) -> str:
        return (
            f"Chunk(id={self.identifier!r}, state={self._state.value}, "
            f"entries={self._entry_count}/{self._capacity})"
        )
