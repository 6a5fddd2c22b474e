"""ChunkManager: the set of chunks that make up one ledger directory.

The manager owns the manifest, a small grammar file mapping each chunk
id to the digest it was last committed with::

    digest=...;algorithm=sha256;
    0b6f...=3F2A...;9c1d...=77E0...;

Every chunk is loaded against its manifest digest, so a chunk file that
was altered behind the ledger's back fails the load instead of being
skipped.

Entries are routed by date.  A new entry goes to the open chunk of its
contributor set and calendar year whose date span lies nearest the
entry's date (newest chunk on a tie); when there is none a chunk is
opened for it.  An entry whose date is later moved into another year is
taken out of its chunk and routed again.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel

from chunk_ledger.bus.events import Event, EventKind
from chunk_ledger.core.errors import EntryNotFound, IntegrityMismatch, ParseError
from chunk_ledger.core.params import ParameterMap
from chunk_ledger.domain.delta import Delta
from chunk_ledger.domain.entries import OCCURRED_AT, Entry

from .chunk import Chunk, ChunkSnapshot, ChunkState
from .contributors import ENTRY_COUNT, ContributorSet

if TYPE_CHECKING:
    from chunk_ledger.context import LedgerContext

logger = logging.getLogger(__name__)


class ChunkCheck(BaseModel):
    """Result of verifying one manifest entry."""

    chunk_id: str
    ok: bool
    digest: str | None = None
    entry_count: int = 0
    error: str | None = None
    error_type: str | None = None


class ChunkManager:
    """Routes entries to chunks and keeps the manifest in step."""

    def __init__(self, directory: str | Path, context: LedgerContext) -> None:
        self._directory = Path(directory)
        self._ctx = context
        self._lock = threading.RLock()
        self._chunks: list[Chunk] = []
        self._owners: dict[str, Chunk] = {}  # entry key -> owning chunk

    # -- loading -------------------------------------------------------------

    @classmethod
    def open(cls, directory: str | Path, context: LedgerContext) -> ChunkManager:
        """Load every chunk listed in *directory*'s manifest.

        A missing manifest means an empty ledger.  ``IntegrityMismatch``
        and ``ParseError`` from any chunk propagate.
        """
        manager = cls(directory, context)
        for chunk_id, digest in manager.read_manifest().items():
            chunk = Chunk.load(manager.chunk_path(chunk_id), digest, context)
            if chunk.is_empty:
                logger.warning("Chunk %s has no entries; removing it", chunk_id)
                context.bus.unsubscribe(chunk.on_event)
                context.files.store.delete(chunk.path)
                continue
            manager._adopt(chunk)
        logger.info(
            "Opened ledger %s (%d chunks, %d entries)",
            manager._directory, len(manager._chunks), len(manager._owners),
        )
        return manager

    @property
    def manifest_path(self) -> Path:
        return self._directory / self._ctx.settings.manifest_name

    def chunk_path(self, chunk_id: str) -> Path:
        return self._directory / f"{chunk_id}{self._ctx.settings.chunk.file_extension}"

    def read_manifest(self) -> ParameterMap:
        """``chunk_id → digest`` as last committed; empty if absent."""
        if not self._ctx.files.store.exists(self.manifest_path):
            return ParameterMap()
        body, _ = self._ctx.files.read(self.manifest_path)
        return ParameterMap.decode(body)

    def _adopt(self, chunk: Chunk) -> None:
        self._chunks.append(chunk)
        for entry in chunk.entries:
            self._owners[entry.key] = chunk
        self._ctx.bus.subscribe(EventKind.UPDATE, self._on_chunk_update, chunk.identifier)

    def _drop(self, chunk: Chunk) -> None:
        self._chunks.remove(chunk)
        self._ctx.bus.unsubscribe(self._on_chunk_update, EventKind.UPDATE, chunk.identifier)

    # -- mutation ------------------------------------------------------------

    def add_entry(self, entry: Entry) -> Chunk:
        """Add *entry* to the nearest open chunk of its kind and year, or a new one."""
        with self._lock:
            if entry.key in self._owners:
                raise ValueError(f"Entry {entry.key!r} is already in the ledger")
            return self._place(entry)

    def _place(self, entry: Entry) -> Chunk:
        contributors = self._ctx.contributors.for_entry(entry)
        target = self._nearest_open_chunk(contributors, entry.occurred_at)
        if target is None:
            target = Chunk.create(
                self._directory, entry, self._ctx, contributors,
                self._ctx.settings.chunk.capacity,
            )
            self._adopt(target)
        else:
            target.add_entry(entry)
            self._owners[entry.key] = target
        return target

    def _nearest_open_chunk(self, contributors: ContributorSet, when: datetime) -> Chunk | None:
        best: Chunk | None = None
        for chunk in reversed(self._chunks):
            if chunk.contributors is not contributors or chunk.is_full or chunk.year != when.year:
                continue
            if best is None or chunk.distance_to(when) < best.distance_to(when):
                best = chunk
        return best

    def remove_entry(self, entry_key: str) -> Entry:
        """Remove the entry with *entry_key* from whichever chunk holds it."""
        with self._lock:
            chunk = self._owners.get(entry_key)
            if chunk is None:
                raise EntryNotFound("<ledger>", entry_key)
            entry = chunk.remove_entry(entry_key)
            del self._owners[entry_key]
            if chunk.state is ChunkState.DELETED:
                self._drop(chunk)
            return entry

    def update_entry(self, entry_key: str, params: ParameterMap) -> list[Delta]:
        """Mutate an entry in place; its chunk picks up the deltas from the bus.

        An entry whose new date falls in another year is routed again
        before this returns.
        """
        with self._lock:
            chunk = self._owners.get(entry_key)
            if chunk is None:
                raise EntryNotFound("<ledger>", entry_key)
            deltas = self._ctx.update_entry(chunk.get(entry_key), params)
            if any(delta.field_key == OCCURRED_AT for delta in deltas):
                self._reroute(chunk)
            return deltas

    def _on_chunk_update(self, event: Event) -> None:
        # Dates changed through the context directly arrive here.
        delta = event.delta
        if delta is None or delta.field_key != OCCURRED_AT:
            return
        with self._lock:
            for chunk in self._chunks:
                if chunk.identifier == event.source_id:
                    self._reroute(chunk)
                    return

    def _reroute(self, chunk: Chunk) -> None:
        for entry in chunk.entries:
            if entry.occurred_at.year == chunk.year:
                continue
            chunk.remove_entry(entry.key)
            del self._owners[entry.key]
            if chunk.state is ChunkState.DELETED:
                self._drop(chunk)
            target = self._place(entry)
            logger.info(
                "Entry %s moved to %s from chunk %s (date now %s)",
                entry.key, target.identifier, chunk.identifier, entry.occurred_at.date(),
            )

    def commit_all(self) -> dict[str, str]:
        """Write every dirty chunk, then the manifest.  Returns the manifest."""
        with self._lock:
            manifest = ParameterMap()
            for chunk in self._chunks:
                digest = chunk.commit() if chunk.dirty or chunk.digest is None else chunk.digest
                manifest[chunk.identifier] = digest
            self._ctx.files.write(self.manifest_path, manifest.encode())
            logger.info("Committed %d chunks to %s", len(manifest), self._directory)
            return dict(manifest)

    # -- reads ---------------------------------------------------------------

    @property
    def chunks(self) -> tuple[Chunk, ...]:
        with self._lock:
            return tuple(self._chunks)

    def get(self, entry_key: str) -> Entry | None:
        chunk = self._owners.get(entry_key)
        return chunk.get(entry_key) if chunk is not None else None

    def chunk_of(self, entry_key: str) -> Chunk | None:
        return self._owners.get(entry_key)

    def snapshots(self) -> list[ChunkSnapshot]:
        return [chunk.snapshot() for chunk in self.chunks]

    def totals(self) -> dict[str, float]:
        """Sum of every chunk's aggregates, plus the overall entry count."""
        totals: dict[str, float] = {ENTRY_COUNT: 0.0}
        for snapshot in self.snapshots():
            totals[ENTRY_COUNT] += snapshot.entry_count
            for name, value in snapshot.aggregates.items():
                totals[name] = totals.get(name, 0.0) + value
        return totals

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.chunks)

    def __len__(self) -> int:
        return len(self._chunks)


def verify_directory(directory: str | Path, context: LedgerContext) -> list[ChunkCheck]:
    """Check every chunk in *directory*'s manifest without stopping at the first failure.

    A manifest that fails its own header check raises.
    """
    manager = ChunkManager(directory, context)
    results: list[ChunkCheck] = []
    for chunk_id, digest in manager.read_manifest().items():
        try:
            chunk = Chunk.load(manager.chunk_path(chunk_id), digest, context)
        except (IntegrityMismatch, ParseError, FileNotFoundError) as exc:
            logger.warning("Chunk %s failed verification: %s", chunk_id, exc)
            results.append(ChunkCheck(
                chunk_id=chunk_id, ok=False, error=str(exc), error_type=type(exc).__name__,
            ))
            continue
        context.bus.unsubscribe(chunk.on_event)
        results.append(ChunkCheck(
            chunk_id=chunk_id, ok=True, digest=chunk.digest, entry_count=chunk.entry_count,
        ))
    return results
