"""LedgerContext: the process-wide collaborators, passed explicitly.

One context is built at start-up and handed to every chunk and manager.
It owns the identifier registry, the event bus, the chunk file codec,
the entry codec and the contributor registry, so nothing in the ledger
reaches for hidden module-level state.

Lifecycle::

    with LedgerContext.from_config("ledger.params") as ctx:
        manager = ChunkManager.open(ctx.settings.data_dir, ctx)
        ...
    # leaving the block halts dispatch, draining queued events
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from chunk_ledger.bus.dispatcher import EventBus, HaltReport
from chunk_ledger.bus.events import change_event
from chunk_ledger.bus.registry import IdentifierRegistry
from chunk_ledger.core.config import LedgerSettings, load_settings
from chunk_ledger.core.params import ParameterMap
from chunk_ledger.domain.delta import Delta
from chunk_ledger.domain.entries import EntryCodec, LedgerEntry, update_entry
from chunk_ledger.ledger.contributors import ContributorRegistry, default_registry
from chunk_ledger.persistence.digest import get_digest
from chunk_ledger.persistence.store import ByteStore, ChunkFileCodec, LocalFileStore

logger = logging.getLogger(__name__)


class LedgerContext:
    """Shared collaborators for one ledger process."""

    def __init__(
        self,
        settings: LedgerSettings | None = None,
        *,
        store: ByteStore | None = None,
        entry_codec: EntryCodec | None = None,
        contributors: ContributorRegistry | None = None,
    ) -> None:
        self.settings = settings if settings is not None else LedgerSettings()
        self.registry = IdentifierRegistry()
        self.bus = EventBus(poll_interval=self.settings.bus.poll_interval)
        algorithm = self.settings.chunk.digest_algorithm
        self.files = ChunkFileCodec(
            store if store is not None else LocalFileStore(),
            get_digest(algorithm),
            algorithm,
        )
        self.entry_codec = entry_codec if entry_codec is not None else EntryCodec()
        self.contributors = contributors if contributors is not None else default_registry()
        # Held while an entry is mutated and while a chunk starts or stops
        # tracking one, so a chunk can tell which deltas it already holds.
        self.mutation_lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config_path: str | Path | None = None,
        overrides: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> LedgerContext:
        return cls(load_settings(config_path, overrides), **kwargs)

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> LedgerContext:
        self.bus.start()
        return self

    def close(self, timeout: float | None = None) -> HaltReport:
        """Halt dispatch, draining queued events."""
        if timeout is None:
            timeout = self.settings.bus.halt_timeout
        report = self.bus.halt_dispatch(timeout)
        logger.info(
            "Ledger context closed (drained=%d, discarded=%d)",
            report.delivered, report.undelivered,
        )
        return report

    def __enter__(self) -> LedgerContext:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- helpers -----------------------------------------------------------

    def identify(self, obj: object) -> str:
        return self.registry.register_identifier(obj)

    def publish_changes(self, entity: object, deltas: list[Delta]) -> None:
        """Publish one ``update`` event per delta, sourced at *entity*."""
        source_id = self.identify(entity)
        for delta in deltas:
            self.bus.publish(change_event(delta, source_id))

    def update_entry(self, entry: LedgerEntry, params: ParameterMap) -> list[Delta]:
        """Mutate *entry* and publish the resulting deltas.

        Whichever chunk owns the entry picks the deltas up from the bus.
        The mutation and the publish happen under ``mutation_lock``, so
        every delta is sequenced after the change it describes.
        """
        with self.mutation_lock:
            deltas = update_entry(entry, params)
            self.publish_changes(entry, deltas)
        return deltas
