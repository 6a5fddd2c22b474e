"""Event model for the ledger bus.

Design invariants
-----------------
1.  Every event is **immutable** (``frozen=True``).
2.  ``kind`` is an open tag space: any string is a valid kind.  The
    constants in ``EventKind`` are the ones the ledger itself emits.
3.  ``source_id`` is the bus identifier of the object the event is about
    (see ``IdentifierRegistry``); listeners registered for that
    identifier receive it, wildcard listeners receive every event of the
    kind.
4.  ``event_id`` is a UUID4 generated at creation time.
5.  ``sequence`` is drawn from one process-wide counter at creation, so
    events can be ordered against other points taken from the same
    counter (see ``next_sequence``).
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from chunk_ledger.core.ids import new_id as _uuid
from chunk_ledger.core.ids import utc_now as _now
from chunk_ledger.domain.delta import Delta

_sequence = itertools.count(1)


def next_sequence() -> int:
    """Next value of the process-wide event counter."""
    return next(_sequence)


class EventKind:
    """Well-known event kinds."""

    UPDATE = "update"
    NEW_ENTRY = "new_entry"
    DELETE_ENTRY = "delete_entry"
    NEW_CHUNK = "new_chunk"
    DELETE_CHUNK = "delete_chunk"
    CHUNK_SEALED = "chunk_sealed"


@dataclass(frozen=True)
class Event:
    """Immutable bus event.

    Shared fields
    ~~~~~~~~~~~~~
    kind        Routing tag.
    payload     Opaque data, often a ``Delta`` or a domain object.
    source_id   Identifier of the object the event concerns (optional).
    event_id    Unique identity (UUID4).
    timestamp   UTC creation time.
    sequence    Position in the process-wide event counter.
    """

    kind: str
    payload: Any = None
    source_id: str | None = None
    event_id: str = field(default_factory=_uuid)
    timestamp: datetime = field(default_factory=_now)
    sequence: int = field(default_factory=next_sequence)

    @property
    def delta(self) -> Delta | None:
        """The payload if it is a ``Delta``, else ``None``."""
        return self.payload if isinstance(self.payload, Delta) else None


def change_event(delta: Delta, source_id: str | None = None) -> Event:
    """An ``update`` event carrying *delta*."""
    return Event(kind=EventKind.UPDATE, payload=delta, source_id=source_id)
