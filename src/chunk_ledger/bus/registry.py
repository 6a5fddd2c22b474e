"""Stable identifiers for live objects.

Listeners are addressed by identifier instead of by reference, so a
chunk can listen for changes to an entry it owns without the code that
mutates the entry knowing which chunk that is.

Objects that carry their own ``identifier`` (chunks) keep it.  Any other
object gets a UUID the first time it is registered; the registry only
holds a weak reference, so the mapping disappears with the object.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Any

from chunk_ledger.core.ids import new_id

logger = logging.getLogger(__name__)


class IdentifierRegistry:
    """Thread-safe object ↔ identifier lookup (non-owning)."""

    def __init__(self) -> None:
        # Reentrant: weakref callbacks may fire while the lock is held.
        self._lock = threading.RLock()
        # id(obj) -> (weakref, identifier)
        self._by_object: dict[int, tuple[weakref.ref, str]] = {}
        self._by_identifier: dict[str, weakref.ref] = {}

    def register_identifier(self, obj: Any) -> str:
        """Return the identifier for *obj*, assigning one if needed.

        Repeated calls for the same live object return the same value.
        Raises ``TypeError`` for objects that cannot be weakly referenced.
        """
        own = getattr(obj, "identifier", None)
        with self._lock:
            slot = self._by_object.get(id(obj))
            if slot is not None and slot[0]() is obj:
                return slot[1]

            identifier = own if isinstance(own, str) and own else new_id()
            obj_key = id(obj)

            def _collected(_ref: weakref.ref, obj_key: int = obj_key,
                           identifier: str = identifier) -> None:
                self._discard(obj_key, identifier)

            ref = weakref.ref(obj, _collected)
            self._by_object[obj_key] = (ref, identifier)
            self._by_identifier[identifier] = ref
        logger.debug("Registered identifier %s for %s", identifier, type(obj).__name__)
        return identifier

    def identifier_of(self, obj: Any) -> str | None:
        """Identifier of *obj* if it is registered, without assigning one."""
        with self._lock:
            slot = self._by_object.get(id(obj))
            if slot is not None and slot[0]() is obj:
                return slot[1]
        return None

    def lookup(self, identifier: str) -> Any | None:
        """Return the live object for *identifier*, or ``None``."""
        with self._lock:
            ref = self._by_identifier.get(identifier)
        return ref() if ref is not None else None

    def forget(self, obj: Any) -> None:
        """Drop *obj*'s identifier; a later registration assigns a new one."""
        with self._lock:
            slot = self._by_object.get(id(obj))
            if slot is None or slot[0]() is not obj:
                return
            del self._by_object[id(obj)]
            self._by_identifier.pop(slot[1], None)

    def _discard(self, obj_key: int, identifier: str) -> None:
        with self._lock:
            slot = self._by_object.get(obj_key)
            if slot is not None and slot[1] == identifier:
                del self._by_object[obj_key]
            ref = self._by_identifier.get(identifier)
            if ref is not None and ref() is None:
                del self._by_identifier[identifier]

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_identifier)
