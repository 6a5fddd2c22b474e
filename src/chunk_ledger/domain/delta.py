"""Before/after records for tracked entity fields.

A ``Delta`` is produced whenever a tracked field of a domain entity
changes and travels as the payload of an ``update`` event.  Values are
kept as text, the same representation used on disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chunk_ledger.core.errors import ParseError


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class Delta:
    """Immutable change record for one named field."""

    field_key: str
    old_value: str
    new_value: str

    @classmethod
    def of(cls, field_key: str, old: Any, new: Any) -> Delta:
        """Build a Delta from arbitrary values, rendering them as text."""
        return cls(field_key, _to_text(old), _to_text(new))

    @property
    def has_change(self) -> bool:
        return self.old_value != self.new_value

    def _number(self, raw: str) -> float:
        if raw == "":
            return 0.0
        try:
            return float(raw)
        except ValueError:
            raise ParseError(
                f"Delta value for {self.field_key!r} is not numeric", raw,
            ) from None

    def old_as_float(self) -> float:
        return self._number(self.old_value)

    def new_as_float(self) -> float:
        return self._number(self.new_value)

    def difference(self) -> float:
        """``new - old`` as a number."""
        return self.new_as_float() - self.old_as_float()


class DeltaBuilder:
    """Collects partial deltas while an entity is being modified.

    The first ``record`` for a field captures its old value; every later
    call for the same field replaces the new value.  Typical use wraps a
    mutation::

        builder.record("amount", entry.amount)
        entry.amount = 12.0
        builder.record("amount", entry.amount)
    """

    def __init__(self) -> None:
        self._pairs: dict[str, list[Any]] = {}

    def record(self, field_key: str, value: Any) -> None:
        pair = self._pairs.get(field_key)
        if pair is None:
            self._pairs[field_key] = [value, value]
        else:
            pair[1] = value

    def build(self) -> list[Delta]:
        """Return the deltas that reflect a real change, in record order."""
        deltas = [Delta.of(key, old, new) for key, (old, new) in self._pairs.items()]
        return [d for d in deltas if d.has_change]
