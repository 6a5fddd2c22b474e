"""Ledger entries and their parameter-map codec.

Entries are the opaque values a chunk owns.  The chunk only relies on the
``Entry`` protocol: a stable ``key`` and the numeric fields the entry
contributes to aggregates.  Concrete entry types here cover plain cash
movements and stock trades.

Entries are mutable and compared by identity, so the event bus can hand
out a stable identifier per live entry object.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Protocol, runtime_checkable

from chunk_ledger.core.errors import ParseError
from chunk_ledger.core.grammar import CLOSE, OPEN
from chunk_ledger.core.ids import new_id, utc_now
from chunk_ledger.core.params import ParameterMap

from .delta import Delta, DeltaBuilder

# Field keys shared by the codec, deltas and contributors.
KEY = "key"
AMOUNT = "amount"
DESCRIPTION = "description"
OCCURRED_AT = "occurred_at"
SHARES = "shares"


@runtime_checkable
class Entry(Protocol):
    """What a chunk needs from an entry."""

    key: str
    occurred_at: datetime

    def contributions(self) -> Mapping[str, float]:
        """Numeric fields this entry contributes, by field key."""
        ...


@dataclass(eq=False)
class LedgerEntry:
    """A single cash movement."""

    type_name: ClassVar[str] = "LedgerEntry"

    amount: float = 0.0
    description: str = ""
    occurred_at: datetime = field(default_factory=utc_now)
    key: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        self.amount = float(self.amount)

    def contributions(self) -> dict[str, float]:
        return {AMOUNT: self.amount}

    # -- codec -------------------------------------------------------------

    def to_params(self) -> ParameterMap:
        if OPEN in self.description or CLOSE in self.description:
            raise ValueError(
                f"Entry {self.key} description may not contain braces"
            )
        params = ParameterMap()
        params.type_name = self.type_name
        params.put(KEY, self.key)
        params.put(OCCURRED_AT, self.occurred_at)
        params.put(AMOUNT, repr(self.amount))
        params.put(DESCRIPTION, OPEN + self.description + CLOSE)
        return params

    @classmethod
    def from_params(cls, params: ParameterMap) -> LedgerEntry:
        return cls(**cls._fields_from(params))

    @classmethod
    def _fields_from(cls, params: ParameterMap) -> dict:
        return {
            "key": params[KEY],
            "occurred_at": params.as_datetime(OCCURRED_AT),
            "amount": params.as_float(AMOUNT),
            "description": params.as_bracketed(DESCRIPTION, ""),
        }

    # -- mutation ----------------------------------------------------------

    def _parse_update(self, params: ParameterMap) -> dict[str, Any]:
        """New attribute values for the fields present in *params*.

        Nothing is assigned here, so a malformed field leaves the entry
        untouched.
        """
        changes: dict[str, Any] = {}
        if AMOUNT in params:
            changes[AMOUNT] = params.as_float(AMOUNT)
        if DESCRIPTION in params:
            changes[DESCRIPTION] = params.as_bracketed(DESCRIPTION)
        if OCCURRED_AT in params:
            changes[OCCURRED_AT] = params.as_datetime(OCCURRED_AT)
        return changes


@dataclass(eq=False)
class StockEntry(LedgerEntry):
    """A stock trade: cash amount plus a share count."""

    type_name: ClassVar[str] = "StockEntry"

    shares: float = 0.0

    def __post_init__(self) -> None:
        super().__post_init__()
        self.shares = float(self.shares)

    def contributions(self) -> dict[str, float]:
        return {AMOUNT: self.amount, SHARES: self.shares}

    def to_params(self) -> ParameterMap:
        params = super().to_params()
        params.put(SHARES, repr(self.shares))
        return params

    @classmethod
    def _fields_from(cls, params: ParameterMap) -> dict:
        fields = super()._fields_from(params)
        fields["shares"] = params.as_float(SHARES, 0.0)
        return fields

    def _parse_update(self, params: ParameterMap) -> dict[str, Any]:
        changes = super()._parse_update(params)
        if SHARES in params:
            changes[SHARES] = params.as_float(SHARES)
        return changes


def update_entry(entry: LedgerEntry, params: ParameterMap) -> list[Delta]:
    """Apply the fields present in *params* to *entry*.

    Every field is parsed before any is assigned: a malformed value raises
    ``ParseError`` and leaves *entry* exactly as it was.  Returns one
    ``Delta`` per field whose value actually changed.  The key is
    immutable and ignored here.
    """
    changes = entry._parse_update(params)
    builder = DeltaBuilder()
    for name, value in changes.items():
        builder.record(name, _as_text(getattr(entry, name)))
        setattr(entry, name, value)
        builder.record(name, _as_text(value))
    return builder.build()


def _as_text(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


class EntryCodec:
    """Maps the ``class`` type key of a parameter map to an entry type."""

    def __init__(self, *entry_types: type[LedgerEntry]) -> None:
        self._types: dict[str, type[LedgerEntry]] = {}
        for entry_type in entry_types or (LedgerEntry, StockEntry):
            self.register(entry_type)

    def register(self, entry_type: type[LedgerEntry]) -> None:
        self._types[entry_type.type_name] = entry_type

    def encode(self, entry: LedgerEntry) -> str:
        """Encode as a bracketed section ``{class=...;key=...;}``."""
        return OPEN + entry.to_params().encode() + CLOSE

    def decode(self, text: str) -> LedgerEntry:
        """Decode the inside of one entry section."""
        params = ParameterMap.decode(text)
        type_name = params.type_name
        entry_type = self._types.get(type_name or "")
        if entry_type is None:
            raise ParseError(f"Unknown entry type {type_name!r}", text)
        try:
            return entry_type.from_params(params)
        except KeyError as exc:
            raise ParseError(f"Entry missing field {exc.args[0]!r}", text) from None
