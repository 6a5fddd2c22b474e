"""Ordered string parameter map with typed accessors.

``ParameterMap`` is the in-memory form of the ``field=value;`` grammar
(see ``core.grammar``).  Insertion order is preserved so that encoding
is deterministic, which keeps content digests stable across saves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, MutableMapping
from datetime import datetime
from typing import Any, TypeVar

from .errors import ParameterTypeError, ParseError
from .grammar import (
    CLOSE,
    KEY_SEP,
    OPEN,
    PAIR_SEP,
    decode_list,
    encode_list,
    extract_all_top_level_bracket_sections,
    extract_bracket_section,
    extract_field_value_pairs,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING: Any = object()

_TRUE = frozenset({"true", "yes", "1", "on"})
_FALSE = frozenset({"false", "no", "0", "off"})


class ParameterMap(MutableMapping[str, str]):
    """Ordered ``str -> str`` mapping.

    Values are stored as strings; the ``as_*`` accessors coerce on read and
    raise ``ParameterTypeError`` (naming the key and the raw value) when the
    stored text is malformed.  ``default`` is only used when the key is
    absent, never to paper over bad content.
    """

    TYPE_KEY = "class"

    def __init__(self, data: Iterable[tuple[str, Any]] | Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        if data is not None:
            items = data.items() if isinstance(data, Mapping) else data
            for key, value in items:
                self.put(key, value)

    # -- construction ------------------------------------------------------

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str]]) -> ParameterMap:
        params = cls()
        for key, value in pairs:
            if key in params:
                logger.debug("Duplicate key %s, value is being overridden", key)
            params[key] = value
        return params

    @classmethod
    def decode(cls, text: str) -> ParameterMap:
        """Parse ``field=value;`` text."""
        return cls.from_pairs(extract_field_value_pairs(text))

    # -- MutableMapping ----------------------------------------------------

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key.strip():
            raise ValueError(f"Invalid parameter key: {key!r}")
        if any(ch in key for ch in (KEY_SEP, PAIR_SEP, OPEN, CLOSE)):
            raise ValueError(f"Reserved character in parameter key: {key!r}")
        self._data[key.strip()] = self._coerce(value)

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ParameterMap):
            return list(self._data.items()) == list(other._data.items())
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ParameterMap({self._data!r})"

    # -- writes ------------------------------------------------------------

    def put(self, key: str, value: Any) -> str | None:
        """Store *value* at *key*, coercing it to text.

        Booleans become ``true``/``false``, lists/tuples/sets become
        ``{a,b,c}`` and nested ``ParameterMap`` values are bracketed.
        Returns the previous value, if any.
        """
        previous = self._data.get(key)
        self[key] = value
        return previous

    @staticmethod
    def _coerce(value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, ParameterMap):
            return OPEN + value.encode() + CLOSE
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (list, tuple, set, frozenset)):
            return encode_list(value)
        return str(value)

    @property
    def type_name(self) -> str | None:
        return self._data.get(self.TYPE_KEY)

    @type_name.setter
    def type_name(self, value: str) -> None:
        self._data[self.TYPE_KEY] = value

    # -- typed reads -------------------------------------------------------

    def _raw(self, key: str, default: Any) -> Any:
        if key in self._data:
            return self._data[key]
        if default is _MISSING:
            raise KeyError(key)
        return _MISSING

    def as_boolean(self, key: str, default: Any = _MISSING) -> bool:
        raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ParameterTypeError(key, raw, "boolean")

    def as_float(self, key: str, default: Any = _MISSING) -> float:
        raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        try:
            return float(raw)
        except ValueError:
            raise ParameterTypeError(key, raw, "number") from None

    as_double = as_float

    def as_int(self, key: str, default: Any = _MISSING) -> int:
        raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        try:
            return int(raw)
        except ValueError:
            raise ParameterTypeError(key, raw, "integer") from None

    def as_datetime(self, key: str, default: Any = _MISSING) -> datetime:
        raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            raise ParameterTypeError(key, raw, "ISO-8601 datetime") from None

    def as_bracketed(self, key: str, default: Any = _MISSING) -> str:
        """Return the value with its outer braces removed."""
        raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        try:
            return extract_bracket_section(raw)
        except ParseError:
            raise ParameterTypeError(key, raw, "bracketed section") from None

    def as_list(
        self,
        key: str,
        converter: Callable[[str], T] | None = None,
        default: Any = _MISSING,
    ) -> list[Any]:
        raw = self._raw(key, default)
        if raw is _MISSING:
            return default
        try:
            items = decode_list(raw)
        except ParseError:
            raise ParameterTypeError(key, raw, "list") from None
        if converter is None:
            return items
        try:
            return [converter(item) for item in items]
        except ValueError:
            raise ParameterTypeError(key, raw, "list") from None

    def as_parameter_maps(self, key: str, default: Any = _MISSING) -> list[ParameterMap]:
        """Decode ``{{a=1;}{b=2;}}`` into a list of maps."""
        inner = self.as_bracketed(key, default)
        if inner is default and key not in self._data:
            return default
        return [
            ParameterMap.decode(section)
            for section in extract_all_top_level_bracket_sections(inner)
        ]

    # -- encoding ----------------------------------------------------------

    def encode(self) -> str:
        """Serialize as ``key=value;`` pairs in insertion order."""
        return "".join(
            f"{key}{KEY_SEP}{value}{PAIR_SEP}" for key, value in self._data.items()
        )

    def copy(self) -> ParameterMap:
        return ParameterMap(list(self._data.items()))
