"""Custom exception hierarchy for the chunk ledger."""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger errors."""


# --- Configuration ---
class ConfigError(LedgerError):
    """Invalid or missing configuration."""


# --- Serialization ---
class ParseError(LedgerError):
    """Malformed serialized content.

    Carries the raw text and, where known, the position at which parsing
    failed so the caller can diagnose corrupted files.
    """

    def __init__(
        self,
        context: str,
        raw_text: str,
        position: int | None = None,
    ) -> None:
        self.context = context
        self.raw_text = raw_text
        self.position = position
        where = f" at position {position}" if position is not None else ""
        preview = raw_text if len(raw_text) <= 80 else raw_text[:77] + "..."
        super().__init__(f"{context}{where}: {preview!r}")


class ParameterTypeError(ParseError):
    """A parameter value could not be coerced to the requested type."""

    def __init__(self, key: str, raw_value: str, expected: str) -> None:
        self.key = key
        self.expected = expected
        super().__init__(
            f"Parameter {key!r} is not a valid {expected}", raw_value,
        )


# --- Persistence ---
class IntegrityMismatch(LedgerError):
    """A file's content digest differs from the recorded one.

    Fatal to trusting that file only; the caller decides on recovery.
    """

    def __init__(self, expected: str, actual: str, path: str = "") -> None:
        self.expected = expected
        self.actual = actual
        self.path = path
        target = f" for {path}" if path else ""
        super().__init__(
            f"Digest mismatch{target}: expected={expected} actual={actual}"
        )


# --- Chunks ---
class ChunkError(LedgerError):
    """Chunk lifecycle error."""


class CapacityExceeded(ChunkError):
    """Chunk refuses a new entry past its maximum."""

    def __init__(self, chunk_id: str, capacity: int) -> None:
        self.chunk_id = chunk_id
        self.capacity = capacity
        super().__init__(
            f"Chunk {chunk_id} is at capacity ({capacity} entries)"
        )


class EntryNotFound(ChunkError):
    """Removal of a key absent from the chunk."""

    def __init__(self, chunk_id: str, entry_key: str) -> None:
        self.chunk_id = chunk_id
        self.entry_key = entry_key
        super().__init__(f"Entry {entry_key!r} not found in chunk {chunk_id}")


class ChunkDeletedError(ChunkError):
    """Operation attempted on a chunk whose file has been removed."""


# --- Event bus ---
class BusError(LedgerError):
    """Event bus error."""


class BusHaltedError(BusError):
    """Publish attempted after dispatch was halted."""
