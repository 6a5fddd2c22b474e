"""Integrity-verified chunk files.

Each chunk is one file: a header line recording the body digest, then
the body itself::

    digest=3F2A...;algorithm=sha256;
    {class=LedgerEntry;key=...;amount=42.0;...}{class=StockEntry;...}

Header and body are written together with one atomic replace, so a
reader never sees a header that disagrees with the body it precedes.

Reads always re-verify: the body digest is recomputed and compared to
the digest the caller expects (typically from the manifest) and to the
one recorded in the header.  There are no optimistic reads.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from chunk_ledger.core.errors import ConfigError, IntegrityMismatch, ParseError
from chunk_ledger.core.params import ParameterMap

from .digest import DigestFunction, get_digest, sha256_digest

logger = logging.getLogger(__name__)

DIGEST_KEY = "digest"
ALGORITHM_KEY = "algorithm"
_NEWLINE = b"\n"


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class ByteStore(Protocol):
    """Byte-oriented file access used by the ledger."""

    def read_bytes(self, path: Path) -> bytes:
        """Return the full content of *path*.  Raises ``FileNotFoundError``."""
        ...

    def write_bytes(self, path: Path, data: bytes) -> None:
        """Replace *path* with *data* atomically."""
        ...

    def exists(self, path: Path) -> bool: ...

    def delete(self, path: Path) -> bool:
        """Remove *path*; ``False`` if it did not exist."""
        ...


# ---------------------------------------------------------------------------
# Local filesystem implementation
# ---------------------------------------------------------------------------

class LocalFileStore:
    """Filesystem ``ByteStore`` using write-to-temp-then-replace.

    * The temp file lives in the target directory so ``os.replace`` is a
      same-filesystem rename.
    * ``os.fsync`` runs before the rename, so a crash leaves either the
      old file or the new one, never a partial write.
    """

    def read_bytes(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def write_bytes(self, path: Path, data: bytes) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def delete(self, path: Path) -> bool:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        return True


# ---------------------------------------------------------------------------
# Chunk file codec
# ---------------------------------------------------------------------------

class ChunkFileCodec:
    """Reads and writes digest-headed text files through a ``ByteStore``.

    Parameters
    ----------
    store
        Where the bytes go.
    digest
        Digest function used for writes.
    algorithm
        Name recorded in the header.  On read, the header's algorithm is
        resolved with ``get_digest`` so files written with another
        registered algorithm still verify.
    """

    def __init__(
        self,
        store: ByteStore | None = None,
        digest: DigestFunction = sha256_digest,
        algorithm: str = "sha256",
    ) -> None:
        self._store = store if store is not None else LocalFileStore()
        self._digest = digest
        self._algorithm = algorithm

    @property
    def store(self) -> ByteStore:
        return self._store

    def digest_of(self, body: str) -> str:
        return self._digest(body.encode("utf-8"))

    def write(self, path: Path, body: str) -> str:
        """Write *body* with a digest header; return the digest."""
        data = body.encode("utf-8")
        digest = self._digest(data)
        header = ParameterMap([(DIGEST_KEY, digest), (ALGORITHM_KEY, self._algorithm)])
        self._store.write_bytes(path, header.encode().encode("utf-8") + _NEWLINE + data)
        logger.debug("Wrote %s (%d bytes, digest=%s)", path, len(data), digest)
        return digest

    def read(self, path: Path, expected_digest: str | None = None) -> tuple[str, str]:
        """Read and verify *path*; return ``(body, digest)``.

        Raises
        ------
        IntegrityMismatch
            If the body digest differs from *expected_digest* or from the
            digest recorded in the header.
        ParseError
            If the header is missing, malformed or names an unknown
            digest algorithm.
        """
        raw = self._store.read_bytes(path)
        header_bytes, sep, data = raw.partition(_NEWLINE)
        if not sep:
            raise ParseError(f"Missing digest header in {path}", _preview(raw), 0)
        try:
            header = ParameterMap.decode(header_bytes.decode("utf-8"))
        except UnicodeDecodeError:
            raise ParseError(f"Undecodable digest header in {path}", _preview(raw), 0) from None
        if DIGEST_KEY not in header:
            raise ParseError(f"Digest header of {path} has no digest", header.encode(), 0)

        algorithm = header.get(ALGORITHM_KEY, self._algorithm)
        try:
            digest_fn = get_digest(algorithm)
        except ConfigError:
            raise ParseError(
                f"Unknown digest algorithm {algorithm!r} in header of {path}", header.encode(), 0,
            ) from None
        actual = digest_fn(data)
        if expected_digest is not None and expected_digest != actual:
            raise IntegrityMismatch(expected_digest, actual, str(path))
        recorded = header[DIGEST_KEY]
        if recorded != actual:
            raise IntegrityMismatch(recorded, actual, str(path))

        try:
            return data.decode("utf-8"), actual
        except UnicodeDecodeError as exc:
            raise ParseError(f"Undecodable body in {path}", _preview(data), exc.start) from None


def _preview(raw: bytes) -> str:
    return raw[:120].decode("utf-8", errors="replace")
