"""Pluggable content digests.

A digest function maps bytes to a fixed-length hex string.  It must be
deterministic and collision resistant enough to detect corruption or
tampering; non-repudiation is not a goal.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable

from chunk_ledger.core.errors import ConfigError

DigestFunction = Callable[[bytes], str]


def sha256_digest(data: bytes) -> str:
    """Upper-case hex SHA-256 of *data*."""
    return hashlib.sha256(data).hexdigest().upper()


def blake2b_digest(data: bytes) -> str:
    """Upper-case hex BLAKE2b-256 of *data*."""
    return hashlib.blake2b(data, digest_size=32).hexdigest().upper()


_DIGESTS: dict[str, DigestFunction] = {
    "sha256": sha256_digest,
    "blake2b": blake2b_digest,
}


def register_digest(name: str, fn: DigestFunction) -> None:
    _DIGESTS[name.lower()] = fn


def get_digest(name: str) -> DigestFunction:
    """Look up a digest function by name.

    Raises
    ------
    ConfigError
        If *name* is not registered.
    """
    try:
        return _DIGESTS[name.lower()]
    except KeyError:
        known = ", ".join(sorted(_DIGESTS))
        raise ConfigError(f"Unknown digest algorithm {name!r} (known: {known})") from None
