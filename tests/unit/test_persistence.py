"""Tests for digests, the local byte store and the chunk file codec."""

from __future__ import annotations

import hashlib
import os

import pytest

from chunk_ledger.core.errors import ConfigError, IntegrityMismatch, ParseError
from chunk_ledger.persistence.digest import (
    blake2b_digest,
    get_digest,
    register_digest,
    sha256_digest,
)
from chunk_ledger.persistence.store import ChunkFileCodec, LocalFileStore


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------

class TestDigests:
    def test_sha256_is_upper_hex(self):
        assert sha256_digest(b"abc") == hashlib.sha256(b"abc").hexdigest().upper()

    def test_blake2b_length(self):
        assert len(blake2b_digest(b"abc")) == 64

    def test_lookup_is_case_insensitive(self):
        assert get_digest("SHA256") is sha256_digest

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigError, match="Unknown digest"):
            get_digest("md4")

    def test_register(self):
        register_digest("length", lambda data: f"{len(data):08X}")
        assert get_digest("length")(b"abcd") == "00000004"


# ---------------------------------------------------------------------------
# LocalFileStore
# ---------------------------------------------------------------------------

class TestLocalFileStore:
    def test_write_creates_parents(self, tmp_path):
        store = LocalFileStore()
        target = tmp_path / "a" / "b" / "file.bin"
        store.write_bytes(target, b"data")
        assert store.read_bytes(target) == b"data"

    def test_replace_leaves_no_temp_files(self, tmp_path):
        store = LocalFileStore()
        target = tmp_path / "file.bin"
        store.write_bytes(target, b"one")
        store.write_bytes(target, b"two")
        assert target.read_bytes() == b"two"
        assert os.listdir(tmp_path) == ["file.bin"]

    def test_failed_write_keeps_old_content(self, tmp_path, monkeypatch):
        store = LocalFileStore()
        target = tmp_path / "file.bin"
        store.write_bytes(target, b"original")

        def fail(*args):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", fail)
        with pytest.raises(OSError):
            store.write_bytes(target, b"new")
        assert target.read_bytes() == b"original"
        assert os.listdir(tmp_path) == ["file.bin"]

    def test_delete(self, tmp_path):
        store = LocalFileStore()
        target = tmp_path / "file.bin"
        store.write_bytes(target, b"x")
        assert store.delete(target) is True
        assert store.exists(target) is False
        assert store.delete(target) is False


# ---------------------------------------------------------------------------
# ChunkFileCodec
# ---------------------------------------------------------------------------

class TestChunkFileCodec:
    BODY = "{class=LedgerEntry;key=k1;amount=42.0;}"

    def test_write_then_read(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        digest = codec.write(path, self.BODY)
        assert digest == sha256_digest(self.BODY.encode())
        assert codec.read(path, digest) == (self.BODY, digest)

    def test_header_line(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        digest = codec.write(path, self.BODY)
        header = path.read_text().split("\n", 1)[0]
        assert header == f"digest={digest};algorithm=sha256;"

    def test_read_without_expected_uses_header(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        digest = codec.write(path, self.BODY)
        assert codec.read(path)[1] == digest

    def test_tampered_body_reports_expected_and_actual(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        digest = codec.write(path, self.BODY)
        raw = path.read_bytes().replace(b"42.0", b"99.0")
        path.write_bytes(raw)

        with pytest.raises(IntegrityMismatch) as exc_info:
            codec.read(path, digest)
        tampered = sha256_digest(self.BODY.replace("42.0", "99.0").encode())
        assert exc_info.value.expected == digest
        assert exc_info.value.actual == tampered
        assert exc_info.value.path == str(path)

    def test_header_disagreeing_with_body(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        codec.write(path, self.BODY)
        path.write_bytes(b"digest=ABCD;algorithm=sha256;\n" + self.BODY.encode())
        with pytest.raises(IntegrityMismatch) as exc_info:
            codec.read(path)
        assert exc_info.value.expected == "ABCD"

    def test_stale_expected_digest(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        old = codec.write(path, self.BODY)
        codec.write(path, self.BODY + "{class=LedgerEntry;key=k2;amount=1.0;}")
        with pytest.raises(IntegrityMismatch):
            codec.read(path, old)

    def test_missing_header(self, tmp_path):
        path = tmp_path / "c.chunk"
        path.write_bytes(self.BODY.encode())
        with pytest.raises(ParseError, match="Missing digest header"):
            ChunkFileCodec().read(path)

    def test_header_without_digest(self, tmp_path):
        path = tmp_path / "c.chunk"
        path.write_bytes(b"algorithm=sha256;\n" + self.BODY.encode())
        with pytest.raises(ParseError, match="has no digest"):
            ChunkFileCodec().read(path)

    def test_alternate_algorithm_verifies(self, tmp_path):
        writer = ChunkFileCodec(digest=blake2b_digest, algorithm="blake2b")
        path = tmp_path / "c.chunk"
        digest = writer.write(path, self.BODY)
        assert ChunkFileCodec().read(path, digest) == (self.BODY, digest)

    def test_unknown_header_algorithm_is_a_parse_error(self, tmp_path):
        codec = ChunkFileCodec()
        path = tmp_path / "c.chunk"
        codec.write(path, self.BODY)
        path.write_bytes(path.read_bytes().replace(b"algorithm=sha256", b"algorithm=md5"))
        with pytest.raises(ParseError, match="Unknown digest algorithm 'md5'"):
            codec.read(path)
