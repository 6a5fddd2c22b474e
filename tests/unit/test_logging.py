"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from chunk_ledger.observability.logger import (
    current_operation,
    get_logger,
    ledger_operation,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _last_record(capsys) -> dict:
    return json.loads(capsys.readouterr().err.strip().splitlines()[-1])


def test_stdlib_records_rendered_as_json(capsys):
    setup_logging("INFO", "json")
    logging.getLogger("chunk_ledger.ledger.chunk").info("Chunk %s sealed", "c1")

    record = _last_record(capsys)
    assert record["event"] == "Chunk c1 sealed"
    assert record["level"] == "info"
    assert record["logger"] == "chunk_ledger.ledger.chunk"
    assert "operation_id" not in record


def test_lines_inside_an_operation_are_tagged(capsys):
    setup_logging("INFO", "json")
    with ledger_operation("verify") as operation_id:
        logging.getLogger("chunk_ledger.ledger.manager").warning("Chunk %s failed", "c1")
        stdlib_record = _last_record(capsys)
        get_logger("chunk_ledger.cli").info("ledger_verified", chunks=2)
        structured_record = _last_record(capsys)

    for record in (stdlib_record, structured_record):
        assert record["operation"] == "verify"
        assert record["operation_id"] == operation_id
    assert structured_record["chunks"] == 2


def test_level_filters(capsys):
    setup_logging("WARNING", "json")
    logging.getLogger("chunk_ledger").info("hidden")
    assert capsys.readouterr().err == ""


def test_operations_nest_and_restore():
    assert current_operation() is None
    with ledger_operation("summary") as outer:
        with ledger_operation("verify") as inner:
            assert current_operation() == ("verify", inner)
        assert current_operation() == ("summary", outer)
    assert current_operation() is None
