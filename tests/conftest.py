"""Shared fixtures for the chunk-ledger test suite."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from chunk_ledger.context import LedgerContext
from chunk_ledger.core.config import LedgerSettings
from chunk_ledger.domain.entries import LedgerEntry, StockEntry


# ---------------------------------------------------------------------------
# Settings / context
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path) -> LedgerSettings:
    """Settings rooted in a temporary data directory, small chunks."""
    return LedgerSettings(
        data_dir=str(tmp_path / "ledger"),
        chunk={"capacity": 3},
        bus={"poll_interval": 0.01, "halt_timeout": 2.0},
    )


@pytest.fixture
def ctx(settings):
    """A started ledger context, halted after the test."""
    context = LedgerContext(settings).start()
    yield context
    context.close()


@pytest.fixture
def data_dir(settings, tmp_path):
    return tmp_path / "ledger"


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

WHEN = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cash_entry() -> LedgerEntry:
    return LedgerEntry(amount=42.0, description="Salary", occurred_at=WHEN, key="cash-1")


@pytest.fixture
def stock_entry() -> StockEntry:
    return StockEntry(
        amount=-150.0, description="Buy ACME", occurred_at=WHEN, key="stock-1", shares=5,
    )


@pytest.fixture
def make_cash():
    """Factory for cash entries with a fixed timestamp."""
    def _make(key: str, amount: float, occurred_at: datetime = WHEN) -> LedgerEntry:
        return LedgerEntry(
            amount=amount, description=f"entry {key}", occurred_at=occurred_at, key=key,
        )
    return _make


@pytest.fixture
def make_stock():
    """Factory for stock entries with a fixed timestamp."""
    def _make(key: str, amount: float, shares: float) -> StockEntry:
        return StockEntry(
            amount=amount, description=f"trade {key}", occurred_at=WHEN, key=key, shares=shares,
        )
    return _make
