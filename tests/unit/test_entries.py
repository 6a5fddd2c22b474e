"""Tests for Delta, DeltaBuilder, entries and the entry codec."""

from __future__ import annotations

import pytest

from chunk_ledger.core.errors import ParseError
from chunk_ledger.core.params import ParameterMap
from chunk_ledger.domain.delta import Delta, DeltaBuilder
from chunk_ledger.domain.entries import (
    AMOUNT,
    DESCRIPTION,
    OCCURRED_AT,
    SHARES,
    Entry,
    EntryCodec,
    LedgerEntry,
    StockEntry,
    update_entry,
)


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------

class TestDelta:
    def test_difference(self):
        assert Delta.of(SHARES, 5, 8).difference() == 3.0

    def test_empty_text_is_zero(self):
        delta = Delta(AMOUNT, "", "12.5")
        assert delta.old_as_float() == 0.0
        assert delta.difference() == 12.5

    def test_non_numeric_raises(self):
        with pytest.raises(ParseError):
            Delta(DESCRIPTION, "a", "b").difference()

    def test_of_renders_text(self):
        delta = Delta.of("flag", None, True)
        assert delta.old_value == ""
        assert delta.new_value == "true"

    def test_immutable(self):
        delta = Delta.of(AMOUNT, 1, 2)
        with pytest.raises(AttributeError):
            delta.new_value = "3"  # type: ignore[misc]


class TestDeltaBuilder:
    def test_first_record_is_old_value(self):
        builder = DeltaBuilder()
        builder.record(AMOUNT, 1.0)
        builder.record(AMOUNT, 2.0)
        builder.record(AMOUNT, 3.0)
        assert builder.build() == [Delta.of(AMOUNT, 1.0, 3.0)]

    def test_unchanged_fields_dropped(self):
        builder = DeltaBuilder()
        builder.record(AMOUNT, 1.0)
        builder.record(AMOUNT, 1.0)
        builder.record(SHARES, 2.0)
        builder.record(SHARES, 4.0)
        assert [d.field_key for d in builder.build()] == [SHARES]


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------

class TestEntries:
    def test_protocol(self, cash_entry, stock_entry):
        assert isinstance(cash_entry, Entry)
        assert isinstance(stock_entry, Entry)

    def test_contributions(self, cash_entry, stock_entry):
        assert cash_entry.contributions() == {AMOUNT: 42.0}
        assert stock_entry.contributions() == {AMOUNT: -150.0, SHARES: 5.0}

    def test_identity_equality(self, cash_entry):
        twin = LedgerEntry(
            amount=cash_entry.amount,
            description=cash_entry.description,
            occurred_at=cash_entry.occurred_at,
            key=cash_entry.key,
        )
        assert twin != cash_entry

    def test_braces_in_description_rejected(self):
        entry = LedgerEntry(amount=1, description="bad {text}")
        with pytest.raises(ValueError):
            entry.to_params()

    def test_update_entry_reports_changes(self, stock_entry):
        params = ParameterMap([(SHARES, "8"), (AMOUNT, "-150.0")])
        deltas = update_entry(stock_entry, params)
        assert deltas == [Delta.of(SHARES, 5.0, 8.0)]
        assert stock_entry.shares == 8.0

    def test_update_description(self, cash_entry):
        params = ParameterMap.decode("description={Bonus};")
        deltas = update_entry(cash_entry, params)
        assert cash_entry.description == "Bonus"
        assert deltas == [Delta.of(DESCRIPTION, "Salary", "Bonus")]

    def test_update_with_bad_number_raises(self, cash_entry):
        with pytest.raises(ParseError):
            update_entry(cash_entry, ParameterMap([(AMOUNT, "lots")]))

    def test_failed_update_changes_nothing(self, stock_entry):
        params = ParameterMap([(AMOUNT, "20"), (SHARES, "abc")])
        with pytest.raises(ParseError):
            update_entry(stock_entry, params)
        assert stock_entry.amount == -150.0
        assert stock_entry.shares == 5.0

    def test_date_delta_uses_iso_text(self, cash_entry):
        later = cash_entry.occurred_at.replace(month=3)
        deltas = update_entry(cash_entry, ParameterMap([(OCCURRED_AT, later)]))
        assert cash_entry.occurred_at == later
        assert deltas == [Delta(OCCURRED_AT, "2024-01-15T12:00:00+00:00", later.isoformat())]


class TestEntryCodec:
    def test_round_trip_stock(self, stock_entry):
        codec = EntryCodec()
        text = codec.encode(stock_entry)
        assert text.startswith("{class=StockEntry;key=stock-1;")
        decoded = codec.decode(text[1:-1])
        assert isinstance(decoded, StockEntry)
        assert decoded.key == stock_entry.key
        assert decoded.amount == stock_entry.amount
        assert decoded.shares == stock_entry.shares
        assert decoded.description == stock_entry.description
        assert decoded.occurred_at == stock_entry.occurred_at

    def test_description_with_separators(self, cash_entry):
        cash_entry.description = "Rent; March=paid"
        codec = EntryCodec()
        decoded = codec.decode(codec.encode(cash_entry)[1:-1])
        assert decoded.description == "Rent; March=paid"

    def test_unknown_type(self):
        with pytest.raises(ParseError, match="Unknown entry type"):
            EntryCodec().decode("class=Bond;key=b1;amount=1;")

    def test_missing_field(self):
        with pytest.raises(ParseError, match="missing field"):
            EntryCodec().decode("class=LedgerEntry;key=k1;occurred_at=2024-01-01T00:00:00+00:00;")

    def test_restricted_codec(self, stock_entry):
        codec = EntryCodec(LedgerEntry)
        with pytest.raises(ParseError):
            codec.decode(EntryCodec().encode(stock_entry)[1:-1])
