"""Property tests for the field grammar.

1. Any ParameterMap with legal keys and brace-free or balanced values
   survives encode → decode unchanged, order included.
2. Unbalanced input never parses: it raises ParseError instead of
   returning a truncated value.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings, strategies as st

from chunk_ledger.core.errors import ParseError
from chunk_ledger.core.grammar import extract_all_top_level_bracket_sections
from chunk_ledger.core.params import ParameterMap

_key = st.text(
    alphabet=st.characters(blacklist_characters="=;{}", blacklist_categories=("Cs", "Zs", "Zl", "Zp", "Cc")),
    min_size=1,
    max_size=12,
)
_plain = st.text(
    alphabet=st.characters(blacklist_characters=";{}", blacklist_categories=("Cs", "Zs", "Zl", "Zp", "Cc")),
    max_size=20,
)
_bracketed = _plain.map(lambda s: "{" + s.replace("=", "") + "}")
_value = st.one_of(_plain, _bracketed)


@given(st.lists(st.tuples(_key, _value), max_size=10, unique_by=lambda kv: kv[0]))
@settings(max_examples=200)
def test_encode_decode_round_trip(pairs):
    params = ParameterMap(pairs)
    assert ParameterMap.decode(params.encode()) == params


@given(st.lists(_plain, min_size=1, max_size=5))
def test_sections_round_trip(contents):
    text = "".join("{" + c + "}" for c in contents)
    assert extract_all_top_level_bracket_sections(text) == contents


@given(_plain, st.integers(min_value=1, max_value=4))
def test_unbalanced_open_always_raises(prefix, depth):
    with pytest.raises(ParseError):
        extract_all_top_level_bracket_sections(prefix + "{" * depth + "x" + "}" * (depth - 1))
