"""Bracket-aware field grammar.

Serialized ledger content is a sequence of ``field=value;`` pairs.  A
value may be a balanced ``{...}`` section holding a list or a nested
structure, and sections nest to any depth::

    key=abc;amount=12.5;tags={food,travel};meta={note={a;b};};

Every scanner here raises ``ParseError`` on unbalanced or otherwise
malformed input.  Nothing returns partially extracted text.
"""

from __future__ import annotations

from collections.abc import Iterable

from .errors import ParseError

OPEN = "{"
CLOSE = "}"
PAIR_SEP = ";"
KEY_SEP = "="
LIST_SEP = ","


def _scan_section(text: str, open_index: int) -> tuple[str, int]:
    """Return ``(content, end)`` for the section opening at *open_index*.

    ``end`` is the index just past the matching close brace.
    """
    depth = 0
    for i in range(open_index, len(text)):
        ch = text[i]
        if ch == OPEN:
            depth += 1
        elif ch == CLOSE:
            depth -= 1
            if depth == 0:
                return text[open_index + 1:i], i + 1
    raise ParseError("Unbalanced '{' with no closing '}'", text, open_index)


def extract_bracket_section(text: str, start: int = 0) -> str:
    """Return the content of the first balanced brace pair at/after *start*.

    >>> extract_bracket_section("a={x,{y}};")
    'x,{y}'
    """
    open_index = text.find(OPEN, start)
    if open_index == -1:
        raise ParseError("Missing opening '{'", text, start)
    stray = text.find(CLOSE, start, open_index)
    if stray != -1:
        raise ParseError("Unmatched '}'", text, stray)
    content, _ = _scan_section(text, open_index)
    return content


def extract_all_top_level_bracket_sections(text: str) -> list[str]:
    """Return every top-level bracketed section of *text* in order.

    Nested braces are skipped over, and text between sections is ignored::

        >>> extract_all_top_level_bracket_sections(
        ...     "{ hello {world} my } first {program}")
        [' hello {world} my ', 'program']
    """
    sections: list[str] = []
    index = 0
    while True:
        open_index = text.find(OPEN, index)
        limit = len(text) if open_index == -1 else open_index
        stray = text.find(CLOSE, index, limit)
        if stray != -1:
            raise ParseError("Unmatched '}'", text, stray)
        if open_index == -1:
            return sections
        content, index = _scan_section(text, open_index)
        sections.append(content)


def _skip_space(text: str, index: int) -> int:
    while index < len(text) and text[index].isspace():
        index += 1
    return index


def _scan_value(text: str, start: int) -> tuple[str, int]:
    """Scan a value up to its top-level ``;``.

    Bracketed spans inside the value are consumed whole, so a ``;`` or
    ``=`` inside braces does not end the value.  Returns the stripped
    value and the index just past the terminating ``;``.
    """
    index = start
    while index < len(text):
        ch = text[index]
        if ch == OPEN:
            _, index = _scan_section(text, index)
            continue
        if ch == CLOSE:
            raise ParseError("Unmatched '}'", text, index)
        if ch == PAIR_SEP:
            return text[start:index].strip(), index + 1
        index += 1
    raise ParseError("Missing terminating ';'", text, start)


def extract_field_value_pairs(text: str) -> list[tuple[str, str]]:
    """Split *text* into ``(field, value)`` pairs.

    Bracketed values keep their braces so that list and nested values
    survive a parse/encode round trip unchanged.
    """
    pairs: list[tuple[str, str]] = []
    index = _skip_space(text, 0)
    while index < len(text):
        eq = text.find(KEY_SEP, index)
        semi = text.find(PAIR_SEP, index)
        if eq == -1 or (semi != -1 and semi < eq):
            raise ParseError("Expected 'field=value;'", text, index)
        field = text[index:eq].strip()
        if not field:
            raise ParseError("Empty field name", text, index)
        if OPEN in field or CLOSE in field:
            raise ParseError("Brace in field name", text, index)
        value, index = _scan_value(text, eq + 1)
        pairs.append((field, value))
        index = _skip_space(text, index)
    return pairs


def parse_to_parameter_map(text: str):
    """Parse ``field=value;`` text into an ordered ``ParameterMap``."""
    from .params import ParameterMap

    return ParameterMap.from_pairs(extract_field_value_pairs(text))


def decode_list(text: str) -> list[str]:
    """Split the first bracketed section of *text* on ``,``.

    Only one nesting level is understood: a ``,`` inside a nested section
    still splits.
    """
    content = extract_bracket_section(text)
    if not content.strip():
        return []
    return [item.strip() for item in content.split(LIST_SEP)]


def encode_list(items: Iterable[object]) -> str:
    """Encode *items* as ``{a,b,c}``."""
    return OPEN + LIST_SEP.join(str(item) for item in items) + CLOSE
