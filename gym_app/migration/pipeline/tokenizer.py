"""
Quote-aware tokenizer for the literal tuples of an ``INSERT ... VALUES`` clause.

Dumps from legacy systems are rarely escaped consistently, so nothing in this
module raises on malformed input: an unclosed quote simply swallows the rest of
the current value.
"""

from __future__ import annotations

import re

QUOTE_CHARS = ("'", '"')

_NULL_TOKEN = re.compile(r"^NULL$", re.IGNORECASE)

# MySQL backslash escapes; anything else folds to the escaped character.
_BACKSLASH_ESCAPES = {
    "0": "\0",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "\\": "\\",
    "'": "'",
    '"': '"',
}


def skip_quoted(text: str, index: int, quote: str) -> int:
    """
    Return the index just past the quoted span opened at ``index``.

    Backslash escapes and doubled quotes stay inside the span. When the span
    never closes, the length of ``text`` is returned.
    """

    length = len(text)
    i = index + 1
    while i < length:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            if i + 1 < length and text[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return length


def split_tuples(block: str) -> list[str]:
    """
    Split a VALUES block into the inner text of each top-level tuple.

    ``"('a', 1), ('b', 2)"`` becomes ``["'a', 1", "'b', 2"]``. Parentheses
    inside quoted strings do not affect the nesting depth.
    """

    tuples: list[str] = []
    depth = 0
    start: int | None = None
    i = 0
    length = len(block)
    while i < length:
        ch = block[i]
        if ch in QUOTE_CHARS:
            i = skip_quoted(block, i, ch)
            continue
        if ch == "(":
            if depth == 0:
                start = i + 1
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                tuples.append(block[start:i])
                start = None
        i += 1

    if start is not None:
        tuples.append(block[start:])
    return tuples


def split_values(inner: str) -> list[str]:
    """Split the inner text of one tuple on top-level commas, keeping raw tokens."""

    if not inner.strip():
        return []

    tokens: list[str] = []
    depth = 0
    token_start = 0
    i = 0
    length = len(inner)
    while i < length:
        ch = inner[i]
        if ch in QUOTE_CHARS:
            i = skip_quoted(inner, i, ch)
            continue
        if ch == "(":
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
        elif ch == "," and depth == 0:
            tokens.append(inner[token_start:i])
            token_start = i + 1
        i += 1

    tokens.append(inner[token_start:])
    return tokens


def _unquote(token: str, quote: str) -> str:
    chars: list[str] = []
    i = 1
    length = len(token)
    while i < length:
        ch = token[i]
        if ch == "\\" and i + 1 < length:
            escaped = token[i + 1]
            chars.append(_BACKSLASH_ESCAPES.get(escaped, escaped))
            i += 2
            continue
        if ch == quote:
            if i + 1 < length and token[i + 1] == quote:
                chars.append(quote)
                i += 2
                continue
            break
        chars.append(ch)
        i += 1
    return "".join(chars)


def decode_value(token: str) -> str | None:
    """
    Decode one raw literal token.

    ``NULL`` becomes ``None``, quoted strings are unescaped and anything else
    is returned stripped (numbers stay strings at this layer).
    """

    text = token.strip()
    if _NULL_TOKEN.match(text):
        return None
    if text and text[0] in QUOTE_CHARS:
        return _unquote(text, text[0])
    return text


def decode_values(inner: str) -> list[str | None]:
    return [decode_value(token) for token in split_values(inner)]


def tokenize(block: str) -> list[list[str | None]]:
    """Tokenize a full VALUES block into decoded rows."""

    return [decode_values(inner) for inner in split_tuples(block)]


__all__ = [
    "QUOTE_CHARS",
    "decode_value",
    "decode_values",
    "skip_quoted",
    "split_tuples",
    "split_values",
    "tokenize",
]
