"""
Text scanner that pulls ``INSERT INTO ... VALUES ...;`` statements out of a dump.

This is not a SQL grammar: only INSERT statements are recognised and anything
between them (DDL, comments, ``SET`` statements) is skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

from .tokenizer import QUOTE_CHARS, skip_quoted, tokenize

_IDENTIFIER = r"[A-Za-z_][A-Za-z0-9_]*"

_INSERT_HEADER = re.compile(
    r"INSERT\s+(?:IGNORE\s+)?INTO\s+"
    rf"(?:[`\"']?{_IDENTIFIER}[`\"']?\.)?"
    rf"[`\"']?(?P<table>{_IDENTIFIER})[`\"']?\s*"
    r"(?P<columns>\([^)]*\))?\s*VALUES\s*",
    re.IGNORECASE,
)

_COLUMN_QUOTES = re.compile(r"[`\"']")


@dataclass(frozen=True)
class InsertBlock:
    """
    One extracted INSERT statement.

    ``columns`` is ``None`` when the dump omitted an explicit column list; in
    that case readers fall back to positional indexes.
    """

    table: str
    columns: tuple[str, ...] | None
    rows: tuple[tuple[str | None, ...], ...]

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class _StatementSpan:
    table: str
    columns_text: str | None
    values_text: str


def _find_statement_end(text: str, start: int) -> int:
    """Return the index of the terminating ``;`` outside quotes (or end of text)."""

    length = len(text)
    i = start
    while i < length:
        ch = text[i]
        if ch in QUOTE_CHARS:
            i = skip_quoted(text, i, ch)
            continue
        if ch == ";":
            return i
        i += 1
    return length


def _iter_statement_spans(text: str) -> Iterator[_StatementSpan]:
    position = 0
    while True:
        match = _INSERT_HEADER.search(text, position)
        if match is None:
            return
        end = _find_statement_end(text, match.end())
        yield _StatementSpan(
            table=match.group("table"),
            columns_text=match.group("columns"),
            values_text=text[match.end() : end],
        )
        position = end + 1


def parse_column_list(columns_text: str | None) -> tuple[str, ...] | None:
    """Normalize ``(`Id`, "Email")`` into ``("id", "email")``."""

    if not columns_text:
        return None
    inner = columns_text.strip()
    if inner.startswith("("):
        inner = inner[1:]
    if inner.endswith(")"):
        inner = inner[:-1]
    columns = tuple(_COLUMN_QUOTES.sub("", part).strip().lower() for part in inner.split(","))
    return columns if any(columns) else None


def _build_block(span: _StatementSpan) -> InsertBlock:
    return InsertBlock(
        table=span.table,
        columns=parse_column_list(span.columns_text),
        rows=tuple(tuple(values) for values in tokenize(span.values_text)),
    )


def extract_insert_blocks(text: str, table: str) -> list[InsertBlock]:
    """
    Return every INSERT statement targeting ``table`` (case-insensitive).

    Only matching statements are tokenized, so scanning a large dump for one
    table stays cheap.
    """

    wanted = table.lower()
    return [_build_block(span) for span in _iter_statement_spans(text) if span.table.lower() == wanted]


def extract_first_matching(text: str, variants: Sequence[str]) -> tuple[str | None, list[InsertBlock]]:
    """
    Try table-name variants in priority order and return the first with matches.

    Returns ``(variant, blocks)``; ``(None, [])`` when no variant matched.
    """

    for variant in variants:
        blocks = extract_insert_blocks(text, variant)
        if blocks:
            return variant, blocks
    return None, []


def extract_all_matching(text: str, variants: Iterable[str]) -> list[InsertBlock]:
    """Merge the statements of every variant (each table scanned once)."""

    wanted = {variant.lower() for variant in variants}
    return [_build_block(span) for span in _iter_statement_spans(text) if span.table.lower() in wanted]


def detect_tables(text: str) -> list[str]:
    """List every distinct table name seen in an INSERT, in first-seen order."""

    seen: dict[str, None] = {}
    for span in _iter_statement_spans(text):
        seen.setdefault(span.table, None)
    return list(seen)


__all__ = [
    "InsertBlock",
    "detect_tables",
    "extract_all_matching",
    "extract_first_matching",
    "extract_insert_blocks",
    "parse_column_list",
]
