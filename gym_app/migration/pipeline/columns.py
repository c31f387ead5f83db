"""
Column resolution for legacy INSERT blocks.

Legacy dumps name the same concept a dozen different ways (``user_id``,
``customerId``, ``member``...). Each semantic field carries a priority-ordered
list of candidate names; resolution tries exact matches before containment.
"""

from __future__ import annotations

import re
from typing import AbstractSet, Mapping, Sequence

from rapidfuzz import fuzz, process

from gym_app.migration.mapping import SourceSpec

_NON_ALNUM = re.compile(r"[^a-z0-9]")

# Containment on very short names ("id", "no") matches nearly everything.
MIN_CONTAINMENT_LENGTH = 3

HINT_SCORE_CUTOFF = 70.0


def normalize_column_name(name: str) -> str:
    return _NON_ALNUM.sub("", str(name).lower())


def resolve_column(
    columns: Sequence[str] | None,
    candidates: Sequence[str],
    *,
    exclude: AbstractSet[int] = frozenset(),
) -> int | None:
    """
    Return the index of the column best matching ``candidates``.

    Exact (normalized) matches win in candidate priority order; otherwise the
    first candidate contained in a column name, or containing one, is used.
    Columns listed in ``exclude`` are never returned. ``None`` when nothing
    matches or when the block has no column list.
    """

    if columns is None:
        return None

    normalized = [normalize_column_name(column) for column in columns]
    wanted = [normalize_column_name(candidate) for candidate in candidates]

    for candidate in wanted:
        for index, column in enumerate(normalized):
            if index not in exclude and column == candidate:
                return index

    for candidate in wanted:
        if len(candidate) < MIN_CONTAINMENT_LENGTH:
            continue
        for index, column in enumerate(normalized):
            if index in exclude or len(column) < MIN_CONTAINMENT_LENGTH:
                continue
            if candidate in column or column in candidate:
                return index
    return None


def resolve_fields(columns: Sequence[str] | None, source: SourceSpec) -> dict[str, int | None]:
    """
    Resolve every field of ``source`` against one block's columns.

    A column claimed by one field is not offered to the others, and all exact
    matches are claimed before any containment match. Without a column list
    the declared positional indexes are used instead.
    """

    if columns is None:
        return {name: spec.position for name, spec in source.fields.items()}

    resolved: dict[str, int | None] = {}
    claimed: set[int] = set()
    normalized = [normalize_column_name(column) for column in columns]

    for name, spec in source.fields.items():
        for candidate in spec.candidates:
            wanted = normalize_column_name(candidate)
            index = next(
                (i for i, column in enumerate(normalized) if column == wanted and i not in claimed),
                None,
            )
            if index is not None:
                resolved[name] = index
                claimed.add(index)
                break

    for name, spec in source.fields.items():
        if name in resolved:
            continue
        index = resolve_column(columns, spec.candidates, exclude=claimed)
        resolved[name] = index
        if index is not None:
            claimed.add(index)
    return resolved


def value_at(row: Sequence[str | None], index: int | None) -> str | None:
    """Read one value from a row; blanks and out-of-range indexes become ``None``."""

    if index is None or index >= len(row):
        return None
    value = row[index]
    if value is None:
        return None
    value = value.strip()
    return value or None


def row_as_mapping(columns: Sequence[str] | None, row: Sequence[str | None]) -> Mapping[str, str | None] | list[str | None]:
    """Raw-row representation used in skip reports and warnings."""

    if columns is None:
        return list(row)
    return {column: row[index] if index < len(row) else None for index, column in enumerate(columns)}


def suggest_columns(
    columns: Sequence[str] | None,
    source: SourceSpec,
    resolved: Mapping[str, int | None],
) -> dict[str, str]:
    """
    Suggest the closest unclaimed column for every unresolved field.

    Suggestions are diagnostics only; they never feed back into resolution.
    """

    if not columns:
        return {}
    claimed = {index for index in resolved.values() if index is not None}
    choices = {index: normalize_column_name(column) for index, column in enumerate(columns) if index not in claimed}
    if not choices:
        return {}

    hints: dict[str, str] = {}
    for name, spec in source.fields.items():
        if resolved.get(name) is not None:
            continue
        best: tuple[float, int] | None = None
        for candidate in spec.candidates:
            match = process.extractOne(
                normalize_column_name(candidate),
                choices,
                scorer=fuzz.ratio,
                score_cutoff=HINT_SCORE_CUTOFF,
            )
            if match is None:
                continue
            _, score, index = match
            if best is None or score > best[0]:
                best = (score, index)
        if best is not None:
            hints[name] = columns[best[1]]
    return hints


__all__ = [
    "MIN_CONTAINMENT_LENGTH",
    "normalize_column_name",
    "resolve_column",
    "resolve_fields",
    "row_as_mapping",
    "suggest_columns",
    "value_at",
]
