"""Utilities for loading the legacy-dump column map."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from flask import current_app

DEFAULT_COLUMN_MAP_PATH = Path(__file__).resolve().parent / "legacy_dump_v1.yaml"

REQUIRED_SOURCES = ("payments", "members", "staff", "packages")


class MappingLoadError(RuntimeError):
    """Raised when a column map cannot be loaded or validated."""


@dataclass(frozen=True)
class SourceField:
    """One semantic field: candidate column names plus an optional positional index."""

    name: str
    candidates: tuple[str, ...]
    position: int | None = None


@dataclass(frozen=True)
class SourceSpec:
    kind: str
    tables: tuple[str, ...]
    fields: Mapping[str, SourceField]

    def field(self, name: str) -> SourceField:
        try:
            return self.fields[name]
        except KeyError as exc:
            raise MappingLoadError(f"Source '{self.kind}' declares no field '{name}'.") from exc


@dataclass(frozen=True)
class ColumnMap:
    version: int
    name: str
    sources: Mapping[str, SourceSpec]
    role_tables: tuple[str, ...]
    success_statuses: tuple[str, ...]
    checksum: str
    path: Path

    def source(self, kind: str) -> SourceSpec:
        try:
            return self.sources[kind]
        except KeyError as exc:
            raise MappingLoadError(f"Column map has no source '{kind}'.") from exc


def _string_tuple(values: Any, *, label: str) -> tuple[str, ...]:
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        raise MappingLoadError(f"{label} must be a list, got {values!r}")
    cleaned = tuple(str(value).strip() for value in values if str(value).strip())
    if not cleaned:
        raise MappingLoadError(f"{label} cannot be empty.")
    return cleaned


def _load_source(kind: str, payload: Any) -> SourceSpec:
    if not isinstance(payload, Mapping):
        raise MappingLoadError(f"Source '{kind}' must be a mapping, got {payload!r}")
    tables = _string_tuple(payload.get("tables"), label=f"Source '{kind}' tables")
    fields_payload = payload.get("fields")
    if not isinstance(fields_payload, Mapping) or not fields_payload:
        raise MappingLoadError(f"Source '{kind}' requires a non-empty 'fields' mapping.")

    fields: dict[str, SourceField] = {}
    for name, entry in fields_payload.items():
        if not isinstance(entry, Mapping):
            raise MappingLoadError(f"Field '{kind}.{name}' must be a mapping, got {entry!r}")
        candidates = _string_tuple(entry.get("candidates"), label=f"Field '{kind}.{name}' candidates")
        position = entry.get("position")
        if position is not None:
            try:
                position = int(position)
            except (TypeError, ValueError) as exc:
                raise MappingLoadError(f"Field '{kind}.{name}' has invalid position {position!r}") from exc
            if position < 0:
                raise MappingLoadError(f"Field '{kind}.{name}' position cannot be negative.")
        fields[str(name)] = SourceField(name=str(name), candidates=candidates, position=position)
    return SourceSpec(kind=kind, tables=tables, fields=fields)


def load_column_map(path: str | Path = DEFAULT_COLUMN_MAP_PATH) -> ColumnMap:
    """
    Load and validate a YAML column map.
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Column map file not found at {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise MappingLoadError(f"Failed to parse column map YAML at {path}: {exc}") from exc

    try:
        version = int(raw["version"])
        sources_payload = raw["sources"]
    except KeyError as exc:
        raise MappingLoadError(f"Missing required column map attribute: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise MappingLoadError(f"Invalid column map attribute: {exc}") from exc

    if not isinstance(sources_payload, Mapping):
        raise MappingLoadError("Column map 'sources' must be a mapping.")
    missing = [kind for kind in REQUIRED_SOURCES if kind not in sources_payload]
    if missing:
        raise MappingLoadError(f"Column map is missing sources: {', '.join(missing)}")

    sources = {str(kind): _load_source(str(kind), payload) for kind, payload in sources_payload.items()}
    role_tables = _string_tuple(raw.get("role_tables", ["admin", "trainer"]), label="role_tables")
    success_statuses = tuple(
        status.lower() for status in _string_tuple(raw.get("success_statuses"), label="success_statuses")
    )

    return ColumnMap(
        version=version,
        name=str(raw.get("name") or path.stem),
        sources=sources,
        role_tables=tuple(table.lower() for table in role_tables),
        success_statuses=success_statuses,
        checksum=_compute_checksum(raw),
        path=path,
    )


_default_map: ColumnMap | None = None


def default_column_map() -> ColumnMap:
    """Return the bundled column map, loaded once per process."""

    global _default_map
    if _default_map is None:
        _default_map = load_column_map(DEFAULT_COLUMN_MAP_PATH)
    return _default_map


def get_active_column_map() -> ColumnMap:
    """
    Load the configured column map (cached per app).
    Cache is invalidated if the file modification time changes.
    """

    config_path = current_app.config.get("MIGRATION_COLUMN_MAP_PATH")
    config_path = Path(config_path) if config_path else DEFAULT_COLUMN_MAP_PATH
    if not config_path.exists():
        raise MappingLoadError(f"Column map file not found at {config_path}")

    cache: dict[str, tuple[ColumnMap, float]] = current_app.extensions.setdefault("_migration_column_map_cache", {})
    cache_key = str(config_path)
    current_mtime = config_path.stat().st_mtime

    cached_entry = cache.get(cache_key)
    if cached_entry:
        cached_map, cached_mtime = cached_entry
        if current_mtime == cached_mtime:
            return cached_map
        current_app.logger.debug(f"Column map changed, reloading: {config_path}")

    column_map = load_column_map(config_path)
    cache[cache_key] = (column_map, current_mtime)
    return column_map


def _compute_checksum(payload: Mapping[str, Any]) -> str:
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


__all__ = [
    "ColumnMap",
    "DEFAULT_COLUMN_MAP_PATH",
    "MappingLoadError",
    "SourceField",
    "SourceSpec",
    "default_column_map",
    "get_active_column_map",
    "load_column_map",
]
