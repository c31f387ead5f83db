"""Package planning: legacy package metadata and placeholders for member references."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from gym_app.migration.mapping import ColumnMap, default_column_map

from .coercers import coerce_date, coerce_int, coerce_number, coerce_tinyint
from .columns import normalize_column_name, resolve_fields, value_at
from .extractor import InsertBlock, extract_all_matching

CANONICAL_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000

PLACEHOLDER_DURATION_DAYS = 30
PLACEHOLDER_ACCESS_LEVEL = "off_peak_hours"

_TRUTHY = {"true", "yes", "y", "on", "t"}


def is_canonical_id(value: str | None) -> bool:
    """Whether a reference already looks like a target-system (UUID) id."""

    return bool(value) and bool(CANONICAL_ID_PATTERN.match(value.strip()))


def _flag(value: str | None) -> bool | None:
    coerced = coerce_tinyint(value)
    if isinstance(coerced, bool):
        return coerced
    if coerced is None:
        return None
    return str(coerced).strip().lower() in _TRUTHY


@dataclass(frozen=True)
class LegacyPackage:
    legacy_id: str | None
    name: str
    price: int | float = 0
    duration_days: int = PLACEHOLDER_DURATION_DAYS
    number_of_passes: int = 0
    access_level: str = PLACEHOLDER_ACCESS_LEVEL
    requires_trainer: bool = False
    description: str | None = None
    created_at: str | None = None
    archived: bool = False


@dataclass
class PackageCatalog:
    """Legacy packages indexed by legacy id and by lower-cased name."""

    by_id: dict[str, LegacyPackage] = field(default_factory=dict)
    by_name: dict[str, LegacyPackage] = field(default_factory=dict)

    def add(self, package: LegacyPackage) -> None:
        if package.legacy_id:
            self.by_id.setdefault(package.legacy_id, package)
        self.by_name.setdefault(package.name.lower(), package)

    def lookup(self, reference: str) -> LegacyPackage | None:
        return self.by_id.get(reference) or self.by_name.get(reference.strip().lower())

    def __len__(self) -> int:
        return len(self.by_name)


def read_legacy_packages(blocks: Iterable[InsertBlock], column_map: ColumnMap | None = None) -> PackageCatalog:
    """Read every legacy package row that carries a name."""

    column_map = column_map or default_column_map()
    source = column_map.source("packages")
    catalog = PackageCatalog()

    for block in blocks:
        indexes = resolve_fields(block.columns, source)
        active_index = indexes.get("is_active")
        active_means_archived = (
            block.columns is not None
            and active_index is not None
            and normalize_column_name(block.columns[active_index]) == "archived"
        )
        for row in block.rows:
            name = value_at(row, indexes.get("name"))
            if not name:
                continue
            duration = coerce_int(value_at(row, indexes.get("duration")))
            active_flag = _flag(value_at(row, active_index))
            if active_flag is None:
                archived = False
            else:
                archived = active_flag if active_means_archived else not active_flag
            catalog.add(
                LegacyPackage(
                    legacy_id=value_at(row, indexes.get("id")),
                    name=name[:NAME_MAX_LENGTH],
                    price=coerce_number(value_at(row, indexes.get("price"))) or 0,
                    duration_days=max(1, duration) if duration is not None else PLACEHOLDER_DURATION_DAYS,
                    number_of_passes=coerce_int(value_at(row, indexes.get("number_of_passes"))) or 0,
                    access_level=value_at(row, indexes.get("access_level")) or PLACEHOLDER_ACCESS_LEVEL,
                    requires_trainer=bool(_flag(value_at(row, indexes.get("requires_trainer")))),
                    description=(value_at(row, indexes.get("description")) or None),
                    created_at=coerce_date(value_at(row, indexes.get("created_at"))),
                    archived=archived,
                )
            )
    return catalog


def extract_legacy_packages(text: str, column_map: ColumnMap | None = None) -> PackageCatalog:
    column_map = column_map or default_column_map()
    blocks = extract_all_matching(text, column_map.source("packages").tables)
    return read_legacy_packages(blocks, column_map)


@dataclass(frozen=True)
class PlannedPackage:
    """One package to resolve or create, with every member reference it satisfies."""

    name: str
    references: tuple[str, ...]
    record: dict[str, Any]
    from_legacy: bool

    @property
    def canonical_id(self) -> str | None:
        return next((ref for ref in self.references if is_canonical_id(ref)), None)


@dataclass
class PackagePlan:
    packages: list[PlannedPackage] = field(default_factory=list)
    names_by_reference: dict[str, str] = field(default_factory=dict)

    def name_for(self, reference: str) -> str | None:
        return self.names_by_reference.get(reference)

    def __iter__(self) -> Iterator[PlannedPackage]:
        return iter(self.packages)

    def __len__(self) -> int:
        return len(self.packages)


def package_record(name: str, legacy: LegacyPackage | None, tenant_id: str) -> dict[str, Any]:
    """Target-schema package row built from legacy metadata, or a placeholder."""

    name = name[:NAME_MAX_LENGTH]
    if legacy is None:
        return {
            "name": name,
            "price": 0,
            "duration_value": PLACEHOLDER_DURATION_DAYS,
            "duration_unit": "days",
            "number_of_passes": 0,
            "access_level": PLACEHOLDER_ACCESS_LEVEL,
            "requires_trainer": False,
            "description": f"Migrated package ({name})"[:DESCRIPTION_MAX_LENGTH],
            "archived": False,
            "gym_id": tenant_id,
        }

    record: dict[str, Any] = {
        "name": name,
        "price": legacy.price,
        "duration_value": max(1, legacy.duration_days),
        "duration_unit": "days",
        "number_of_passes": legacy.number_of_passes,
        "access_level": legacy.access_level,
        "requires_trainer": legacy.requires_trainer,
        "description": (legacy.description or f"Migrated package ({name})")[:DESCRIPTION_MAX_LENGTH],
        "archived": legacy.archived,
        "gym_id": tenant_id,
    }
    if legacy.created_at:
        record["created_at"] = legacy.created_at
    return record


def plan_packages(references: Iterable[str | None], catalog: PackageCatalog, tenant_id: str) -> PackagePlan:
    """
    Plan one package per distinct resolved name.

    References matching a legacy package (by legacy id, then by name) take its
    name and metadata; the rest become placeholders named after the reference.
    Canonical (UUID) references keep their id on the planned row.
    """

    plan = PackagePlan()
    grouped: dict[str, tuple[str, list[str], LegacyPackage | None]] = {}
    for reference in references:
        if not reference or reference in plan.names_by_reference:
            continue
        legacy = catalog.lookup(reference)
        name = (legacy.name if legacy else reference.strip())[:NAME_MAX_LENGTH]
        plan.names_by_reference[reference] = name
        key = name.lower()
        if key in grouped:
            grouped[key][1].append(reference)
        else:
            grouped[key] = (name, [reference], legacy)

    for name, refs, legacy in grouped.values():
        record = package_record(name, legacy, tenant_id)
        canonical = next((ref for ref in refs if is_canonical_id(ref)), None)
        if canonical:
            record = {"id": canonical, **record}
        plan.packages.append(
            PlannedPackage(name=name, references=tuple(refs), record=record, from_legacy=legacy is not None)
        )
    return plan


__all__ = [
    "CANONICAL_ID_PATTERN",
    "LegacyPackage",
    "PackageCatalog",
    "PackagePlan",
    "PlannedPackage",
    "extract_legacy_packages",
    "is_canonical_id",
    "package_record",
    "plan_packages",
    "read_legacy_packages",
]
