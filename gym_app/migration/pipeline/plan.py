"""
Migration plan builder: dump text in, normalized member/staff/package rows out.

The plan is pure data. Nothing here touches a database; the driver decides
whether the plan is only previewed, rendered as SQL, or written.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Sequence

from gym_app.migration.mapping import ColumnMap, SourceSpec, default_column_map

from .coercers import (
    coerce_date,
    coerce_flags,
    coerce_timestamp,
    extract_embedded_payload,
    normalize_email,
    normalize_gender,
    split_full_name,
)
from .columns import resolve_fields, row_as_mapping, suggest_columns, value_at
from .extractor import InsertBlock, detect_tables, extract_first_matching, extract_insert_blocks
from .packages import PackagePlan, extract_legacy_packages, plan_packages
from .reconciliation import ReconciliationMaps, build_reconciliation_maps

logger = logging.getLogger(__name__)

SKIP_NO_IDENTIFIER = "no id & no email"
MAX_ENRICHED_SAMPLES = 20
MAX_DUPLICATE_SAMPLES = 20
ENRICHED_FIELDS = (("package", "package_id"), ("expiry", "membership_expiry"), ("gender", "gender"))


@dataclass
class PlanDiagnostics:
    before_missing: dict[str, int] = field(default_factory=lambda: {"package": 0, "expiry": 0, "gender": 0})
    after_missing: dict[str, int] = field(default_factory=lambda: {"package": 0, "expiry": 0, "gender": 0})
    enriched_samples: list[dict[str, Any]] = field(default_factory=list)
    map_sizes: dict[str, int] = field(default_factory=dict)
    payment_rows: int = 0
    payment_qualifying_rows: int = 0
    member_rows: int = 0
    parsed_members: int = 0
    duplicate_emails_dropped: int = 0
    duplicate_email_samples: list[str] = field(default_factory=list)
    staff_rows: int = 0
    staff_rows_dropped: int = 0
    staff_duplicates_dropped: int = 0
    legacy_packages: int = 0
    column_hints: dict[str, dict[str, str]] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationPlan:
    tenant_id: str
    members: list[dict[str, Any]]
    staff: list[dict[str, Any]]
    packages: PackagePlan
    skipped_payments: int
    skipped_rows: list[dict[str, Any]]
    warnings: list[str]
    detected_tables: list[str]
    diagnostics: PlanDiagnostics

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def staff_count(self) -> int:
        return len(self.staff)


def singular_table_name(table: str) -> str:
    lowered = table.strip().lower()
    return lowered[:-1] if lowered.endswith("s") and len(lowered) > 1 else lowered


def _record_hints(diagnostics: PlanDiagnostics, block: InsertBlock, source: SourceSpec, indexes: dict) -> None:
    hints = suggest_columns(block.columns, source, indexes)
    if hints:
        diagnostics.column_hints.setdefault(block.table, {}).update(hints)


def _resolve_name(full_name: str | None, first: str | None, last: str | None, default_first: str) -> tuple[str, str]:
    if full_name:
        return split_full_name(full_name, default_first)
    if first or last:
        return first or default_first, last or ""
    return default_first, ""


def _qr_payload(**values: Any) -> str:
    return json.dumps(values, separators=(",", ":"))


def _read_members(
    blocks: Sequence[InsertBlock],
    source: SourceSpec,
    tenant_id: str,
    diagnostics: PlanDiagnostics,
    skipped_rows: list[dict[str, Any]],
    now: datetime,
) -> list[dict[str, Any]]:
    members: list[dict[str, Any]] = []
    for block in blocks:
        indexes = resolve_fields(block.columns, source)
        _record_hints(diagnostics, block, source, indexes)
        for row in block.rows:
            diagnostics.member_rows += 1
            member_id = value_at(row, indexes.get("id"))
            if member_id is not None and member_id.upper() == "NULL":
                member_id = None
            email = normalize_email(value_at(row, indexes.get("email")))
            if not member_id and not email:
                skipped_rows.append({"reason": SKIP_NO_IDENTIFIER, "raw": row_as_mapping(block.columns, row)})
                continue

            first_name, last_name = _resolve_name(
                value_at(row, indexes.get("full_name")),
                value_at(row, indexes.get("first_name")),
                value_at(row, indexes.get("last_name")),
                "Member",
            )
            payload = extract_embedded_payload(value_at(row, indexes.get("qr_payload")))
            record: dict[str, Any] = {}
            if member_id:
                record["id"] = member_id
            record.update(
                {
                    "first_name": first_name,
                    "last_name": last_name,
                    "email": email,
                    "phone": value_at(row, indexes.get("phone")),
                    "gender": normalize_gender(value_at(row, indexes.get("gender")) or payload.get("gender")),
                    "date_of_birth": coerce_date(value_at(row, indexes.get("date_of_birth"))),
                    "package_id": value_at(row, indexes.get("package")) or payload.get("package_ref"),
                    "membership_expiry": coerce_date(value_at(row, indexes.get("expiry"))) or payload.get("expiry"),
                    "gym_id": tenant_id,
                    "created_at": coerce_timestamp(value_at(row, indexes.get("created_at")))
                    or now.isoformat(timespec="seconds"),
                }
            )
            members.append(record)
    diagnostics.parsed_members = len(members)
    return members


def _enrich_members(
    members: list[dict[str, Any]],
    maps: ReconciliationMaps,
    diagnostics: PlanDiagnostics,
) -> None:
    for member in members:
        for label, key in ENRICHED_FIELDS:
            if not member.get(key):
                diagnostics.before_missing[label] += 1

        before = {key: member.get(key) for _, key in ENRICHED_FIELDS}
        sources_used: list[str] = []
        missing = [(label, key) for label, key in ENRICHED_FIELDS if not member.get(key)]
        if missing:
            candidates = maps.candidates(
                member_id=member.get("id"),
                email=member.get("email"),
                phone=member.get("phone"),
            )
            for label, key in missing:
                for source_name, entry in candidates:
                    value = {"package": entry.package_ref, "expiry": entry.expiry, "gender": entry.gender}[label]
                    if value:
                        member[key] = value
                        sources_used.append(source_name)
                        break

        after = {key: member.get(key) for _, key in ENRICHED_FIELDS}
        if sources_used and len(diagnostics.enriched_samples) < MAX_ENRICHED_SAMPLES:
            diagnostics.enriched_samples.append(
                {
                    "id": member.get("id"),
                    "email": member.get("email"),
                    "before": before,
                    "after": after,
                    "source": sources_used[0],
                }
            )

        for label, key in ENRICHED_FIELDS:
            if not member.get(key):
                diagnostics.after_missing[label] += 1


def _finalize_member(member: dict[str, Any], today: date) -> dict[str, Any]:
    expiry = member.get("membership_expiry")
    member["status"] = "active" if expiry and expiry >= today.isoformat() else "expired"
    member["qr_code_data"] = _qr_payload(
        userId=member.get("id"),
        packageId=member.get("package_id"),
        expiryDate=expiry,
    )
    return coerce_flags(member)


def _dedupe_by_email(records: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[str]]:
    """First occurrence per email wins; records without an email are all kept."""

    kept: list[dict[str, Any]] = []
    seen: set[str] = set()
    dropped: list[str] = []
    for record in records:
        email = record.get("email")
        if email:
            if email in seen:
                dropped.append(email)
                continue
            seen.add(email)
        kept.append(record)
    return kept, dropped


def _staff_role_for_table(table: str, column_map: ColumnMap) -> str | None:
    singular = singular_table_name(table)
    if singular in column_map.role_tables:
        return singular
    return None


def _read_staff(
    text: str,
    tables: Sequence[str],
    column_map: ColumnMap,
    tenant_id: str,
    diagnostics: PlanDiagnostics,
    today: date,
) -> list[dict[str, Any]]:
    source = column_map.source("staff")
    generic_tables = {table.lower() for table in source.tables}
    staff: list[dict[str, Any]] = []
    seen_tables: set[str] = set()

    for table in tables:
        lowered = table.lower()
        if lowered in seen_tables:
            continue
        table_role = _staff_role_for_table(table, column_map)
        if table_role is None and lowered not in generic_tables:
            continue
        seen_tables.add(lowered)

        for block in extract_insert_blocks(text, table):
            indexes = resolve_fields(block.columns, source)
            _record_hints(diagnostics, block, source, indexes)
            for row in block.rows:
                diagnostics.staff_rows += 1
                staff_id = value_at(row, indexes.get("id"))
                email = normalize_email(value_at(row, indexes.get("email")))
                if not staff_id and not email:
                    diagnostics.staff_rows_dropped += 1
                    continue

                role_name = table_role or (value_at(row, indexes.get("role")) or "staff").lower()
                first_name, last_name = _resolve_name(
                    value_at(row, indexes.get("full_name")),
                    value_at(row, indexes.get("first_name")),
                    value_at(row, indexes.get("last_name")),
                    "Staff",
                )
                record: dict[str, Any] = {}
                if staff_id:
                    record["id"] = staff_id
                record.update(
                    {
                        "first_name": first_name,
                        "last_name": last_name,
                        "email": email,
                        "phone": value_at(row, indexes.get("phone")),
                        "role_name": role_name,
                        "gym_id": tenant_id,
                        "qr_code": _qr_payload(staffId=staff_id, roleName=role_name, gymId=tenant_id),
                        "hire_date": coerce_date(value_at(row, indexes.get("hire_date"))) or today.isoformat(),
                    }
                )
                staff.append(coerce_flags(record))

    kept, dropped = _dedupe_by_email(staff)
    diagnostics.staff_duplicates_dropped = len(dropped)
    return kept


def build_migration_plan(
    text: str,
    tenant_id: str,
    *,
    today: date | None = None,
    now: datetime | None = None,
    column_map: ColumnMap | None = None,
) -> MigrationPlan:
    """
    Parse a dump and assemble the full migration plan for one tenant.

    Every call re-parses ``text``; plans are never cached.
    """

    column_map = column_map or default_column_map()
    now = now or datetime.now(timezone.utc)
    today = today or now.date()
    diagnostics = PlanDiagnostics()
    warnings: list[str] = []
    skipped_rows: list[dict[str, Any]] = []

    detected = detect_tables(text)

    payments_source = column_map.source("payments")
    payments_table, payment_blocks = extract_first_matching(text, payments_source.tables)
    for block in payment_blocks:
        _record_hints(diagnostics, block, payments_source, resolve_fields(block.columns, payments_source))
    maps = build_reconciliation_maps(payment_blocks, column_map)
    warnings.extend(maps.warnings)
    if payments_table is None:
        warnings.append("No payment or subscription INSERT statements found; members will not be enriched.")
    diagnostics.payment_rows = maps.payment_rows
    diagnostics.payment_qualifying_rows = maps.qualifying_rows
    diagnostics.map_sizes = maps.sizes()

    members_source = column_map.source("members")
    members_table, member_blocks = extract_first_matching(text, members_source.tables)
    if members_table is None:
        warnings.append(f"No member INSERT statements found (tried: {', '.join(members_source.tables)}).")
    parsed = _read_members(member_blocks, members_source, tenant_id, diagnostics, skipped_rows, now)
    _enrich_members(parsed, maps, diagnostics)
    members = [_finalize_member(member, today) for member in parsed]

    members, dropped = _dedupe_by_email(members)
    diagnostics.duplicate_emails_dropped = len(dropped)
    diagnostics.duplicate_email_samples = list(dict.fromkeys(dropped))[:MAX_DUPLICATE_SAMPLES]

    staff = _read_staff(text, detected, column_map, tenant_id, diagnostics, today)

    catalog = extract_legacy_packages(text, column_map)
    diagnostics.legacy_packages = len(catalog)
    packages = plan_packages((member.get("package_id") for member in members), catalog, tenant_id)

    logger.info(
        "Migration plan built",
        extra={
            "migration_tenant_id": tenant_id,
            "migration_members": len(members),
            "migration_staff": len(staff),
            "migration_packages": len(packages),
            "migration_skipped_rows": len(skipped_rows),
            "migration_skipped_payments": maps.skipped_payments,
        },
    )

    return MigrationPlan(
        tenant_id=tenant_id,
        members=members,
        staff=staff,
        packages=packages,
        skipped_payments=maps.skipped_payments,
        skipped_rows=skipped_rows,
        warnings=warnings,
        detected_tables=detected,
        diagnostics=diagnostics,
    )


__all__ = [
    "MigrationPlan",
    "PlanDiagnostics",
    "SKIP_NO_IDENTIFIER",
    "build_migration_plan",
    "singular_table_name",
]
