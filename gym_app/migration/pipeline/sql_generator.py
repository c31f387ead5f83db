"""
SQL rendering for migration plans.

Values are rendered by type. Foreign keys that can only be resolved by name at
execution time are carried as :class:`RawExpression` so they are emitted
verbatim instead of being quoted a second time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from .packages import is_canonical_id
from .plan import MigrationPlan

SCRIPT_HEADER = "-- Migration generated by gym migration generate"

# Unique keys a member or staff upsert can target
EMAIL_CONFLICT_COLUMNS = ("email",)
LEGACY_ID_CONFLICT_COLUMNS = ("gym_id", "legacy_id")


@dataclass(frozen=True)
class SqlLiteral:
    """A value that must always be rendered as a quoted string literal."""

    value: Any


@dataclass(frozen=True)
class RawExpression:
    """SQL text rendered as-is (sub-selects, ``NOW()``...)."""

    text: str


class _Default:
    def __repr__(self) -> str:
        return "DEFAULT"


DEFAULT = _Default()


def escape_string(text: str) -> str:
    return text.replace("'", "''")


def quote_literal(value: Any) -> str:
    return f"'{escape_string(str(value))}'"


def render_value(value: Any) -> str:
    if value is DEFAULT:
        return "DEFAULT"
    if value is None:
        return "NULL"
    if isinstance(value, RawExpression):
        return value.text
    if isinstance(value, SqlLiteral):
        return quote_literal(value.value)
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return quote_literal(value.isoformat())
    return quote_literal(value)


def subselect_by_name(table: str, name: str) -> RawExpression:
    return RawExpression(f"(SELECT id FROM {table} WHERE name = {quote_literal(name)} LIMIT 1)")


def package_reference(reference: str | None, name: str | None = None) -> SqlLiteral | RawExpression | None:
    """
    Foreign-key value for a member's package reference.

    Canonical (UUID) ids stay literal; anything else is looked up by package
    name when the script runs.
    """

    if not reference:
        return None
    if is_canonical_id(reference):
        return SqlLiteral(reference.strip())
    return subselect_by_name("packages", name or reference)


def role_reference(role_name: str | None) -> RawExpression | None:
    if not role_name:
        return None
    return subselect_by_name("roles", role_name.lower())


def generate_upsert_sql(
    table: str,
    records: Iterable[Mapping[str, Any]],
    conflict_columns: Sequence[str],
) -> str:
    """
    Render one multi-row ``INSERT ... ON CONFLICT`` statement.

    Columns are the union of record keys in first-seen order; a record that
    lacks a column gets ``DEFAULT``. Records with no non-null value are
    dropped. Returns ``""`` when nothing is left to insert.
    """

    rows = [dict(record) for record in records if any(value is not None for value in record.values())]
    if not rows:
        return ""

    columns: list[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)

    values_sql = ",\n".join(
        "  (" + ", ".join(render_value(row.get(column, DEFAULT)) for column in columns) + ")" for row in rows
    )
    conflict = ", ".join(conflict_columns)
    updates = [column for column in columns if column not in conflict_columns and column != "id"]
    if updates:
        action = "DO UPDATE SET " + ", ".join(f"{column} = EXCLUDED.{column}" for column in updates)
    else:
        action = "DO NOTHING"

    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES\n{values_sql}\nON CONFLICT ({conflict}) {action};"


def as_target_row(record: Mapping[str, Any]) -> dict[str, Any]:
    """
    Copy of a planned member or staff record keyed for the target tables.

    The source system's ``id`` moves to ``legacy_id``; target ids are always
    assigned by the database.
    """

    row: dict[str, Any] = {}
    for key, value in record.items():
        if key != "id":
            row[key] = value
        elif value is not None:
            row["legacy_id"] = str(value)
    return row


def split_by_conflict_key(
    rows: Iterable[Mapping[str, Any]],
) -> list[tuple[tuple[str, ...], list[dict[str, Any]]]]:
    """
    Group target rows by the unique key their upsert conflicts on.

    Rows with an email upsert on ``email``; the others on ``(gym_id, legacy_id)``
    and drop their empty email so an update never clears a stored one.
    """

    by_email: list[dict[str, Any]] = []
    by_legacy_id: list[dict[str, Any]] = []
    for row in rows:
        if row.get("email"):
            by_email.append(dict(row))
        else:
            by_legacy_id.append({key: value for key, value in row.items() if key != "email"})
    groups = []
    if by_email:
        groups.append((EMAIL_CONFLICT_COLUMNS, by_email))
    if by_legacy_id:
        groups.append((LEGACY_ID_CONFLICT_COLUMNS, by_legacy_id))
    return groups


def generate_keyed_upserts(table: str, rows: Iterable[Mapping[str, Any]]) -> str:
    """One upsert statement per conflict key, joined by blank lines."""

    statements = [generate_upsert_sql(table, group, columns) for columns, group in split_by_conflict_key(rows)]
    return "\n\n".join(statement for statement in statements if statement)


def member_rows_for_sql(plan: MigrationPlan) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for member in plan.members:
        row = as_target_row(member)
        reference = row.get("package_id")
        row["package_id"] = package_reference(reference, plan.packages.name_for(reference) if reference else None)
        rows.append(row)
    return rows


def staff_rows_for_sql(plan: MigrationPlan) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for member in plan.staff:
        row = as_target_row(member)
        row["role_id"] = role_reference(row.get("role_name"))
        rows.append(row)
    return rows


def role_rows(plan: MigrationPlan) -> list[dict[str, Any]]:
    names = dict.fromkeys(member["role_name"] for member in plan.staff if member.get("role_name"))
    return [{"name": name, "gym_id": plan.tenant_id} for name in names]


def _section(title: str, entity: str, sql: str) -> list[str]:
    return [f"-- {title}", sql if sql else f"-- (no {entity} to create)", ""]


def render_migration_script(plan: MigrationPlan) -> str:
    """Render the whole plan as one reviewable transaction."""

    lines = [
        SCRIPT_HEADER,
        f"-- Tenant: {plan.tenant_id}",
        f"-- Members: {plan.member_count}, staff: {plan.staff_count}, packages: {len(plan.packages)}",
        "",
        "BEGIN;",
        "",
    ]
    lines += _section(
        "Packages",
        "packages",
        generate_upsert_sql("packages", (package.record for package in plan.packages), ["name"]),
    )
    lines += _section("Roles", "roles", generate_upsert_sql("roles", role_rows(plan), ["name"]))
    lines += _section("Members", "members", generate_keyed_upserts("members", member_rows_for_sql(plan)))
    lines += _section("Staff", "staff", generate_keyed_upserts("staff", staff_rows_for_sql(plan)))
    lines.append("COMMIT;")
    return "\n".join(lines) + "\n"


__all__ = [
    "DEFAULT",
    "EMAIL_CONFLICT_COLUMNS",
    "LEGACY_ID_CONFLICT_COLUMNS",
    "RawExpression",
    "SCRIPT_HEADER",
    "SqlLiteral",
    "as_target_row",
    "escape_string",
    "generate_keyed_upserts",
    "generate_upsert_sql",
    "package_reference",
    "render_migration_script",
    "render_value",
    "role_reference",
    "role_rows",
    "split_by_conflict_key",
    "subselect_by_name",
]
