"""
Record store boundary used by the execution driver.

The driver only needs three primitives (find, upsert, count); keeping them
behind a protocol lets tests substitute an in-memory store.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gym_app.models import Member, Package, Role, Staff, db


class RecordStoreError(RuntimeError):
    """Raised when a store read fails."""


class RecordStore(Protocol):
    def find(self, table: str, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Rows matching every filter; a list/tuple filter value means ``IN``."""

    def insert_or_update(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
    ) -> str | None:
        """Upsert ``rows``; return an error message on failure, ``None`` on success."""

    def count(self, table: str, filters: Mapping[str, Any]) -> int:
        """Number of rows matching every filter."""


MODELS = {
    "members": Member,
    "staff": Staff,
    "packages": Package,
    "roles": Role,
}


def _coerce_column_value(column, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if isinstance(column.type, db.DateTime):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(column.type, db.Date):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return value


class SqlAlchemyRecordStore:
    """
    Record store over the Flask-SQLAlchemy models.

    Upserts use the dialect's ``INSERT ... ON CONFLICT`` (SQLite or
    PostgreSQL). Each ``insert_or_update`` call commits on success and rolls
    back on failure, so one failed batch never poisons the next.
    """

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    def _model(self, table: str):
        try:
            return MODELS[table]
        except KeyError as exc:
            raise RecordStoreError(f"Unknown table '{table}'") from exc

    def _where(self, model, filters: Mapping[str, Any]):
        clauses = []
        for key, value in filters.items():
            column = getattr(model, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        return clauses

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise RecordStoreError(f"Upserts are not supported on dialect '{dialect}'")
        return insert

    def find(self, table: str, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        model = self._model(table)
        try:
            rows = self.session.execute(select(model).where(*self._where(model, filters))).scalars().all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RecordStoreError(f"Failed to read {table}: {exc}") from exc
        return [row.to_dict() for row in rows]

    def count(self, table: str, filters: Mapping[str, Any]) -> int:
        model = self._model(table)
        try:
            stmt = select(func.count()).select_from(model).where(*self._where(model, filters))
            return int(self.session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RecordStoreError(f"Failed to count {table}: {exc}") from exc

    def insert_or_update(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
    ) -> str | None:
        if not rows:
            return None
        model = self._model(table)
        columns = model.__table__.columns
        primary_keys = {column.name for column in model.__table__.primary_key.columns}

        # Multi-row VALUES needs identical keys per statement.
        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for row in rows:
            prepared = {
                key: _coerce_column_value(columns[key], value) for key, value in row.items() if key in columns
            }
            groups.setdefault(tuple(prepared), []).append(prepared)

        try:
            insert = self._insert()
            for keys, group in groups.items():
                stmt = insert(model).values(group)
                updates = {
                    key: stmt.excluded[key]
                    for key in keys
                    if key not in conflict_columns and key not in primary_keys
                }
                if updates:
                    stmt = stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=updates)
                else:
                    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
                self.session.execute(stmt)
            self.session.commit()
        except (SQLAlchemyError, RecordStoreError) as exc:
            self.session.rollback()
            return str(exc)
        return None


__all__ = ["MODELS", "RecordStore", "RecordStoreError", "SqlAlchemyRecordStore"]
