from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Mapping, Sequence

import pytest

from gym_app.migration.pipeline.store import RecordStoreError

TODAY = date(2026, 10, 18)

MEMBERS_WITH_PAYMENTS_DUMP = """
-- legacy export
SET NAMES utf8mb4;
CREATE TABLE `payments` (`id` int, `user_id` varchar(20));
INSERT INTO `payments` (`id`, `user_id`, `email`, `status`, `expiry_date`, `package_id`) VALUES
(1, '10', 'ada@example.com', 'completed', '2030-01-31', 'Gold'),
(2, '10', 'ada@example.com', 'completed', '2029-01-31', 'Silver'),
(3, '11', 'bob@example.com', 'failed', '2031-01-01', 'Gold'),
(4, NULL, NULL, 'completed', '2031-01-01', 'Gold');
INSERT INTO `users` (`id`, `full_name`, `email`, `phone`, `gender`) VALUES
('10', 'Ada Lovelace', 'Ada@Example.com', '555-0100', 'F'),
('11', 'Bob O\\'Brien', 'bob@example.com', NULL, 'm'),
('12', 'Ada Again', 'ada@example.com', NULL, NULL),
(NULL, 'Nobody', NULL, NULL, NULL);
INSERT INTO `trainers` (`id`, `name`, `email`) VALUES
('t1', 'Tom Trainer', 'tom@gym.example');
INSERT INTO `staff` (`id`, `full_name`, `email`, `role`) VALUES
('s1', 'Sam Desk', 'SAM@gym.example', 'Receptionist'),
('s2', 'Sam Duplicate', 'sam@gym.example', 'manager');
"""

POSITIONAL_MEMBERS_DUMP = """
INSERT INTO users VALUES
('7','Cara Jones','cara@example.com','secret','0700 111','1990-02-03','x','y','women','a','b','c','d','e','f','2020-05-06 10:00:00');
"""


class FakeRecordStore:
    """
    In-memory record store with optional failure injection.

    ``fail_batches`` maps a table name to the 1-based batch numbers that fail.
    """

    def __init__(self, *, fail_batches=None, fail_tables=(), count_error=False):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, int]] = []
        self.fail_batches = {table: set(numbers) for table, numbers in (fail_batches or {}).items()}
        self.fail_tables = set(fail_tables)
        self.count_error = count_error
        self._batch_counters: dict[str, int] = {}

    def seed(self, table: str, **row) -> dict[str, Any]:
        row.setdefault("id", str(uuid.uuid4()))
        self.tables.setdefault(table, []).append(row)
        return row

    @staticmethod
    def _matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
        for key, value in filters.items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if row.get(key) not in value:
                    return False
            elif row.get(key) != value:
                return False
        return True

    def find(self, table: str, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        return [dict(row) for row in self.tables.get(table, []) if self._matches(row, filters)]

    def insert_or_update(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
    ) -> str | None:
        number = self._batch_counters.get(table, 0) + 1
        self._batch_counters[table] = number
        self.calls.append((table, len(rows)))
        if table in self.fail_tables or number in self.fail_batches.get(table, ()):
            return f"simulated failure writing {table} batch {number}"

        existing = self.tables.setdefault(table, [])
        for row in rows:
            key = {column: row.get(column) for column in conflict_columns}
            match = None
            if all(value is not None for value in key.values()):
                match = next((item for item in existing if self._matches(item, key)), None)
            if match is not None:
                match.update({k: v for k, v in row.items() if k != "id"})
            else:
                stored = dict(row)
                stored.setdefault("id", str(uuid.uuid4()))
                existing.append(stored)
        return None

    def count(self, table: str, filters: Mapping[str, Any]) -> int:
        if self.count_error:
            raise RecordStoreError(f"count unavailable for {table}")
        return len(self.find(table, filters))


@pytest.fixture
def fake_store():
    return FakeRecordStore()


@pytest.fixture
def store_factory():
    return FakeRecordStore


@pytest.fixture
def members_dump():
    return MEMBERS_WITH_PAYMENTS_DUMP


@pytest.fixture
def positional_dump():
    return POSITIONAL_MEMBERS_DUMP


@pytest.fixture
def today():
    return TODAY
