"""
Reconciliation maps built from legacy payment/subscription rows.

Members in legacy dumps rarely carry their own package or expiry; those live
on payment rows. The maps index the latest successful payment per user id,
email and phone so the plan builder can enrich member rows.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from gym_app.migration.mapping import ColumnMap, default_column_map

from .coercers import (
    coerce_date,
    extract_embedded_payload,
    normalize_email,
    normalize_gender,
    normalize_phone,
)
from .columns import resolve_fields, row_as_mapping, value_at
from .extractor import InsertBlock

logger = logging.getLogger(__name__)

RAW_SNIPPET_LENGTH = 200


@dataclass(frozen=True)
class ReconciliationEntry:
    package_ref: str | None = None
    expiry: str | None = None
    gender: str | None = None

    def ordering_key(self) -> tuple[str, str, str]:
        """Later expiry wins; package and gender break ties so the result never depends on row order."""

        return (self.expiry or "", self.package_ref or "", self.gender or "")

    def as_dict(self) -> dict[str, str | None]:
        return {"package_ref": self.package_ref, "expiry": self.expiry, "gender": self.gender}


@dataclass
class ReconciliationMaps:
    by_id: dict[str, ReconciliationEntry] = field(default_factory=dict)
    by_email: dict[str, ReconciliationEntry] = field(default_factory=dict)
    by_phone: dict[str, ReconciliationEntry] = field(default_factory=dict)
    skipped_payments: int = 0
    warnings: list[str] = field(default_factory=list)
    payment_rows: int = 0
    qualifying_rows: int = 0

    def sizes(self) -> dict[str, int]:
        return {"by_id": len(self.by_id), "by_email": len(self.by_email), "by_phone": len(self.by_phone)}

    def candidates(
        self,
        *,
        member_id: str | None,
        email: str | None,
        phone: str | None,
    ) -> list[tuple[str, ReconciliationEntry]]:
        """Entries matching a member, in lookup priority order (id, email, phone)."""

        found: list[tuple[str, ReconciliationEntry]] = []
        if member_id and member_id in self.by_id:
            found.append(("by_id", self.by_id[member_id]))
        email_key = normalize_email(email)
        if email_key and email_key in self.by_email:
            found.append(("by_email", self.by_email[email_key]))
        phone_key = normalize_phone(phone)
        if phone_key and phone_key in self.by_phone:
            found.append(("by_phone", self.by_phone[phone_key]))
        return found


def is_successful_status(status: str | None, vocabulary: Sequence[str]) -> bool:
    """Whether a payment status contains one of the success words (case-insensitive)."""

    if not status:
        return False
    lowered = status.lower()
    return any(word in lowered for word in vocabulary)


def _upsert(target: dict[str, ReconciliationEntry], key: str, entry: ReconciliationEntry) -> None:
    existing = target.get(key)
    if existing is None or entry.ordering_key() >= existing.ordering_key():
        target[key] = entry


def raw_snippet(columns: Sequence[str] | None, row: Sequence[str | None]) -> str:
    return json.dumps(row_as_mapping(columns, row), default=str)[:RAW_SNIPPET_LENGTH]


def build_reconciliation_maps(
    blocks: Iterable[InsertBlock],
    column_map: ColumnMap | None = None,
) -> ReconciliationMaps:
    """
    Index successful payment rows by user id, email and phone.

    Rows with no identifier at all are counted in ``skipped_payments`` with a
    warning. Rows whose status is not a success status are read but ignored.
    """

    column_map = column_map or default_column_map()
    source = column_map.source("payments")
    maps = ReconciliationMaps()

    for block in blocks:
        indexes = resolve_fields(block.columns, source)
        for row in block.rows:
            maps.payment_rows += 1
            user_id = value_at(row, indexes.get("user_id"))
            email = normalize_email(value_at(row, indexes.get("email")))
            if email is None:
                email = normalize_email(next((value for value in row if value and "@" in value), None))
            phone = normalize_phone(value_at(row, indexes.get("phone")))

            if not (user_id or email or phone):
                maps.skipped_payments += 1
                maps.warnings.append(
                    f"Payment row missing identifiers (user/email/phone). Raw: {raw_snippet(block.columns, row)}"
                )
                continue

            status = value_at(row, indexes.get("status"))
            if not is_successful_status(status, column_map.success_statuses):
                continue
            maps.qualifying_rows += 1

            package_ref = value_at(row, indexes.get("package"))
            expiry = coerce_date(value_at(row, indexes.get("expiry")))
            gender = value_at(row, indexes.get("gender"))
            payload = extract_embedded_payload(value_at(row, indexes.get("qr_payload")))
            entry = ReconciliationEntry(
                package_ref=package_ref or payload.get("package_ref"),
                expiry=expiry or payload.get("expiry"),
                gender=normalize_gender(gender or payload.get("gender")),
            )

            if user_id:
                _upsert(maps.by_id, user_id, entry)
            if email:
                _upsert(maps.by_email, email, entry)
            if phone:
                _upsert(maps.by_phone, phone, entry)

    logger.debug(
        "Reconciliation maps built",
        extra={
            "migration_payment_rows": maps.payment_rows,
            "migration_payment_qualifying": maps.qualifying_rows,
            "migration_payment_skipped": maps.skipped_payments,
        },
    )
    return maps


__all__ = [
    "ReconciliationEntry",
    "ReconciliationMaps",
    "build_reconciliation_maps",
    "is_successful_status",
    "raw_snippet",
]
