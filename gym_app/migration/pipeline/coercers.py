"""
Value coercers for loosely typed legacy values.

None of these raise on bad input; unusable values degrade to ``None`` (or are
returned unchanged where noted) so one broken row never aborts a migration.
"""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime
from typing import Any, Mapping

_ZERO_DATE = re.compile(r"^0{4}-0{2}-0{2}")
_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

_LEGACY_DATE_FORMATS = (
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y%m%d",
    "%b %d, %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%d %B %Y",
)

BOOLEAN_FIELD_NAMES = frozenset({"enabled", "disabled", "archived", "deleted", "active", "visible", "approved"})
_BOOLEAN_PREFIXES = ("is_", "has_", "should_")

_GENDER_ALIASES = {
    "m": "male",
    "men": "male",
    "male": "male",
    "f": "female",
    "women": "female",
    "female": "female",
}

_PAYLOAD_PACKAGE_KEYS = ("package", "productId", "plan")
_PAYLOAD_EXPIRY_KEYS = ("expiryDate", "expiry")


def _clean_text(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip()


def coerce_date(value: object | None) -> str | None:
    """
    Parse a legacy date-ish value into ``YYYY-MM-DD``.

    MySQL zero dates (``0000-00-00``) and unparsable text yield ``None``.
    """

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = _clean_text(value)
    if not text or _ZERO_DATE.match(text):
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass

    # Datetimes with odd suffixes, e.g. "2024-01-05 10:00:00 UTC"
    if _ISO_PREFIX.match(text):
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            return None

    for fmt in _LEGACY_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def coerce_timestamp(value: object | None) -> str | None:
    """
    Parse a legacy timestamp into ISO ``YYYY-MM-DDTHH:MM:SS``.

    Time of day and offset are kept when present; date-only values fall back
    to :func:`coerce_date` and become midnight. Zero dates yield ``None``.
    """

    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")

    text = _clean_text(value)
    if not text or _ZERO_DATE.match(text):
        return None

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).isoformat(timespec="seconds")
    except ValueError:
        pass

    day = coerce_date(text)
    return f"{day}T00:00:00" if day else None


def is_boolean_field(name: str) -> bool:
    """Whether a column name looks like a tinyint flag."""

    key = str(name).strip().lower()
    return key.startswith(_BOOLEAN_PREFIXES) or key.endswith("_flag") or key in BOOLEAN_FIELD_NAMES


def coerce_tinyint(value: Any) -> Any:
    """``'0'``/``0`` -> ``False``, ``'1'``/``1`` -> ``True``, anything else unchanged."""

    if isinstance(value, bool):
        return value
    if value == 0 or value == "0":
        return False
    if value == 1 or value == "1":
        return True
    return value


def coerce_flags(record: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``record`` with every boolean-named field coerced."""

    return {key: coerce_tinyint(value) if is_boolean_field(key) else value for key, value in record.items()}


def split_full_name(value: object | None, default_first: str = "Member") -> tuple[str, str]:
    """
    Split a display name into ``(first, last)``.

    Tokens containing ``@`` (emails pasted into name columns) are dropped.
    """

    tokens = [token for token in _clean_text(value).split() if "@" not in token]
    if not tokens:
        return default_first, ""
    return tokens[0], " ".join(tokens[1:])


def normalize_gender(value: object | None) -> str | None:
    text = _clean_text(value).lower()
    if not text:
        return None
    return _GENDER_ALIASES.get(text, text)


def extract_embedded_payload(value: object | None) -> dict[str, str]:
    """
    Pull package/expiry/gender out of a JSON blob embedded in a column.

    Legacy QR columns often hold JSON with ``''`` or ``\\"`` quoting; both are
    folded back to plain double quotes before parsing. Returns ``{}`` when the
    value is not a JSON object.
    """

    text = _clean_text(value)
    if not text:
        return {}
    cleaned = text.replace("''", '"').replace('\\"', '"')
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}

    result: dict[str, str] = {}
    package_ref = next((parsed[key] for key in _PAYLOAD_PACKAGE_KEYS if parsed.get(key)), None)
    if package_ref:
        result["package_ref"] = str(package_ref).strip()
    expiry_raw = next((parsed[key] for key in _PAYLOAD_EXPIRY_KEYS if parsed.get(key)), None)
    expiry = coerce_date(expiry_raw)
    if expiry:
        result["expiry"] = expiry
    if parsed.get("gender"):
        result["gender"] = str(parsed["gender"]).strip().lower()
    return result


def normalize_email(value: object | None) -> str | None:
    """Trim and lower-case an email; plus-addressing is kept (it is part of the login)."""

    text = _clean_text(value).lower()
    return text or None


def normalize_phone(value: object | None) -> str | None:
    """Reduce a phone number to its digits (keeping a leading ``+``) for lookups."""

    text = _clean_text(value)
    if not text:
        return None
    digits = "".join(ch for ch in text if ch.isdigit())
    if not digits:
        return None
    return f"+{digits}" if text.startswith("+") else digits


def coerce_int(value: object | None) -> int | None:
    text = _clean_text(value)
    if not text:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def coerce_number(value: object | None) -> int | float | None:
    text = _clean_text(value)
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


__all__ = [
    "BOOLEAN_FIELD_NAMES",
    "coerce_date",
    "coerce_flags",
    "coerce_int",
    "coerce_number",
    "coerce_timestamp",
    "coerce_tinyint",
    "extract_embedded_payload",
    "is_boolean_field",
    "normalize_email",
    "normalize_gender",
    "normalize_phone",
    "split_full_name",
]
