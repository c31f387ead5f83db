"""
Migration-specific utilities for handling uploaded dumps and cleanup.
"""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "migration_uploads"
DUMP_EXTENSIONS: tuple[str, ...] = ("sql", "txt")
DEFAULT_MAX_DUMP_BYTES = 50 * 1024 * 1024


class DumpTooLargeError(ValueError):
    """Raised when an uploaded dump exceeds ``MIGRATION_MAX_DUMP_BYTES``."""


def resolve_upload_directory(app) -> Path:
    """
    Determine and create (if necessary) the migration upload directory.
    """

    configured = app.config.get("MIGRATION_UPLOAD_DIR")
    if not configured:
        upload_dir = Path(app.instance_path) / DEFAULT_UPLOAD_SUBDIR
    else:
        upload_dir = Path(configured)
        if not upload_dir.is_absolute():
            upload_dir = Path(app.instance_path) / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_file(filename: str, allowed_extensions=DUMP_EXTENSIONS) -> bool:
    """
    Validate the uploaded filename extension against the allowed set.
    """

    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def max_dump_bytes(app) -> int:
    try:
        return int(app.config.get("MIGRATION_MAX_DUMP_BYTES", DEFAULT_MAX_DUMP_BYTES))
    except (TypeError, ValueError):
        return DEFAULT_MAX_DUMP_BYTES


def decode_dump(raw: bytes) -> str:
    """Decode dump bytes; legacy exports are usually UTF-8 but sometimes Latin-1."""

    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def read_uploaded_dump(file_storage: FileStorage, app) -> str:
    """Read an uploaded dump into text, enforcing the configured size limit."""

    limit = max_dump_bytes(app)
    raw = file_storage.read(limit + 1)
    if len(raw) > limit:
        raise DumpTooLargeError(f"Dump exceeds the {limit} byte limit.")
    return decode_dump(raw)


def read_dump_file(path: Path, app) -> str:
    limit = max_dump_bytes(app)
    if path.stat().st_size > limit:
        raise DumpTooLargeError(f"Dump {path} exceeds the {limit} byte limit.")
    return decode_dump(path.read_bytes())


def persist_dump(text: str, app, *, filename: str | None = None) -> Path:
    """
    Persist dump text for a background worker and return the stored path.

    Files are stored under ``resolve_upload_directory(app)`` using a UUID-based
    filename to avoid collisions.
    """

    upload_dir = resolve_upload_directory(app)
    original_name = secure_filename(filename or "")
    extension = Path(original_name).suffix or ".sql"
    target_path = upload_dir / f"{uuid4().hex}{extension}"
    target_path.write_text(text, encoding="utf-8")
    current_app.logger.debug("Migration dump persisted to %s", target_path)
    return target_path


def cleanup_upload(path: Path) -> None:
    """
    Remove a stored dump, logging but ignoring filesystem errors.
    """

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Failed to remove migration upload %s: %s", path, exc)
