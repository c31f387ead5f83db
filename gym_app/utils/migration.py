"""
Utility helpers for migration feature flag checks.
"""

from __future__ import annotations

from flask import current_app

DEFAULT_BATCH_SIZE = 200
DEFAULT_CONFIRM_PHRASE = "MIGRATE"


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_migration_enabled(app=None) -> bool:
    """Return True when the migration feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("MIGRATION_ENABLED", False))


def get_batch_size(app=None) -> int:
    """Configured upsert batch size, never below one."""
    config = _get_config(app)
    try:
        return max(1, int(config.get("MIGRATION_BATCH_SIZE", DEFAULT_BATCH_SIZE)))
    except (TypeError, ValueError):
        return DEFAULT_BATCH_SIZE


def get_confirm_phrase(app=None) -> str:
    """Phrase a caller must echo back before a non-dry run writes anything."""
    config = _get_config(app)
    return str(config.get("MIGRATION_CONFIRM_PHRASE") or DEFAULT_CONFIRM_PHRASE)
