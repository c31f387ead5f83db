"""
Migration feature package.

Provides conditional blueprint, CLI and Celery registration for the
legacy-dump migration engine while remaining lightweight when disabled.
"""

from __future__ import annotations

from flask import Flask

from gym_app.utils.migration import is_migration_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_migration_group, migration_cli
from .mapping import MappingLoadError, get_active_column_map
from .service import create_driver
from .views import migration_blueprint

MIGRATION_EXTENSION_KEY = "migration"

__all__ = [
    "init_migration",
    "MIGRATION_EXTENSION_KEY",
    "create_driver",
    "get_celery_app",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        MIGRATION_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
            "column_map": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = migration_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(migration_cli)
    else:
        app.cli.add_command(get_disabled_migration_group())


def init_migration(app: Flask) -> None:
    """
    Conditionally mount the migration blueprint, CLI and worker based on configuration.

    Records state inside ``app.extensions['migration']`` for the CLI and views.
    """
    enabled = is_migration_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("MIGRATION_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Migration disabled via MIGRATION_ENABLED flag; skipping registration.")
        return

    with app.app_context():
        try:
            state["column_map"] = get_active_column_map()
        except MappingLoadError as exc:
            app.logger.error("Migration column map failed to load: %s", exc)
            raise

    ensure_celery_app(app, state)

    if migration_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(migration_blueprint)
    elif migration_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Migration blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)

    column_map = state["column_map"]
    app.logger.info(
        "Migration enabled with column map %s (checksum %s)",
        column_map.name,
        column_map.checksum[:12],
    )
