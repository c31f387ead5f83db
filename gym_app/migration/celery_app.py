"""
Celery wiring for the migration worker.

Runs are long and write in batches, so the worker takes one task at a time
and acknowledges late. Without explicit broker settings the worker uses a
SQLite file in the instance folder, which is enough for a single host.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "migrations"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
TASK_MODULES = ("gym_app.migration.tasks",)

# Run results are kept for a day so operators can poll a finished run.
RESULT_EXPIRES_SECONDS = 24 * 60 * 60


def queue_name(app: Flask) -> str:
    return app.config.get("MIGRATION_QUEUE_NAME") or DEFAULT_QUEUE_NAME


def _sqlite_transport_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    path = Path(configured) if configured else Path(DEFAULT_SQLITE_FILENAME)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def resolve_transport_urls(app: Flask) -> tuple[str, str]:
    """
    Broker and result backend URLs.

    Either one falls back to the SQLite file from ``CELERY_SQLITE_PATH`` (or
    ``instance/celery.sqlite``) when not configured.
    """
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker_url and result_backend):
        # Celery wants forward slashes, also on Windows
        sqlite_file = _sqlite_transport_path(app).as_posix()
        broker_url = broker_url or f"sqla+sqlite:///{sqlite_file}"
        result_backend = result_backend or f"db+sqlite:///{sqlite_file}"
    return broker_url, result_backend


def _override_conf(app: Flask) -> dict[str, Any]:
    """``CELERY_CONFIG`` as a mapping; a JSON string from the environment is accepted."""
    raw: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            return {}
    if not isinstance(raw, Mapping):
        app.logger.warning("CELERY_CONFIG must be a mapping; ignoring %r.", raw)
        return {}
    return dict(raw)


def _worker_conf(app: Flask) -> dict[str, Any]:
    queue = queue_name(app)
    return {
        "task_default_queue": queue,
        "task_queues": [Queue(queue)],
        "task_default_exchange": queue,
        "task_default_routing_key": queue,
        "task_routes": {"migration.*": {"queue": queue}},
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "task_track_started": True,
        "result_extended": True,
        "result_expires": RESULT_EXPIRES_SECONDS,
        "broker_connection_retry_on_startup": True,
        "task_time_limit": app.config.get("MIGRATION_TASK_TIME_LIMIT", 30 * 60),
        "task_soft_time_limit": app.config.get("MIGRATION_TASK_SOFT_TIME_LIMIT", 25 * 60),
        "worker_log_format": "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
        "worker_task_log_format": (
            "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"
        ),
        "worker_hijack_root_logger": False,
    }


def create_celery_app(app: Flask) -> Celery:
    """
    Build the Celery instance for ``app``; every task runs inside its app context.
    """
    broker_url, result_backend = resolve_transport_urls(app)
    celery_app = Celery(app.import_name, broker=broker_url, backend=result_backend, include=TASK_MODULES)
    celery_app.conf.update(_worker_conf(app))

    overrides = _override_conf(app)
    if overrides:
        celery_app.conf.update(overrides)

    app.logger.info(
        "Migration Celery configuration resolved",
        extra={
            "migration_celery_broker_url": broker_url,
            "migration_celery_result_backend": result_backend,
            "migration_celery_queue": queue_name(app),
            "migration_celery_overrides": sorted(overrides),
            "migration_worker_enabled": app.config.get("MIGRATION_WORKER_ENABLED"),
        },
    )

    # Batch upserts would otherwise log every statement from inside the worker
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        """Run migration tasks inside the Flask application context."""

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.set_default()
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return the Celery instance cached in the migration extension state, creating it once."""
    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    """
    Celery instance for ``app``, or ``None`` when migrations are disabled.
    """
    state: dict[str, Any] | None = app.extensions.get("migration")  # type: ignore[arg-type]
    if not state:
        return None
    if state.get("celery_app") is None and not state.get("enabled"):
        return None
    return ensure_celery_app(app, state)
