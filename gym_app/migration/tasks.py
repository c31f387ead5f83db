"""
Migration Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task
from flask import current_app

from .service import create_driver
from .utils import cleanup_upload, read_dump_file


@shared_task(name="migration.healthcheck", bind=True)
def migration_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="migration.run", bind=True)
def run_migration(
    self,
    *,
    file_path: str,
    tenant_id: str,
    dry_run: bool = False,
    keep_file: bool = False,
) -> dict[str, Any]:
    """
    Execute a migration in the worker, reporting ``PROGRESS`` after every batch.
    """

    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Dump file not found: {file_path}")
    cleanup_target: Path | None = None if keep_file else path

    def _report(percent: int) -> None:
        self.update_state(state="PROGRESS", meta={"percent": percent, "tenant_id": tenant_id})

    try:
        text = read_dump_file(path, current_app)
        result = create_driver().run(text, tenant_id, dry_run=dry_run, on_progress=_report)
    except Exception as exc:
        current_app.logger.exception(
            "Migration task failed",
            extra={
                "migration_tenant_id": tenant_id,
                "migration_error": str(exc),
            },
        )
        raise
    finally:
        if cleanup_target is not None:
            cleanup_upload(cleanup_target)

    current_app.logger.info(
        "Migration task finished",
        extra={
            "migration_tenant_id": tenant_id,
            "migration_dry_run": dry_run,
            "migration_members": result.member_count,
            "migration_staff": result.staff_count,
        },
    )
    return result.to_dict()

