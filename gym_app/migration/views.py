"""
Migration blueprint endpoints for health, preview, SQL generation and streamed runs.
"""

from __future__ import annotations

import json
import math
from http import HTTPStatus
from typing import Any

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from gym_app.utils.migration import get_confirm_phrase, is_migration_enabled

from .celery_app import get_celery_app, queue_name
from .mapping import MappingLoadError
from .pipeline.driver import InvalidMigrationRequest
from .service import create_driver
from .utils import DumpTooLargeError, allowed_file, cleanup_upload, persist_dump, read_uploaded_dump

migration_blueprint = Blueprint("migration", __name__, url_prefix="/migration")


class _BadRequest(Exception):
    def __init__(self, message: str, status: HTTPStatus = HTTPStatus.BAD_REQUEST):
        super().__init__(message)
        self.status = status


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _timeout_arg(default: float = 5.0) -> float:
    raw = request.args.get("timeout")
    if raw is None:
        return default
    try:
        timeout = float(raw)
    except ValueError:
        raise _BadRequest("timeout must be a number of seconds.") from None
    if not math.isfinite(timeout) or timeout <= 0:
        raise _BadRequest("timeout must be a positive number of seconds.")
    return timeout


def _ensure_migration_enabled_api():
    if not is_migration_enabled(current_app):
        return _json_error("Migrations are disabled.", HTTPStatus.NOT_FOUND)
    return None


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _read_request() -> dict[str, Any]:
    """
    Collect ``sql``, ``gym_id``, ``dry_run``, ``final_confirm`` and ``queue`` from JSON or multipart form data.
    """

    if request.files:
        upload = request.files.get("dump")
        if upload is None or not upload.filename:
            raise _BadRequest("Multipart requests must include a 'dump' file.")
        if not allowed_file(upload.filename):
            raise _BadRequest("Dump must be a .sql or .txt file.")
        try:
            text = read_uploaded_dump(upload, current_app)
        except DumpTooLargeError as exc:
            raise _BadRequest(str(exc), HTTPStatus.REQUEST_ENTITY_TOO_LARGE) from exc
        form = request.form
        return {
            "sql": text,
            "gym_id": form.get("gym_id"),
            "dry_run": _coerce_flag(form.get("dry_run")),
            "final_confirm": form.get("final_confirm"),
            "queue": _coerce_flag(form.get("queue")),
            "filename": upload.filename,
        }

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise _BadRequest("Request body must be a JSON object or a multipart upload.")
    return {
        "sql": payload.get("sql"),
        "gym_id": payload.get("gym_id"),
        "dry_run": _coerce_flag(payload.get("dry_run")),
        "final_confirm": payload.get("final_confirm"),
        "queue": _coerce_flag(payload.get("queue")),
        "filename": None,
    }


def _validated_request() -> dict[str, Any]:
    data = _read_request()
    if not isinstance(data["sql"], str):
        raise _BadRequest("Field 'sql' is required.")
    gym_id = data["gym_id"]
    if gym_id is None or not str(gym_id).strip():
        raise _BadRequest("Field 'gym_id' is required.")
    data["gym_id"] = str(gym_id).strip()
    return data


@migration_blueprint.get("/health")
def migration_healthcheck():
    """
    Lightweight health endpoint proving the migration blueprint mounted correctly.
    """
    state = current_app.extensions.get("migration", {})
    column_map = state.get("column_map")
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker_enabled": state.get("worker_enabled", False),
                "column_map": column_map.name if column_map is not None else None,
                "column_map_checksum": column_map.checksum if column_map is not None else None,
            }
        ),
        200,
    )


@migration_blueprint.get("/worker_health")
def migration_worker_health():
    """
    Validate migration worker availability via the heartbeat task.
    """
    state = current_app.extensions.get("migration", {})
    worker_enabled = state.get("worker_enabled", False)
    try:
        timeout_seconds = _timeout_arg()
    except _BadRequest as exc:
        return _json_error(str(exc), exc.status)

    payload = {
        "migration_enabled": state.get("enabled", False),
        "worker_enabled": worker_enabled,
        "queue": queue_name(current_app),
        "timeout_seconds": timeout_seconds,
    }

    if not worker_enabled:
        payload["status"] = "disabled"
        payload["message"] = "Worker flag disabled; start the worker or set MIGRATION_WORKER_ENABLED=true."
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), 500

    task = celery_app.tasks.get("migration.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["status"] = "ok"
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        return jsonify(payload), 200
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504


@migration_blueprint.post("/preview")
def migration_preview():
    """Parse a dump and report the plan counts and diagnostics."""
    guard = _ensure_migration_enabled_api()
    if guard:
        return guard
    try:
        data = _validated_request()
        preview = create_driver().preview(data["sql"], data["gym_id"])
    except _BadRequest as exc:
        return _json_error(str(exc), exc.status)
    except (InvalidMigrationRequest, MappingLoadError) as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    return current_app.response_class(
        json.dumps(preview.to_dict(), default=str), mimetype="application/json"
    )


@migration_blueprint.post("/generate")
def migration_generate():
    """Render the plan as a SQL script for manual review."""
    guard = _ensure_migration_enabled_api()
    if guard:
        return guard
    try:
        data = _validated_request()
        script = create_driver().generate(data["sql"], data["gym_id"])
    except _BadRequest as exc:
        return _json_error(str(exc), exc.status)
    except (InvalidMigrationRequest, MappingLoadError) as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    current_app.logger.info(
        "Migration script generated",
        extra={
            "migration_tenant_id": data["gym_id"],
            "migration_members": script.preview.member_count,
            "migration_staff": script.preview.staff_count,
        },
    )
    body = {
        "sql": script.sql,
        "packages_planned": script.packages_planned,
        "preview": script.preview.to_dict(),
    }
    return current_app.response_class(json.dumps(body, default=str), mimetype="application/json")


def _sse(event) -> str:
    return f"data: {json.dumps(event.to_dict(), default=str)}\n\n"


def _queue_run(data: dict[str, Any]):
    """Persist the dump and hand the run to the Celery worker."""
    state = current_app.extensions.get("migration", {})
    if not state.get("worker_enabled", False):
        return _json_error(
            "Background runs require MIGRATION_WORKER_ENABLED=true.", HTTPStatus.SERVICE_UNAVAILABLE
        )
    celery_app = get_celery_app(current_app)
    if celery_app is None:
        return _json_error("Migration worker is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)

    dump_path = persist_dump(data["sql"], current_app, filename=data["filename"])
    try:
        async_result = celery_app.send_task(
            "migration.run",
            kwargs={
                "file_path": str(dump_path),
                "tenant_id": data["gym_id"],
                "dry_run": data["dry_run"],
            },
        )
    except Exception as exc:
        current_app.logger.exception(
            "Failed to enqueue migration run",
            extra={"migration_tenant_id": data["gym_id"], "migration_error": str(exc)},
        )
        cleanup_upload(dump_path)
        return _json_error("Failed to enqueue migration; please retry later.", HTTPStatus.INTERNAL_SERVER_ERROR)

    current_app.logger.info(
        "Migration run enqueued",
        extra={
            "migration_task_id": async_result.id,
            "migration_tenant_id": data["gym_id"],
            "migration_dry_run": data["dry_run"],
        },
    )
    return jsonify({"task_id": async_result.id, "status": "queued", "dry_run": data["dry_run"]}), HTTPStatus.ACCEPTED


@migration_blueprint.post("/run")
def migration_run():
    """
    Execute a migration and stream its events as ``text/event-stream``.

    Runs that write require ``final_confirm`` to match the configured phrase.
    With ``queue`` set the run is handed to the worker and a task id returned.
    """
    guard = _ensure_migration_enabled_api()
    if guard:
        return guard
    try:
        data = _validated_request()
    except _BadRequest as exc:
        return _json_error(str(exc), exc.status)

    dry_run = data["dry_run"]
    if not dry_run and data["final_confirm"] != get_confirm_phrase(current_app):
        return _json_error("Field 'final_confirm' must match the confirmation phrase.", HTTPStatus.BAD_REQUEST)

    if data["queue"]:
        return _queue_run(data)

    try:
        driver = create_driver()
    except MappingLoadError as exc:
        return _json_error(str(exc), HTTPStatus.INTERNAL_SERVER_ERROR)

    current_app.logger.info(
        "Migration run requested",
        extra={"migration_tenant_id": data["gym_id"], "migration_dry_run": dry_run},
    )
    events = driver.iter_run_events(data["sql"], data["gym_id"], dry_run=dry_run)

    def _stream():
        for event in events:
            yield _sse(event)

    return Response(
        stream_with_context(_stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@migration_blueprint.get("/tasks/<task_id>")
def migration_task_status(task_id: str):
    """Report the state of a queued run: ``PENDING``, ``PROGRESS`` (with percent), ``SUCCESS`` or ``FAILURE``."""
    guard = _ensure_migration_enabled_api()
    if guard:
        return guard
    celery_app = get_celery_app(current_app)
    if celery_app is None:
        return _json_error("Migration worker is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)

    result = celery_app.AsyncResult(task_id)
    payload: dict[str, Any] = {"task_id": task_id, "state": result.state}
    if result.state == "PROGRESS" and isinstance(result.info, dict):
        payload["percent"] = result.info.get("percent")
    elif result.state == "SUCCESS":
        payload["result"] = result.result
    elif result.state == "FAILURE":
        payload["error"] = str(result.info)
    return current_app.response_class(json.dumps(payload, default=str), mimetype="application/json")
