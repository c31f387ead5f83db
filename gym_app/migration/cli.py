"""
CLI commands for legacy-dump migrations.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from gym_app.migration.celery_app import get_celery_app, queue_name
from gym_app.migration.mapping import MappingLoadError
from gym_app.migration.pipeline.driver import (
    InvalidMigrationRequest,
    MigrationEvent,
    MigrationRunResult,
)
from gym_app.migration.service import create_driver
from gym_app.migration.utils import DumpTooLargeError, read_dump_file
from gym_app.utils.migration import get_batch_size, get_confirm_phrase, is_migration_enabled

_FILE_OPTION = click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Path to the legacy SQL dump.",
)
_TENANT_OPTION = click.option("--tenant", "tenant_id", required=True, help="Target gym id for every migrated row.")


@click.group(name="migration", invoke_without_command=True)
@click.pass_context
def migration_cli(ctx):
    """
    Legacy-dump migration commands.

    Displays the active configuration when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_migration_enabled(app):
        raise click.ClickException(
            "Migrations are disabled via MIGRATION_ENABLED=false. " "Enable it to run migration CLI commands."
        )
    if ctx.invoked_subcommand is None:
        click.echo(f"Batch size: {get_batch_size(app)}")
        click.echo(f"Column map: {app.config.get('MIGRATION_COLUMN_MAP_PATH') or 'bundled legacy_dump_v1.yaml'}")


def get_disabled_migration_group() -> click.Group:
    """
    Return a minimal command group that informs the operator migrations are disabled.
    """

    @click.group(name="migration", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Migration commands are unavailable because MIGRATION_ENABLED=false.")

    return disabled_group


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_migration_enabled(app):
        raise click.ClickException("Migrations are disabled; enable them via MIGRATION_ENABLED first.")
    return app


def _read_dump(app, file_path: Path) -> str:
    try:
        return read_dump_file(file_path.resolve(), app)
    except DumpTooLargeError as exc:
        raise click.ClickException(str(exc)) from exc


def _resolve_celery(app) -> Optional[Celery]:
    """
    Retrieve the registered Celery instance, raising a helpful error if missing.
    """
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Migration Celery app is unavailable. Ensure MIGRATION_ENABLED=true and the "
            "migration package initialises before running worker commands."
        )
    return celery_app


def _describe_event(event: MigrationEvent) -> str:
    payload = event.payload
    if event.type == "progress":
        return f"[{payload.get('percent')}%] {payload.get('written')}/{payload.get('total')} rows written"
    if event.type == "preview":
        return (
            f"Plan: {payload.get('member_count')} members, {payload.get('staff_count')} staff, "
            f"{payload.get('package_count')} packages, {len(payload.get('skipped_rows') or [])} skipped rows"
        )
    if event.type == "start":
        return f"Starting migration for tenant {payload.get('tenant_id')}" + (" (dry run)" if payload.get("dry_run") else "")
    if event.type == "error":
        return f"Migration failed: {payload.get('error')}"
    return "Migration finished."


def _format_summary(result: MigrationRunResult) -> str:
    lines = [
        f"Members planned: {result.member_count}",
        f"Staff planned: {result.staff_count}",
        f"Skipped payments: {result.skipped_payments}",
    ]
    diagnostics = result.run_diagnostics
    if diagnostics is None:
        lines.append("Dry run: nothing was written.")
        return "\n".join(lines)
    lines.extend(
        [
            f"Packages created: {diagnostics.packages_created} (map size {diagnostics.package_map_size})",
            f"Member batches: {diagnostics.member_upsert_batches}, errors: {len(diagnostics.member_upsert_errors)}",
            f"Staff batches: {diagnostics.staff_upsert_batches}, errors: {len(diagnostics.staff_upsert_errors)}",
            f"Verified members: {diagnostics.verified_member_count if diagnostics.verified_member_count is not None else 'unknown'}",
            f"Verified staff: {diagnostics.verified_staff_count if diagnostics.verified_staff_count is not None else 'unknown'}",
        ]
    )
    for error in diagnostics.member_upsert_errors:
        lines.append(f"  member batch {error['batch']}: {error['error']}")
    for error in diagnostics.staff_upsert_errors:
        lines.append(f"  staff batch {error['batch']}: {error['error']}")
    return "\n".join(lines)


@migration_cli.command("preview")
@_FILE_OPTION
@_TENANT_OPTION
@click.pass_context
def migration_preview(ctx, file_path: Path, tenant_id: str):
    """Parse a dump and print the plan diagnostics without writing anything."""
    app = _load_app(ctx)
    text = _read_dump(app, file_path)
    try:
        preview = create_driver().preview(text, tenant_id)
    except (InvalidMigrationRequest, MappingLoadError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(preview.to_dict(), indent=2, sort_keys=True, default=str))


@migration_cli.command("generate")
@_FILE_OPTION
@_TENANT_OPTION
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False, writable=True),
    help="Write the SQL script here instead of stdout.",
)
@click.pass_context
def migration_generate(ctx, file_path: Path, tenant_id: str, output: Optional[Path]):
    """Render the migration plan as a reviewable SQL script."""
    app = _load_app(ctx)
    text = _read_dump(app, file_path)
    try:
        script = create_driver().generate(text, tenant_id)
    except (InvalidMigrationRequest, MappingLoadError) as exc:
        raise click.ClickException(str(exc)) from exc

    if output is None:
        click.echo(script.sql, nl=False)
        return
    output.write_text(script.sql, encoding="utf-8")
    click.echo(
        f"Wrote {output} ({script.preview.member_count} members, {script.preview.staff_count} staff, "
        f"{len(script.packages_planned)} packages)."
    )


@migration_cli.command("run")
@_FILE_OPTION
@_TENANT_OPTION
@click.option("--dry-run", is_flag=True, help="Build and report the plan without writing.")
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@click.option(
    "--summary-json",
    is_flag=True,
    help="Emit a machine-readable summary payload after completion (inline runs only).",
)
@click.option("--confirm", default=None, help="Confirmation phrase required for runs that write.")
@click.pass_context
def migration_run(
    ctx,
    file_path: Path,
    tenant_id: str,
    dry_run: bool,
    inline: bool,
    summary_json: bool,
    confirm: Optional[str],
):
    """Execute a migration for the given dump and tenant."""
    app = _load_app(ctx)

    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")
    phrase = get_confirm_phrase(app)
    if not dry_run and confirm != phrase:
        raise click.UsageError(f"Runs that write require --confirm {phrase}.")

    dump_path = file_path.resolve()
    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                "migration.run",
                kwargs={
                    "file_path": str(dump_path),
                    "tenant_id": tenant_id,
                    "dry_run": dry_run,
                    "keep_file": True,
                },
            )
        except Exception as exc:
            raise click.ClickException(f"Failed to enqueue migration: {exc}") from exc

        app.logger.info(
            "Migration queued via CLI",
            extra={
                "migration_task_id": async_result.id,
                "migration_tenant_id": tenant_id,
                "migration_dry_run": dry_run,
            },
        )
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued", "dry_run": dry_run}))
        return

    text = _read_dump(app, dump_path)
    events = create_driver().iter_run_events(text, tenant_id, dry_run=dry_run)
    result: MigrationRunResult | None = None
    while True:
        try:
            event = next(events)
        except StopIteration as stop:
            result = stop.value
            break
        if event.type == "error":
            raise click.ClickException(_describe_event(event))
        if event.type != "done":
            click.echo(_describe_event(event))

    if result is None:
        raise click.ClickException("Migration ended without a result.")
    click.echo(_format_summary(result))
    if summary_json:
        click.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True, default=str))


@migration_cli.group("worker")
def worker_group():
    """Celery worker management commands."""


def _worker_argv(loglevel: str, queues: str, concurrency: Optional[int], pool: Optional[str]) -> list[str]:
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv += ["--concurrency", str(concurrency)]
    if pool:
        argv += ["--pool", pool]
    return argv


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", help="Celery pool implementation ('prefork', 'solo', 'threads').")
@click.option("--queues", default=None, help="Comma-separated queues to consume (defaults to MIGRATION_QUEUE_NAME).")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: Optional[str]):
    """
    Start a migration worker in the current process.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    app.extensions["migration"]["worker_enabled"] = True

    queues = queues or queue_name(app)
    click.echo(f"Starting migration worker (queues: {queues}, loglevel: {loglevel}{f', pool: {pool}' if pool else ''})")
    try:
        celery_app.worker_main(argv=_worker_argv(loglevel, queues, concurrency, pool))
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for the heartbeat.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Send the heartbeat task and print the worker's reply.
    """
    app = _load_app(ctx)
    task = _resolve_celery(app).tasks.get("migration.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'migration.healthcheck' is not registered.")

    try:
        payload = task.apply_async().get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"No migration worker answered within {timeout}s.") from exc
    click.echo(json.dumps(payload, indent=2))
