"""
Execution driver: preview, run and generate over one dump for one tenant.

``iter_run_events`` is the core of ``run``: it yields progress events as each
phase completes and returns the final result, so transports (streamed HTTP,
Celery progress, CLI output) only translate events.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Generator, Iterator, Sequence

from gym_app.migration.mapping import ColumnMap
from gym_app.migration.metrics import record_migration_batch, record_migration_run, record_skipped_rows

from .plan import MigrationPlan, build_migration_plan
from .sql_generator import as_target_row, render_migration_script, split_by_conflict_key
from .store import RecordStore, RecordStoreError

DEFAULT_BATCH_SIZE = 200
PREVIEW_SAMPLE_SIZE = 10

PACKAGE_CONFLICT_COLUMNS = ("name",)
ROLE_CONFLICT_COLUMNS = ("name",)


class MigrationState(str, Enum):
    IDLE = "idle"
    PREVIEWING = "previewing"
    RESOLVING_REFERENCES = "resolving_references"
    WRITING_MEMBERS = "writing_members"
    WRITING_STAFF = "writing_staff"
    VERIFYING = "verifying"
    DONE = "done"
    ERROR = "error"


class InvalidMigrationRequest(ValueError):
    """Raised before parsing when the dump text or tenant id is missing."""


class ReferenceResolutionError(RuntimeError):
    """Raised when a package or role cannot be resolved or created; no rows are written."""


@dataclass(frozen=True)
class MigrationPreview:
    tenant_id: str
    member_count: int
    staff_count: int
    package_count: int
    skipped_payments: int
    skipped_rows: list[dict[str, Any]]
    warnings: list[str]
    detected_tables: list[str]
    diagnostics: dict[str, Any]
    plan: MigrationPlan = field(repr=False, compare=False)

    @classmethod
    def from_plan(cls, plan: MigrationPlan) -> "MigrationPreview":
        return cls(
            tenant_id=plan.tenant_id,
            member_count=plan.member_count,
            staff_count=plan.staff_count,
            package_count=len(plan.packages),
            skipped_payments=plan.skipped_payments,
            skipped_rows=list(plan.skipped_rows),
            warnings=list(plan.warnings),
            detected_tables=list(plan.detected_tables),
            diagnostics=plan.diagnostics.as_dict(),
            plan=plan,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "member_count": self.member_count,
            "staff_count": self.staff_count,
            "package_count": self.package_count,
            "skipped_payments": self.skipped_payments,
            "skipped_rows": self.skipped_rows,
            "warnings": self.warnings,
            "detected_tables": self.detected_tables,
            "diagnostics": self.diagnostics,
            "packages_planned": [package.name for package in self.plan.packages],
            "sample_members": self.plan.members[:PREVIEW_SAMPLE_SIZE],
            "sample_staff": self.plan.staff[:PREVIEW_SAMPLE_SIZE],
        }


@dataclass
class RunDiagnostics:
    packages_created: int = 0
    package_map_size: int = 0
    roles_created: int = 0
    role_map_size: int = 0
    members_attempted: int = 0
    member_upsert_batches: int = 0
    member_upsert_errors: list[dict[str, Any]] = field(default_factory=list)
    staff_attempted: int = 0
    staff_upsert_batches: int = 0
    staff_upsert_errors: list[dict[str, Any]] = field(default_factory=list)
    verified_member_count: int | None = None
    verified_staff_count: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationRunResult:
    preview: MigrationPreview
    dry_run: bool
    run_diagnostics: RunDiagnostics | None
    state: MigrationState = MigrationState.DONE

    @property
    def member_count(self) -> int:
        return self.preview.member_count

    @property
    def staff_count(self) -> int:
        return self.preview.staff_count

    @property
    def skipped_payments(self) -> int:
        return self.preview.skipped_payments

    @property
    def has_errors(self) -> bool:
        if self.run_diagnostics is None:
            return False
        return bool(self.run_diagnostics.member_upsert_errors or self.run_diagnostics.staff_upsert_errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_count": self.member_count,
            "staff_count": self.staff_count,
            "skipped_payments": self.skipped_payments,
            "dry_run": self.dry_run,
            "state": self.state.value,
            "preview": self.preview.to_dict(),
            "run_diagnostics": self.run_diagnostics.as_dict() if self.run_diagnostics else None,
        }


@dataclass(frozen=True)
class MigrationEvent:
    """One streamed event: ``start``, ``preview``, ``progress``, ``done`` or ``error``."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.payload}


@dataclass(frozen=True)
class MigrationScript:
    sql: str
    preview: MigrationPreview
    packages_planned: list[str]


def _chunks(rows: Sequence[dict[str, Any]], size: int) -> Iterator[list[dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield list(rows[start : start + size])


class MigrationDriver:
    """
    Orchestrates plan building and, for ``run``, the writes against a store.

    One driver may serve many invocations; each one re-parses its input and
    keeps no state besides :attr:`state`.
    """

    def __init__(
        self,
        store: RecordStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        today: date | None = None,
        column_map: ColumnMap | None = None,
        logger: logging.Logger | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self.today = today
        self.column_map = column_map
        self.logger = logger or logging.getLogger(__name__)
        self.state = MigrationState.IDLE

    # Validation / planning -------------------------------------------------

    @staticmethod
    def validate_request(text: str | None, tenant_id: str | None) -> None:
        if text is None or not isinstance(text, str):
            raise InvalidMigrationRequest("Dump text is required.")
        if tenant_id is None or not str(tenant_id).strip():
            raise InvalidMigrationRequest("Tenant id (gym_id) is required.")

    def build_plan(self, text: str, tenant_id: str) -> MigrationPlan:
        self.validate_request(text, tenant_id)
        plan = build_migration_plan(text, str(tenant_id).strip(), today=self.today, column_map=self.column_map)
        record_skipped_rows("payments", plan.skipped_payments)
        record_skipped_rows("members", len(plan.skipped_rows))
        return plan

    # Operations ------------------------------------------------------------

    def preview(self, text: str, tenant_id: str) -> MigrationPreview:
        """Build the plan and report counts and diagnostics. Never writes."""

        self.state = MigrationState.PREVIEWING
        try:
            preview = MigrationPreview.from_plan(self.build_plan(text, tenant_id))
        except Exception:
            self.state = MigrationState.ERROR
            record_migration_run(mode="preview", outcome="failure")
            raise
        self.state = MigrationState.DONE
        record_migration_run(mode="preview", outcome="success")
        return preview

    def generate(self, text: str, tenant_id: str) -> MigrationScript:
        """Render the plan as one SQL transaction instead of writing it."""

        self.state = MigrationState.PREVIEWING
        try:
            plan = self.build_plan(text, tenant_id)
        except Exception:
            self.state = MigrationState.ERROR
            record_migration_run(mode="generate", outcome="failure")
            raise
        script = MigrationScript(
            sql=render_migration_script(plan),
            preview=MigrationPreview.from_plan(plan),
            packages_planned=[package.name for package in plan.packages],
        )
        self.state = MigrationState.DONE
        record_migration_run(mode="generate", outcome="success")
        return script

    def run(
        self,
        text: str,
        tenant_id: str,
        *,
        dry_run: bool = False,
        on_progress: Callable[[int], None] | None = None,
    ) -> MigrationRunResult:
        """
        Execute a migration and return its result.

        ``on_progress`` receives the percent written after every batch.
        Reference failures raise :class:`ReferenceResolutionError`; batch
        failures are collected in ``run_diagnostics``.
        """

        steps = self._run_steps(text, tenant_id, dry_run=dry_run)
        while True:
            try:
                event = next(steps)
            except StopIteration as stop:
                return stop.value
            if event.type == "progress" and on_progress is not None:
                on_progress(event.payload["percent"])

    def iter_run_events(
        self,
        text: str,
        tenant_id: str,
        *,
        dry_run: bool = False,
    ) -> Generator[MigrationEvent, None, MigrationRunResult | None]:
        """
        Stream a run as events, ending with ``done`` or ``error``.

        Failures become an ``error`` event instead of an exception so streamed
        callers always see a terminal event.
        """

        yield MigrationEvent("start", {"tenant_id": tenant_id, "dry_run": dry_run})
        try:
            result = yield from self._run_steps(text, tenant_id, dry_run=dry_run)
        except (InvalidMigrationRequest, ReferenceResolutionError, RecordStoreError) as exc:
            yield MigrationEvent("error", {"error": str(exc), "error_type": type(exc).__name__})
            return None
        except Exception as exc:
            self.logger.exception(
                "Migration run failed",
                extra={"migration_tenant_id": tenant_id, "migration_state": self.state.value},
            )
            yield MigrationEvent("error", {"error": str(exc), "error_type": type(exc).__name__})
            return None
        yield MigrationEvent("done", result.to_dict())
        return result

    # Run phases ------------------------------------------------------------

    def _run_steps(
        self,
        text: str,
        tenant_id: str,
        *,
        dry_run: bool,
    ) -> Generator[MigrationEvent, None, MigrationRunResult]:
        mode = "dry_run" if dry_run else "run"
        self.state = MigrationState.PREVIEWING
        try:
            plan = self.build_plan(text, tenant_id)
            preview = MigrationPreview.from_plan(plan)
            yield MigrationEvent("preview", preview.to_dict())

            if dry_run:
                self.state = MigrationState.DONE
                record_migration_run(mode=mode, outcome="success")
                return MigrationRunResult(preview=preview, dry_run=True, run_diagnostics=None)

            diagnostics = RunDiagnostics()
            self.state = MigrationState.RESOLVING_REFERENCES
            package_ids = self._resolve_packages(plan, diagnostics)
            role_ids = self._resolve_roles(plan, diagnostics)

            members = [self._member_row(member, package_ids) for member in plan.members]
            staff = [self._staff_row(member, role_ids) for member in plan.staff]
            total = len(members) + len(staff)
            progress = _Progress(total)

            self.state = MigrationState.WRITING_MEMBERS
            diagnostics.members_attempted = len(members)
            yield from self._write_batches("members", members, progress, diagnostics)

            self.state = MigrationState.WRITING_STAFF
            diagnostics.staff_attempted = len(staff)
            yield from self._write_batches("staff", staff, progress, diagnostics)

            if progress.last_percent < 100:
                yield MigrationEvent("progress", {"percent": 100, "written": progress.written, "total": total})

            self.state = MigrationState.VERIFYING
            diagnostics.verified_member_count = self._verify_count("members", plan.tenant_id)
            diagnostics.verified_staff_count = self._verify_count("staff", plan.tenant_id)
        except Exception:
            self.state = MigrationState.ERROR
            record_migration_run(mode=mode, outcome="failure")
            raise

        self.state = MigrationState.DONE
        result = MigrationRunResult(preview=preview, dry_run=False, run_diagnostics=diagnostics)
        record_migration_run(mode=mode, outcome="failure" if result.has_errors else "success")
        self.logger.info(
            "Migration run finished",
            extra={
                "migration_tenant_id": plan.tenant_id,
                "migration_members_attempted": diagnostics.members_attempted,
                "migration_staff_attempted": diagnostics.staff_attempted,
                "migration_packages_created": diagnostics.packages_created,
                "migration_member_errors": len(diagnostics.member_upsert_errors),
                "migration_staff_errors": len(diagnostics.staff_upsert_errors),
            },
        )
        return result

    def _find_one(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        try:
            rows = self.store.find(table, filters)
        except RecordStoreError as exc:
            raise ReferenceResolutionError(f"Failed to look up {table} {filters}: {exc}") from exc
        return rows[0] if rows else None

    def _resolve_packages(self, plan: MigrationPlan, diagnostics: RunDiagnostics) -> dict[str, Any]:
        """Map every member package reference to a target package id, creating missing packages."""

        package_ids: dict[str, Any] = {}
        for package in plan.packages:
            existing = None
            if package.canonical_id:
                existing = self._find_one("packages", {"id": package.canonical_id})
            if existing is None:
                existing = self._find_one("packages", {"name": package.name})
            if existing is None:
                error = self.store.insert_or_update("packages", [package.record], PACKAGE_CONFLICT_COLUMNS)
                if error:
                    raise ReferenceResolutionError(f"Failed to create package '{package.name}': {error}")
                existing = self._find_one("packages", {"name": package.name})
                if existing is None:
                    raise ReferenceResolutionError(f"Package '{package.name}' missing after creation.")
                diagnostics.packages_created += 1
            for reference in package.references:
                package_ids[reference] = existing["id"]
        diagnostics.package_map_size = len(package_ids)
        return package_ids

    def _resolve_roles(self, plan: MigrationPlan, diagnostics: RunDiagnostics) -> dict[str, Any]:
        role_ids: dict[str, Any] = {}
        for role_name in dict.fromkeys(member["role_name"] for member in plan.staff if member.get("role_name")):
            name = role_name.lower()
            existing = self._find_one("roles", {"name": name})
            if existing is None:
                error = self.store.insert_or_update(
                    "roles", [{"name": name, "gym_id": plan.tenant_id}], ROLE_CONFLICT_COLUMNS
                )
                if error:
                    raise ReferenceResolutionError(f"Failed to create role '{name}': {error}")
                existing = self._find_one("roles", {"name": name})
                if existing is None:
                    raise ReferenceResolutionError(f"Role '{name}' missing after creation.")
                diagnostics.roles_created += 1
            role_ids[role_name] = existing["id"]
        diagnostics.role_map_size = len(role_ids)
        return role_ids

    @staticmethod
    def _member_row(member: dict[str, Any], package_ids: dict[str, Any]) -> dict[str, Any]:
        row = as_target_row(member)
        reference = row.get("package_id")
        row["package_id"] = package_ids.get(reference) if reference else None
        return row

    @staticmethod
    def _staff_row(member: dict[str, Any], role_ids: dict[str, Any]) -> dict[str, Any]:
        row = as_target_row(member)
        row["role_id"] = role_ids.get(row.get("role_name"))
        return row

    def _write_batches(
        self,
        table: str,
        rows: Sequence[dict[str, Any]],
        progress: "_Progress",
        diagnostics: RunDiagnostics,
    ) -> Iterator[MigrationEvent]:
        errors = diagnostics.member_upsert_errors if table == "members" else diagnostics.staff_upsert_errors
        for number, batch in enumerate(_chunks(rows, self.batch_size), start=1):
            started = time.perf_counter()
            failures: list[str] = []
            for conflict_columns, group in split_by_conflict_key(batch):
                try:
                    group_error = self.store.insert_or_update(table, group, conflict_columns)
                except RecordStoreError as exc:
                    group_error = str(exc)
                if group_error:
                    failures.append(group_error)
            error = "; ".join(failures) or None
            duration = time.perf_counter() - started

            if table == "members":
                diagnostics.member_upsert_batches += 1
            else:
                diagnostics.staff_upsert_batches += 1
            if error:
                errors.append({"batch": number, "error": error})
                self.logger.warning(
                    "Migration batch failed",
                    extra={"migration_table": table, "migration_batch": number, "migration_error": error},
                )
            record_migration_batch(
                entity=table,
                status="failure" if error else "success",
                duration_seconds=duration,
            )

            percent = progress.advance(len(batch))
            yield MigrationEvent(
                "progress",
                {"percent": percent, "written": progress.written, "total": progress.total, "table": table},
            )

    def _verify_count(self, table: str, tenant_id: str) -> int | None:
        try:
            return self.store.count(table, {"gym_id": tenant_id})
        except RecordStoreError as exc:
            self.logger.warning(
                "Migration verification failed",
                extra={"migration_table": table, "migration_error": str(exc)},
            )
            return None


class _Progress:
    def __init__(self, total: int):
        self.total = total
        self.written = 0
        self.last_percent = 0

    def advance(self, count: int) -> int:
        self.written += count
        self.last_percent = round(self.written / self.total * 100) if self.total else 100
        return self.last_percent


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "InvalidMigrationRequest",
    "MigrationDriver",
    "MigrationEvent",
    "MigrationPreview",
    "MigrationRunResult",
    "MigrationScript",
    "MigrationState",
    "ReferenceResolutionError",
    "RunDiagnostics",
]
