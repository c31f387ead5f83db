"""Migration pipeline: dump text to plan, plan to SQL or store writes."""

from __future__ import annotations

from .driver import (
    DEFAULT_BATCH_SIZE,
    InvalidMigrationRequest,
    MigrationDriver,
    MigrationEvent,
    MigrationPreview,
    MigrationRunResult,
    MigrationScript,
    MigrationState,
    ReferenceResolutionError,
    RunDiagnostics,
)
from .extractor import InsertBlock, detect_tables, extract_first_matching, extract_insert_blocks
from .plan import MigrationPlan, PlanDiagnostics, build_migration_plan
from .reconciliation import ReconciliationEntry, ReconciliationMaps, build_reconciliation_maps
from .sql_generator import RawExpression, SqlLiteral, generate_upsert_sql, render_migration_script
from .store import RecordStore, RecordStoreError, SqlAlchemyRecordStore

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "InsertBlock",
    "InvalidMigrationRequest",
    "MigrationDriver",
    "MigrationEvent",
    "MigrationPlan",
    "MigrationPreview",
    "MigrationRunResult",
    "MigrationScript",
    "MigrationState",
    "PlanDiagnostics",
    "RawExpression",
    "ReconciliationEntry",
    "ReconciliationMaps",
    "RecordStore",
    "RecordStoreError",
    "ReferenceResolutionError",
    "RunDiagnostics",
    "SqlAlchemyRecordStore",
    "SqlLiteral",
    "build_migration_plan",
    "build_reconciliation_maps",
    "detect_tables",
    "extract_first_matching",
    "extract_insert_blocks",
    "generate_upsert_sql",
    "render_migration_script",
]
