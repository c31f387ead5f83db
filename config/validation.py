# config/validation.py

"""
Startup checks for production environment variables.

Each check appends human readable problems to a shared list; the web app,
CLI and worker refuse to start in production while any remain.
"""

import os
import sys
from typing import List, Tuple

PLACEHOLDER_SECRETS = {"your-secret-key", "your_secret_key", "change-me"}


def _is_true(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() in {"1", "true", "yes", "on"}


def _check_secret_key(errors: List[str]) -> None:
    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in PLACEHOLDER_SECRETS:
        errors.append(
            "SECRET_KEY is required in production and must not be a placeholder. "
            'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
        )


def _check_database(errors: List[str]) -> None:
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append("DATABASE_URL is required in production and must name a PostgreSQL database.")
    elif not database_url.startswith(("postgres://", "postgresql")):
        errors.append("DATABASE_URL must point at PostgreSQL in production; upserts rely on ON CONFLICT.")


def _check_worker(errors: List[str]) -> None:
    if not _is_true("MIGRATION_WORKER_ENABLED"):
        return
    for name in ("CELERY_BROKER_URL", "CELERY_RESULT_BACKEND"):
        if not os.environ.get(name):
            errors.append(f"{name} is required when MIGRATION_WORKER_ENABLED=true")


def _check_migration_settings(errors: List[str]) -> None:
    batch_size = os.environ.get("MIGRATION_BATCH_SIZE")
    if batch_size is not None:
        try:
            too_small = int(batch_size) < 1
        except ValueError:
            errors.append("MIGRATION_BATCH_SIZE must be an integer")
        else:
            if too_small:
                errors.append("MIGRATION_BATCH_SIZE must be at least 1")

    column_map_path = os.environ.get("MIGRATION_COLUMN_MAP_PATH")
    if column_map_path and not os.path.isfile(column_map_path):
        errors.append(f"MIGRATION_COLUMN_MAP_PATH does not point at a file: {column_map_path}")


PRODUCTION_CHECKS = (_check_secret_key, _check_database, _check_worker, _check_migration_settings)


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Run the production checks.

    ``flask_env`` defaults to ``FLASK_ENV``; anything but ``production`` passes
    untouched. Returns ``(is_valid, errors)``.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")
    if flask_env != "production":
        return True, []

    errors: List[str] = []
    for check in PRODUCTION_CHECKS:
        check(errors)
    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Print every problem to stderr and exit with status 1 when validation fails."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    rule = "=" * 80
    lines = [rule, "ENVIRONMENT VALIDATION FAILED", rule, ""]
    lines.extend(f"{index}. {error}" for index, error in enumerate(errors, 1))
    lines.extend(["", "Check your .env file or the process environment.", rule])
    print("\n".join(lines), file=sys.stderr)
    sys.exit(1)
