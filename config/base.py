# config/base.py
import os
import warnings

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_SQLITE_CONNECT_ARGS = {"connect_args": {"check_same_thread": False, "timeout": 5}}


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None):
    """Parse an integer environment value, falling back to ``default``."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return minimum
    return number


def _env_int(name, default):
    return _coerce_int(os.environ.get(name), default, minimum=1)


def _resolve_secret_key(flask_env):
    secret_key = os.environ.get("SECRET_KEY")
    if secret_key:
        return secret_key
    if flask_env == "production":
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if flask_env == "testing":
        return "test-secret-key-placeholder"
    warnings.warn("SECRET_KEY not set; using a development-only key.", UserWarning)
    return "dev-secret-key-change-in-production"


def _development_database_uri():
    instance_dir = os.path.join(_PROJECT_ROOT, "instance")
    os.makedirs(instance_dir, exist_ok=True)
    # SQLite URIs need forward slashes even on Windows
    return "sqlite:///" + os.path.join(instance_dir, "gym_dev.db").replace("\\", "/")


class Config:
    SECRET_KEY = _resolve_secret_key(os.environ.get("FLASK_ENV", "development"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Migration engine
    MIGRATION_ENABLED = _coerce_bool(os.environ.get("MIGRATION_ENABLED"), default=True)
    MIGRATION_WORKER_ENABLED = _coerce_bool(os.environ.get("MIGRATION_WORKER_ENABLED"), default=False)
    MIGRATION_BATCH_SIZE = _env_int("MIGRATION_BATCH_SIZE", 200)
    MIGRATION_COLUMN_MAP_PATH = os.environ.get("MIGRATION_COLUMN_MAP_PATH")
    MIGRATION_CONFIRM_PHRASE = os.environ.get("MIGRATION_CONFIRM_PHRASE", "MIGRATE")
    MIGRATION_MAX_DUMP_BYTES = _env_int("MIGRATION_MAX_DUMP_BYTES", 50 * 1024 * 1024)
    MIGRATION_UPLOAD_DIR = os.environ.get("MIGRATION_UPLOAD_DIR")
    MIGRATION_QUEUE_NAME = os.environ.get("MIGRATION_QUEUE_NAME", "migrations")
    MIGRATION_TASK_TIME_LIMIT = _env_int("MIGRATION_TASK_TIME_LIMIT", 30 * 60)
    MIGRATION_TASK_SOFT_TIME_LIMIT = _env_int("MIGRATION_TASK_SOFT_TIME_LIMIT", 25 * 60)

    # Worker transport; unset URLs fall back to a SQLite file in instance/
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _development_database_uri()
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    SQLALCHEMY_ENGINE_OPTIONS = _SQLITE_CONNECT_ARGS if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = _SQLITE_CONNECT_ARGS
    MIGRATION_ENABLED = True
    CELERY_BROKER_URL = "memory://"
    CELERY_RESULT_BACKEND = "cache+memory://"
    CELERY_CONFIG = {"task_always_eager": True, "task_eager_propagates": True}


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_ECHO = False
    # Heroku-style URLs use the scheme SQLAlchemy dropped
    SQLALCHEMY_DATABASE_URI = (os.environ.get("DATABASE_URL") or "").replace("postgres://", "postgresql://", 1) or None
