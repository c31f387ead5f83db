# config/monitoring.py

"""Logging settings read by ``gym_app.utils.logging_config.setup_logging``."""

import os


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() == "true"


class MonitoringConfig:
    APP_NAME = os.environ.get("APP_NAME", "gym-migration")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # json or text
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "gym_migration.log")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024))
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))
    ENABLE_FILE_LOGGING = _flag("ENABLE_FILE_LOGGING", "true")
    ENABLE_CONSOLE_LOGGING = _flag("ENABLE_CONSOLE_LOGGING", "true")


class DevelopmentMonitoringConfig(MonitoringConfig):
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"


class ProductionMonitoringConfig(MonitoringConfig):
    """Structured file logs; the container runtime collects stdout separately."""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False


class TestingMonitoringConfig(MonitoringConfig):
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False
