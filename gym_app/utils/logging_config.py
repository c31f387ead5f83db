"""
Logging setup for the Flask app, CLI and Celery worker.

Records carry ``migration_*`` fields through ``extra=``; the JSON formatter
emits them alongside the standard attributes.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone

_HANDLER_MARKER = "_gym_migration_handler"
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including any ``migration_*`` extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s [%(name)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def _build_formatter(log_format: str) -> logging.Formatter:
    if str(log_format).lower() == "json":
        return JsonFormatter()
    return TextFormatter()


def _remove_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app) -> None:
    """
    Configure ``app.logger`` and the ``gym_app`` logger hierarchy from app config.

    Safe to call repeatedly; handlers installed by a previous call are replaced.
    """
    config = app.config
    level = getattr(logging, str(config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = _build_formatter(config.get("LOG_FORMAT", "json"))

    handlers: list[logging.Handler] = []
    if config.get("ENABLE_FILE_LOGGING", False):
        log_dir = config.get("LOG_DIR", "logs")
        if not os.path.isabs(log_dir):
            log_dir = os.path.join(app.root_path, log_dir)
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, config.get("LOG_FILE_NAME", "gym_migration.log")),
            maxBytes=int(config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        handlers.append(file_handler)
    if config.get("ENABLE_CONSOLE_LOGGING", True):
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)

    # app.logger and the pipeline loggers (logging.getLogger(__name__)) share handlers
    for logger in (app.logger, logging.getLogger("gym_app")):
        _remove_managed_handlers(logger)
        logger.setLevel(level)
        for handler in handlers:
            logger.addHandler(handler)

    app.logger.debug(
        "Logging configured",
        extra={"log_format": config.get("LOG_FORMAT"), "log_handlers": [type(h).__name__ for h in handlers]},
    )
