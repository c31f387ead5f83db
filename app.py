# app.py

import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import event

# .env must be loaded before config classes read the environment
load_dotenv()

from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from gym_app.migration import init_migration  # noqa: E402
from gym_app.models import db  # noqa: E402
from gym_app.utils.logging_config import setup_logging  # noqa: E402

CONFIG_BY_ENV = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}


def _sqlite_pragma_hook(*, enable_foreign_keys: bool):
    """Connection hook: wait on locks instead of failing, enforce FKs outside tests."""

    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    return _on_connect


def _prepare_database(flask_app: Flask) -> None:
    with flask_app.app_context():
        engine = db.engine
        if engine.url.drivername.startswith("sqlite") and not getattr(engine, "_gym_pragmas", False):
            event.listen(
                engine,
                "connect",
                _sqlite_pragma_hook(enable_foreign_keys=not flask_app.config.get("TESTING", False)),
            )
            engine._gym_pragmas = True  # type: ignore[attr-defined]
        # Tests build their own schema per test
        if not flask_app.config.get("TESTING", False):
            db.create_all()


flask_env = os.environ.get("FLASK_ENV", "development")
if flask_env == "production":
    validate_and_exit(flask_env)

app = Flask(__name__)
for config_object in CONFIG_BY_ENV.get(flask_env, CONFIG_BY_ENV["development"]):
    app.config.from_object(config_object)

db.init_app(app)
setup_logging(app)
_prepare_database(app)
init_migration(app)


@app.get("/health")
def health():
    return jsonify({"status": "ok", "environment": flask_env}), 200


@app.errorhandler(404)
def not_found_error(error):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    return jsonify({"error": "Internal server error"}), 500


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
