# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py uses TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from gym_app.models import db  # noqa: E402


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "MIGRATION_ENABLED": True,
            "MIGRATION_WORKER_ENABLED": False,
            "MIGRATION_BATCH_SIZE": 200,
            "MIGRATION_CONFIRM_PHRASE": "MIGRATE",
            "MIGRATION_MAX_DUMP_BYTES": 50 * 1024 * 1024,
            "MIGRATION_UPLOAD_DIR": str(tmp_path / "uploads"),
            "MIGRATION_COLUMN_MAP_PATH": None,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
        }
    )

    with flask_app.app_context():
        # Drop any existing tables to ensure clean state
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()
