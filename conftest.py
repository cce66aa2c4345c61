# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from portfolio_app.models import db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Flask application with a freshly created schema for each test"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "DEBUG",
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_STAGING_PAGE_SIZE": 1000,
            "IMPORTER_PROCESS_PAGE_SIZE": 100,
            "IMPORTER_DEFAULT_CHUNK_SIZE": 100,
            "IMPORTER_SOFT_TIMEOUT_SECONDS": 240,
            "IMPORTER_METRICS_ENABLED": True,
        }
    )

    # Re-initialize logging with updated config to pick up LOG_LEVEL=DEBUG
    from portfolio_app.utils.logging_config import setup_logging

    setup_logging(flask_app)

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
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()
