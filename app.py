# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask
from sqlalchemy import event

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from portfolio_app.importer import init_importer  # noqa: E402
from portfolio_app.models import db  # noqa: E402
from portfolio_app.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Validate environment variables (only in production)
flask_env = os.environ.get("FLASK_ENV", "development")
if flask_env == "production":
    validate_and_exit(flask_env)

# Load configuration based on the environment
if flask_env == "production":
    app.config.from_object(ProductionConfig)
    app.config.from_object(ProductionMonitoringConfig)
elif flask_env == "testing":
    app.config.from_object(TestingConfig)
    app.config.from_object(TestingMonitoringConfig)
else:
    app.config.from_object(DevelopmentConfig)
    app.config.from_object(DevelopmentMonitoringConfig)

# Initialize extensions
db.init_app(app)

# Initialize logging before the importer so its registration is logged
setup_logging(app)
init_importer(app)


def _configure_sqlite_connection_factory(*, enable_foreign_keys: bool):
    """Return a connection hook applying concurrency-friendly pragmas."""

    def _configure_sqlite_connection(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside a real transaction.
        dbapi_connection.isolation_level = None
        try:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)

    return _configure_sqlite_connection


def _begin_sqlite_transaction(connection):  # pragma: no cover - instrumentation
    connection.exec_driver_sql("BEGIN")


with app.app_context():
    engine = db.engine
    if engine.url.drivername.startswith("sqlite"):
        if not getattr(engine, "_sqlite_pragmas_configured", False):
            pragma_hook = _configure_sqlite_connection_factory(
                enable_foreign_keys=not app.config.get("TESTING", False)
            )
            event.listen(engine, "connect", pragma_hook)
            event.listen(engine, "begin", _begin_sqlite_transaction)
            engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]
    # Create the database tables only if not in testing mode
    if not app.config.get("TESTING", False):
        db.create_all()

