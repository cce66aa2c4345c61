# portfolio_app/utils/logging_config.py
"""
Logging setup for the Flask application.

Configures ``app.logger`` from the monitoring config keys (``LOG_LEVEL``,
``LOG_FORMAT``, ``LOG_DIR`` ...). JSON output carries any structured
``extra={...}`` keys passed by callers, so importer log lines keep their
``importer_job_id`` and friends.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from flask.logging import default_handler

TEXT_FORMAT = "[%(asctime)s] %(levelname)s in %(module)s: %(message)s"

# Attributes present on every LogRecord; anything else came in via ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_HANDLER_MARKER = "_debtfolio_handler"


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(self, app_name="Debtfolio", app_version=None):
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
            "app": self.app_name,
        }
        if self.app_version:
            payload["version"] = self.app_version
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(app):
    if str(app.config.get("LOG_FORMAT", "text")).lower() == "json":
        return JsonFormatter(
            app_name=app.config.get("APP_NAME", "Debtfolio"),
            app_version=app.config.get("APP_VERSION"),
        )
    return logging.Formatter(TEXT_FORMAT)


def _remove_managed_handlers(logger):
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def setup_logging(app):
    """
    Attach console and rotating file handlers to ``app.logger``.

    Safe to call repeatedly; handlers installed by a previous call are
    replaced rather than duplicated.
    """
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = app.logger
    logger.removeHandler(default_handler)
    _remove_managed_handlers(logger)
    logger.setLevel(level)
    formatter = _build_formatter(app)

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        setattr(console_handler, _HANDLER_MARKER, True)
        logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "debtfolio.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    logger.debug("Logging configured (level=%s, format=%s)", level_name, app.config.get("LOG_FORMAT", "text"))
    return logger

