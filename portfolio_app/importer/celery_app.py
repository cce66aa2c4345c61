"""
Celery wiring for running importer operations in a worker.

The worker is optional (``IMPORTER_WORKER_ENABLED``). Without a configured
broker the app falls back to a SQLite transport in the instance folder so a
developer can run a worker without Redis.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"


def _quiet_noisy_loggers(app: Flask) -> None:
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)


def _sqlite_transport_path(app: Flask) -> Path:
    """Path of the SQLite file backing the default broker and result backend."""
    configured = app.config.get("CELERY_SQLITE_PATH")
    if configured:
        sqlite_path = Path(configured)
        if not sqlite_path.is_absolute():
            sqlite_path = Path(app.instance_path) / sqlite_path
    else:
        sqlite_path = Path(app.instance_path) / DEFAULT_SQLITE_FILENAME
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite_path


def resolve_connection_urls(app: Flask) -> tuple[str, str]:
    """Return ``(broker_url, result_backend)``, defaulting to SQLite transports."""
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend

    # Celery expects forward slashes even on Windows.
    normalized = _sqlite_transport_path(app).as_posix()
    return (
        broker_url or f"sqla+sqlite:///{normalized}",
        result_backend or f"db+sqlite:///{normalized}",
    )


def _extra_conf(app: Flask) -> Mapping[str, Any] | None:
    extra: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if isinstance(extra, str):
        try:
            return json.loads(extra)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            return None
    return extra


def create_celery_app(app: Flask) -> Celery:
    """Create a Celery instance whose tasks run inside ``app``'s context."""
    broker_url, result_backend = resolve_connection_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("portfolio_app.importer.tasks",),
    )

    # A full run only logs past the soft timeout; the hard limit leaves it room.
    soft_timeout = int(app.config.get("IMPORTER_SOFT_TIMEOUT_SECONDS", 240))
    celery_app.conf.update(
        task_default_queue=DEFAULT_QUEUE_NAME,
        task_queues=[Queue(DEFAULT_QUEUE_NAME)],
        task_default_exchange=DEFAULT_QUEUE_NAME,
        task_default_routing_key=DEFAULT_QUEUE_NAME,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_track_started=True,
        result_extended=True,
        broker_connection_retry_on_startup=True,
        task_time_limit=app.config.get("IMPORTER_TASK_TIME_LIMIT", soft_timeout * 4),
        worker_hijack_root_logger=False,
        worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
    )

    extra_conf = _extra_conf(app)
    if extra_conf:
        celery_app.conf.update(extra_conf)

    app.logger.info(
        "Importer Celery configuration resolved",
        extra={
            "importer_celery_broker_url": broker_url,
            "importer_celery_result_backend": result_backend,
            "importer_celery_extra_conf": extra_conf,
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )
    _quiet_noisy_loggers(app)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        """Run every task inside a Flask application context."""

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return (and cache) the Celery instance in the importer extension state."""
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Fetch the importer's Celery instance, creating it when the importer is enabled."""
    state: dict[str, Any] | None = app.extensions.get("importer")  # type: ignore[arg-type]
    if not state:
        return None
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None and state.get("enabled"):
        celery_app = ensure_celery_app(app, state)
    return celery_app
