"""
Account importer package.

``init_importer`` registers the ``flask importer`` CLI and, when enabled, the
Celery worker wiring. Callers use ``ImportJobService`` for validation and
processing of staged jobs.
"""

from __future__ import annotations

from typing import Any

from flask import Flask

from portfolio_app.utils.importer import is_importer_enabled, is_worker_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .exceptions import (
    ConfigurationError,
    ImporterError,
    InvalidJobState,
    JobFetchError,
    JobTerminalFailure,
    UnsupportedImportType,
    ValidationRequired,
)
from .pipeline.job_service import ImportJobService

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "get_celery_app",
    "ImportJobService",
    "ImporterError",
    "ConfigurationError",
    "InvalidJobState",
    "JobFetchError",
    "JobTerminalFailure",
    "UnsupportedImportType",
    "ValidationRequired",
]


def _ensure_extension_state(app: Flask) -> dict[str, Any]:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Register importer CLI commands and Celery wiring based on configuration.

    State is kept in ``app.extensions['importer']`` for the CLI and tasks.
    """
    enabled = is_importer_enabled(app)
    worker_enabled = is_worker_enabled(app)
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": worker_enabled})

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)
    _set_cli(app, enabled=True)
    app.logger.info(
        "Importer enabled (worker %s)",
        "enabled" if worker_enabled else "disabled",
        extra={"importer_worker_enabled": worker_enabled},
    )
