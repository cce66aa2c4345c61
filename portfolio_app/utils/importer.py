"""
Utility helpers for importer feature flag checks.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def is_worker_enabled(app=None) -> bool:
    """Return True when importer operations may be queued on Celery."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_WORKER_ENABLED", False))


def get_importer_setting(key: str, default: int, app=None) -> int:
    """Read a positive integer importer setting, falling back to ``default``."""
    config = _get_config(app)
    value = config.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return default
    return value
