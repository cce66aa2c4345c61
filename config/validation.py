# config/validation.py

"""
Environment variable validation for Debtfolio.
Validates required environment variables at startup and importer settings
before any import job is touched.
"""

import os
import sys
from typing import List, Mapping, Tuple

_IMPORTER_INT_SETTINGS = (
    "IMPORTER_STAGING_PAGE_SIZE",
    "IMPORTER_PROCESS_PAGE_SIZE",
    "IMPORTER_DEFAULT_CHUNK_SIZE",
    "IMPORTER_SOFT_TIMEOUT_SECONDS",
)


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in ("your-secret-key", "your_secret_key"):
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to your PostgreSQL connection string."
        )

    if os.environ.get("IMPORTER_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true in production")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_importer_settings(config: Mapping[str, object]) -> List[str]:
    """
    Check the importer-related keys of a loaded Flask config.

    Returns a list of human-readable problems; an empty list means the importer
    can safely touch the store.
    """
    problems: List[str] = []
    if not config.get("IMPORTER_ENABLED", False):
        problems.append("Importer is disabled via IMPORTER_ENABLED=false.")
    if not config.get("SQLALCHEMY_DATABASE_URI"):
        problems.append("SQLALCHEMY_DATABASE_URI is not configured; the importer has no store to read from.")
    for key in _IMPORTER_INT_SETTINGS:
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            problems.append(f"{key} must be a positive integer (got {value!r}).")
    return problems


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
