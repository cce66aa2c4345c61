# config.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_positive_int(value, default, *, minimum=1, maximum=None):
    """
    Parse an environment integer, falling back to ``default`` when the value is
    missing, malformed, or outside the allowed bounds.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if number < minimum:
        return default
    if maximum is not None and number > maximum:
        return maximum
    return number


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)

    # Staging fetches are paged to stay under store query limits.
    IMPORTER_STAGING_PAGE_SIZE = _coerce_positive_int(
        os.environ.get("IMPORTER_STAGING_PAGE_SIZE"), 1000, maximum=5000
    )
    IMPORTER_PROCESS_PAGE_SIZE = _coerce_positive_int(
        os.environ.get("IMPORTER_PROCESS_PAGE_SIZE"), 100, maximum=1000
    )
    IMPORTER_DEFAULT_CHUNK_SIZE = _coerce_positive_int(
        os.environ.get("IMPORTER_DEFAULT_CHUNK_SIZE"), 100, maximum=1000
    )
    IMPORTER_SOFT_TIMEOUT_SECONDS = _coerce_positive_int(
        os.environ.get("IMPORTER_SOFT_TIMEOUT_SECONDS"), 240
    )
    IMPORTER_DEFAULT_CLIENT_CODE = os.environ.get("IMPORTER_DEFAULT_CLIENT_CODE", "DEFAULT_IMPORT")
    IMPORTER_DEFAULT_CLIENT_NAME = os.environ.get("IMPORTER_DEFAULT_CLIENT_NAME", "Default Import Client")
    IMPORTER_METRICS_ENABLED = _coerce_bool(os.environ.get("IMPORTER_METRICS_ENABLED"), default=True)

    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI needs forward slashes even on Windows
    db_path_normalized = os.path.join(instance_path, "debtfolio_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    IMPORTER_ENABLED = True
    IMPORTER_WORKER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
