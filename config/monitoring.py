# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    APP_NAME = os.environ.get("APP_NAME", "Debtfolio")
    APP_VERSION = os.environ.get("APP_VERSION", "0.1.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class ImporterMonitoring:
    """Prometheus metric helpers for importer job operations."""

    OPERATION_COUNTER = Counter(
        "importer_job_operations_total",
        "Importer job operations by operation name and outcome.",
        labelnames=("operation", "status"),
    )
    OPERATION_LATENCY = Histogram(
        "importer_job_operation_seconds",
        "Latency histogram for importer job operations.",
        labelnames=("operation", "status"),
        buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
    )

    @classmethod
    def record_operation(cls, *, operation: str, duration_seconds: float, status: str):
        cls.OPERATION_COUNTER.labels(operation=operation, status=status).inc()
        cls.OPERATION_LATENCY.labels(operation=operation, status=status).observe(max(duration_seconds, 0.0))
