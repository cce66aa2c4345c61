"""
Importer-specific SQLAlchemy models.
"""

from .schema import (
    TERMINAL_STATUSES,
    ImportJob,
    ImportJobStatus,
    ImportMetrics,
    ImportType,
    StagingRow,
)

__all__ = [
    "ImportJob",
    "ImportJobStatus",
    "ImportMetrics",
    "ImportType",
    "StagingRow",
    "TERMINAL_STATUSES",
]
