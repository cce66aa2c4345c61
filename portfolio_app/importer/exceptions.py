"""
Exception taxonomy for the account importer.

Job-level failures are raised as ``ImporterError`` subclasses carrying an
HTTP-style ``status_code`` so whichever surface wraps the pipeline can map
them without inspecting messages. Per-row problems are data (validation
report entries, processing errors) and never escape an operation.
"""

from __future__ import annotations


class ImporterError(Exception):
    """Base class for importer failures surfaced to callers."""

    status_code = 500

    def __init__(self, message: str, *, job_id: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": False, "error": self.message}
        if self.job_id is not None:
            payload["jobId"] = self.job_id
        return payload


class ConfigurationError(ImporterError):
    """Importer disabled or missing store connectivity; raised before any job access."""

    status_code = 500


class JobFetchError(ImporterError):
    """Job, portfolio, or client could not be found."""

    status_code = 404


class UnsupportedImportType(ImporterError):
    status_code = 400


class ValidationRequired(ImporterError):
    """Processing was requested before validation results exist."""

    status_code = 400


class InvalidJobState(ImporterError):
    """The requested operation is not allowed from the job's current status."""

    status_code = 409


class JobTerminalFailure(ImporterError):
    """The job could not proceed and has been moved to ``failed``."""

    status_code = 500


class RowProcessingError(Exception):
    """A single staging row failed; caught by the processor and recorded."""

    def __init__(self, row_number: int, reason: str) -> None:
        super().__init__(f"Row {row_number}: {reason}")
        self.row_number = row_number
        self.reason = reason
