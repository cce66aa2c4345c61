"""
Service facade over the import pipeline.

``ImportJobService`` is what callers (CLI commands, Celery tasks, or any
HTTP layer wrapping the importer) use: it checks importer configuration,
runs the requested operation and returns the response payload, timing each
call for the monitoring histograms.
"""

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from flask import current_app
from sqlalchemy.orm import Session

from config.monitoring import ImporterMonitoring
from config.validation import validate_importer_settings
from portfolio_app.importer.exceptions import ConfigurationError, ImporterError
from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import ImportJobStatus

from .job_state import load_job
from .processor import process_chunk, process_job, process_next_chunk
from .staging import count_staging_rows
from .validation import validate_import_job

T = TypeVar("T")


class ImportJobService:
    """High-level entry points for validating and processing import jobs."""

    def __init__(self, session: Session | None = None, *, actor_id: str | None = None) -> None:
        self.session: Session = session or db.session
        self.actor_id = actor_id

    def validate(self, job_id: int) -> dict[str, Any]:
        report = self._run(
            "validate",
            lambda: validate_import_job(job_id, actor_id=self.actor_id, session=self.session),
        )
        return {
            "success": True,
            "validationResults": report.to_dict(),
            "message": (
                f"Validation completed: {report.valid_rows} valid rows, "
                f"{report.invalid_rows} invalid rows, {len(report.warnings)} warnings"
            ),
        }

    def process(self, job_id: int) -> dict[str, Any]:
        result = self._run(
            "process",
            lambda: process_job(job_id, actor_id=self.actor_id, session=self.session),
        )
        return result.to_dict()

    def process_chunk(self, job_id: int, chunk_size: int | None = None, start_index: int = 0) -> dict[str, Any]:
        result = self._run(
            "process_chunk",
            lambda: process_chunk(
                job_id,
                chunk_size=chunk_size,
                start_index=start_index,
                actor_id=self.actor_id,
                session=self.session,
            ),
        )
        return result.to_dict()

    def process_next_chunk(self, job_id: int, chunk_size: int | None = None) -> dict[str, Any]:
        result = self._run(
            "process_next_chunk",
            lambda: process_next_chunk(
                job_id,
                chunk_size=chunk_size,
                actor_id=self.actor_id,
                session=self.session,
            ),
        )
        return result.to_dict()

    def get_job_status(self, job_id: int) -> dict[str, Any]:
        """Return the job fields exposed to pollers."""
        self._ensure_configured()
        job = load_job(job_id, session=self.session)
        return {
            "id": job.id,
            "import_type": job.import_type,
            "status": ImportJobStatus(job.status).value,
            "progress": job.progress,
            "total_rows": job.total_rows,
            "processed_rows": job.processed_rows,
            "successful_rows": job.successful_rows,
            "failed_rows": job.failed_rows,
            "staged_rows": count_staging_rows(job.id, session=self.session),
            "next_start_index": job.next_start_index,
            "last_row_number": job.last_row_number,
            "validation_results": job.validation_results,
            "processing_errors": job.processing_errors,
            "processing_warnings": job.processing_warnings,
        }

    def _ensure_configured(self) -> None:
        problems = validate_importer_settings(current_app.config)
        if problems:
            raise ConfigurationError(" ".join(problems))

    def _run(self, operation: str, func: Callable[[], T]) -> T:
        self._ensure_configured()
        started = time.monotonic()
        status = "success"
        try:
            return func()
        except ImporterError as exc:
            status = type(exc).__name__
            raise
        except Exception:
            status = "error"
            raise
        finally:
            ImporterMonitoring.record_operation(
                operation=operation,
                duration_seconds=time.monotonic() - started,
                status=status,
            )
