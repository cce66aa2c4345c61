"""
Import job status transitions and progress bookkeeping.

All writes to an ``ImportJob`` made by the pipeline go through this module:
status changes are checked against ``ALLOWED_TRANSITIONS`` and counter
updates are applied as SQL increments while holding a row lock on the job, so
two chunk calls for the same job cannot lose each other's progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from portfolio_app.importer.exceptions import InvalidJobState, JobFetchError
from portfolio_app.importer.metrics import record_job_outcome
from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import TERMINAL_STATUSES, ImportJob, ImportJobStatus

ALLOWED_TRANSITIONS: dict[ImportJobStatus, frozenset[ImportJobStatus]] = {
    ImportJobStatus.PENDING: frozenset({ImportJobStatus.VALIDATING, ImportJobStatus.FAILED}),
    ImportJobStatus.VALIDATING: frozenset(
        {ImportJobStatus.VALIDATING, ImportJobStatus.VALIDATED, ImportJobStatus.FAILED}
    ),
    ImportJobStatus.VALIDATED: frozenset(
        {ImportJobStatus.VALIDATING, ImportJobStatus.PROCESSING, ImportJobStatus.FAILED}
    ),
    ImportJobStatus.PROCESSING: frozenset(
        {
            ImportJobStatus.PROCESSING,
            ImportJobStatus.COMPLETED,
            ImportJobStatus.COMPLETED_WITH_ERRORS,
            ImportJobStatus.FAILED,
        }
    ),
    ImportJobStatus.COMPLETED: frozenset(),
    ImportJobStatus.COMPLETED_WITH_ERRORS: frozenset(),
    ImportJobStatus.FAILED: frozenset(),
}


@dataclass
class ProgressDelta:
    """Counter changes produced by one processed slice of rows."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    last_row_number: int | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def percent(numerator: int, denominator: int) -> int:
    """Whole percentage rounded half-up, clamped to 0..100."""
    if denominator <= 0:
        return 100
    value = (numerator * 200 + denominator) // (2 * denominator)
    return max(0, min(100, value))


def load_job(job_id: int, *, session: Session | None = None, lock: bool = False) -> ImportJob:
    """Return the job or raise ``JobFetchError``."""
    session = session or db.session
    stmt = select(ImportJob).where(ImportJob.id == job_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    job = session.scalars(stmt).first()
    if job is None:
        raise JobFetchError(f"Import job {job_id} not found.", job_id=job_id)
    return job


def transition(job: ImportJob, status: ImportJobStatus) -> None:
    """Move ``job`` to ``status`` or raise ``InvalidJobState`` for an illegal edge."""
    current = ImportJobStatus(job.status)
    if status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidJobState(
            f"Import job {job.id} cannot move from '{current.value}' to '{status.value}'.",
            job_id=job.id,
        )
    job.status = status


def append_messages(existing: Sequence[str] | None, new: Sequence[str]) -> list[str] | None:
    """Return a fresh list so JSON column changes are detected."""
    if not new:
        return list(existing) if existing is not None else None
    return [*(existing or ()), *new]


def mark_failed(
    job_id: int,
    message: str,
    *,
    actor_id: str | None = None,
    session: Session | None = None,
) -> ImportJob | None:
    """
    Roll back in-flight work, append ``message`` to the job's errors and move
    it to ``failed``. Jobs already in a terminal state keep their status.
    """
    session = session or db.session
    session.rollback()
    job = session.get(ImportJob, job_id)
    if job is None:
        return None
    job.processing_errors = append_messages(job.processing_errors, [message])
    if ImportJobStatus(job.status) not in TERMINAL_STATUSES:
        transition(job, ImportJobStatus.FAILED)
        job.processing_completed_at = utcnow()
    if actor_id is not None:
        job.updated_by = actor_id
    session.commit()
    record_job_outcome(ImportJobStatus.FAILED.value)
    current_app.logger.error(
        "Import job %s failed: %s",
        job_id,
        message,
        extra={"importer_job_id": job_id, "importer_error": message},
    )
    return job


def set_checkpoint(job: ImportJob, progress: int, *, session: Session | None = None) -> None:
    """Record a cosmetic progress checkpoint and commit it for pollers."""
    session = session or db.session
    job.progress = max(0, min(100, progress))
    session.commit()


def begin_processing_run(
    job: ImportJob,
    *,
    total_rows: int,
    actor_id: str | None = None,
) -> None:
    """Reset counters and cursor for a fresh processing run."""
    transition(job, ImportJobStatus.PROCESSING)
    job.progress = 0
    job.total_rows = total_rows
    job.processed_rows = 0
    job.successful_rows = 0
    job.failed_rows = 0
    job.processing_errors = None
    job.processing_warnings = None
    job.next_start_index = 0
    job.last_row_number = None
    job.processing_completed_at = None
    job.started_at = utcnow()
    if actor_id is not None:
        job.updated_by = actor_id


def apply_progress(
    job_id: int,
    delta: ProgressDelta,
    *,
    denominator: int,
    next_start_index: int | None = None,
    actor_id: str | None = None,
    session: Session | None = None,
) -> ImportJob:
    """
    Add ``delta`` to the job's counters under a row lock.

    Counters are incremented in SQL rather than read-modified-written, progress
    never moves backwards, and the resume cursor only moves forwards.
    """
    session = session or db.session
    load_job(job_id, session=session, lock=True)
    session.execute(
        update(ImportJob)
        .where(ImportJob.id == job_id)
        .values(
            processed_rows=ImportJob.processed_rows + delta.attempted,
            successful_rows=ImportJob.successful_rows + delta.succeeded,
            failed_rows=ImportJob.failed_rows + delta.failed,
        )
        .execution_options(synchronize_session=False)
    )
    job = load_job(job_id, session=session, lock=True)
    job.progress = max(job.progress or 0, percent(job.processed_rows, denominator))
    job.processing_errors = append_messages(job.processing_errors, delta.errors)
    job.processing_warnings = append_messages(job.processing_warnings, delta.warnings)
    if next_start_index is not None and next_start_index > (job.next_start_index or 0):
        job.next_start_index = next_start_index
    if delta.last_row_number is not None:
        job.last_row_number = delta.last_row_number
    if actor_id is not None:
        job.updated_by = actor_id
    return job


def finish_processing_run(job: ImportJob, *, actor_id: str | None = None) -> ImportJobStatus:
    """Move a processing job to its terminal status based on failed rows."""
    status = ImportJobStatus.COMPLETED_WITH_ERRORS if job.failed_rows else ImportJobStatus.COMPLETED
    transition(job, status)
    job.progress = 100
    job.processing_completed_at = utcnow()
    if actor_id is not None:
        job.updated_by = actor_id
    record_job_outcome(status.value)
    return status
