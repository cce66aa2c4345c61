"""
Processing of validated rows into persons and accounts.

``process_chunk`` handles one caller-driven slice of the valid rows and
returns where the next slice starts; ``process_job`` runs every slice in one
call and finishes by recording throughput metrics. Both share
``_process_slice``: each row runs in its own savepoint, so a failing row
rolls back alone and the rest of the slice carries on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_app.importer.exceptions import (
    InvalidJobState,
    JobFetchError,
    JobTerminalFailure,
    RowProcessingError,
    ValidationRequired,
)
from portfolio_app.importer.metrics import record_duration, record_processed_rows
from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import ImportJob, ImportJobStatus
from portfolio_app.utils.importer import get_importer_setting

from .job_state import (
    ProgressDelta,
    apply_progress,
    begin_processing_run,
    finish_processing_run,
    load_job,
    mark_failed,
    utcnow,
)
from .performance import RunStatistics, record_import_metrics
from .resolver import EntityResolver, ImportTarget, resolve_import_target
from .staging import fetch_rows_by_number
from .validation import rules_for_job, valid_row_numbers_from_report

DEFAULT_CHUNK_SIZE = 100
DEFAULT_PAGE_SIZE = 100
DEFAULT_SOFT_TIMEOUT_SECONDS = 240

PROCESSABLE_STATUSES = frozenset({ImportJobStatus.VALIDATED, ImportJobStatus.PROCESSING})


@dataclass
class ChunkResult:
    """Outcome of a single ``process_chunk`` call."""

    processed_count: int
    completed: bool
    message: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    next_start_index: int | None = None
    progress: int | None = None
    total_processed: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "processedCount": self.processed_count,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "completed": self.completed,
            "message": self.message,
        }
        if not self.completed and self.next_start_index is not None:
            payload["nextStartIndex"] = self.next_start_index
        if self.progress is not None:
            payload["progress"] = self.progress
        if self.total_processed is not None:
            payload["totalProcessed"] = self.total_processed
        return payload


@dataclass
class RunResult:
    """Outcome of a full ``process_job`` run."""

    processed_count: int
    successful_count: int
    failed_count: int
    status: ImportJobStatus
    message: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "processedCount": self.processed_count,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "message": self.message,
        }


def _completion_message(total_processed: int, error_count: int) -> str:
    message = f"Processing completed: {total_processed} rows processed"
    if error_count:
        message += f", {error_count} errors"
    return message


def _load_processable_job(job_id: int, session: Session) -> tuple[ImportJob, list[int]]:
    """Load the job and the valid row numbers from its stored report."""
    job = load_job(job_id, session=session)
    rules_for_job(job)
    if job.validation_results is None:
        raise ValidationRequired(
            f"Validation results not found for import job {job_id}. Please run validation first.",
            job_id=job_id,
        )
    row_numbers = valid_row_numbers_from_report(job.validation_results)
    if row_numbers is None:
        message = "Stored validation results could not be parsed; re-run validation."
        mark_failed(job_id, message, session=session)
        raise JobTerminalFailure(message, job_id=job_id)
    return job, row_numbers


def _resolve_target_or_fail(job: ImportJob, actor_id: str | None, session: Session) -> ImportTarget:
    try:
        return resolve_import_target(job, session=session)
    except JobFetchError as exc:
        mark_failed(job.id, exc.message, actor_id=actor_id, session=session)
        raise


def _process_slice(
    resolver: EntityResolver,
    row_numbers: Sequence[int],
    session: Session,
) -> ProgressDelta:
    """Run every row in ``row_numbers`` through the resolver, one savepoint per row."""
    delta = ProgressDelta()
    rows = {row.row_number: row for row in fetch_rows_by_number(resolver.job_id, row_numbers, session=session)}
    for row_number in row_numbers:
        delta.attempted += 1
        delta.last_row_number = row_number
        row = rows.get(row_number)
        if row is None:
            delta.failed += 1
            delta.errors.append(f"Row {row_number}: staging row not found")
            continue
        try:
            with session.begin_nested():
                outcome = resolver.resolve_row(row_number, row.mapped_data or {})
        except RowProcessingError as exc:
            error = str(exc)
        except Exception as exc:
            error = f"Row {row_number}: {exc}"
        else:
            delta.warnings.extend(outcome.warnings)
            if outcome.succeeded:
                delta.succeeded += 1
            else:
                delta.failed += 1
                delta.errors.append(outcome.error)
            continue

        delta.failed += 1
        delta.errors.append(error)
        current_app.logger.warning(
            "Import row failed: %s",
            error,
            extra={"importer_job_id": resolver.job_id, "importer_row_number": row_number},
        )
    return delta


def process_chunk(
    job_id: int,
    *,
    chunk_size: int | None = None,
    start_index: int = 0,
    actor_id: str | None = None,
    session: Session | None = None,
) -> ChunkResult:
    """
    Process valid rows ``[start_index, start_index + chunk_size)`` of a job.

    ``start_index == 0`` (re)initialises the run. A slice the job's persisted
    cursor has already passed is not attempted again, and one beyond the
    cursor is refused.
    """
    session = session or db.session
    chunk_size = chunk_size or get_importer_setting("IMPORTER_DEFAULT_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
    if chunk_size < 1:
        raise ValueError("chunk_size must be a positive integer.")
    if start_index < 0:
        raise ValueError("start_index must not be negative.")

    job, row_numbers = _load_processable_job(job_id, session)
    total_valid = len(row_numbers)
    chunk_numbers = row_numbers[start_index : start_index + chunk_size]
    if not chunk_numbers:
        return ChunkResult(
            processed_count=0,
            completed=True,
            message="No more rows to process",
            progress=job.progress,
            total_processed=job.processed_rows,
        )

    status = ImportJobStatus(job.status)
    if status not in PROCESSABLE_STATUSES:
        raise InvalidJobState(f"Import job {job_id} is '{status.value}' and cannot be processed.", job_id=job_id)
    if start_index > 0 and status == ImportJobStatus.VALIDATED:
        raise InvalidJobState(
            f"Import job {job_id} has not started processing; the first chunk must start at index 0.",
            job_id=job_id,
        )
    if 0 < start_index < (job.next_start_index or 0):
        return ChunkResult(
            processed_count=0,
            completed=False,
            message=f"Chunk already processed; resume from index {job.next_start_index}",
            next_start_index=job.next_start_index,
            progress=job.progress,
            total_processed=job.processed_rows,
        )
    if start_index > 0 and start_index > (job.next_start_index or 0):
        raise InvalidJobState(
            f"Import job {job_id} resumes from index {job.next_start_index or 0}; "
            f"index {start_index} would skip unprocessed rows.",
            job_id=job_id,
        )

    target = _resolve_target_or_fail(job, actor_id, session)
    if start_index == 0:
        begin_processing_run(job, total_rows=total_valid, actor_id=actor_id)
        session.commit()

    started = time.monotonic()
    resolver = EntityResolver(job_id, target, actor_id=actor_id, session=session)
    try:
        delta = _process_slice(resolver, chunk_numbers, session)
        next_start_index = start_index + chunk_size
        job = apply_progress(
            job_id,
            delta,
            denominator=total_valid,
            next_start_index=next_start_index,
            actor_id=actor_id,
            session=session,
        )
        completed = next_start_index >= total_valid
        if completed:
            finish_processing_run(job, actor_id=actor_id)
        session.commit()
    except SQLAlchemyError as exc:
        message = f"Chunk starting at index {start_index} failed: {exc}"
        mark_failed(job_id, message, actor_id=actor_id, session=session)
        raise JobTerminalFailure(message, job_id=job_id) from exc

    record_duration("chunk", time.monotonic() - started)
    record_processed_rows(succeeded=delta.succeeded, failed=delta.failed)
    current_app.logger.info(
        "Import chunk processed",
        extra={
            "importer_job_id": job_id,
            "importer_start_index": start_index,
            "importer_rows_attempted": delta.attempted,
            "importer_rows_failed": delta.failed,
            "importer_progress": job.progress,
            "importer_status": ImportJobStatus(job.status).value,
        },
    )

    if completed:
        return ChunkResult(
            processed_count=delta.attempted,
            completed=True,
            message=_completion_message(job.processed_rows, len(delta.errors)),
            errors=delta.errors,
            warnings=delta.warnings,
            progress=job.progress,
            total_processed=job.processed_rows,
        )
    return ChunkResult(
        processed_count=delta.attempted,
        completed=False,
        message=f"Chunk processed: {delta.attempted} rows, overall progress: {job.progress}%",
        errors=delta.errors,
        warnings=delta.warnings,
        next_start_index=next_start_index,
        progress=job.progress,
        total_processed=job.processed_rows,
    )


def process_next_chunk(
    job_id: int,
    *,
    chunk_size: int | None = None,
    actor_id: str | None = None,
    session: Session | None = None,
) -> ChunkResult:
    """Process the chunk at the job's persisted resume cursor."""
    session = session or db.session
    job = load_job(job_id, session=session)
    start_index = job.next_start_index or 0
    if ImportJobStatus(job.status) == ImportJobStatus.VALIDATED:
        start_index = 0
    return process_chunk(
        job_id,
        chunk_size=chunk_size,
        start_index=start_index,
        actor_id=actor_id,
        session=session,
    )


def process_job(
    job_id: int,
    *,
    actor_id: str | None = None,
    page_size: int | None = None,
    session: Session | None = None,
) -> RunResult:
    """Process every valid row of a job in one call, then record run metrics."""
    session = session or db.session
    page_size = page_size or get_importer_setting("IMPORTER_PROCESS_PAGE_SIZE", DEFAULT_PAGE_SIZE)
    soft_timeout = get_importer_setting("IMPORTER_SOFT_TIMEOUT_SECONDS", DEFAULT_SOFT_TIMEOUT_SECONDS)

    job, row_numbers = _load_processable_job(job_id, session)
    status = ImportJobStatus(job.status)
    if status not in PROCESSABLE_STATUSES:
        raise InvalidJobState(f"Import job {job_id} is '{status.value}' and cannot be processed.", job_id=job_id)
    if status == ImportJobStatus.PROCESSING and (job.next_start_index or 0) > 0:
        raise InvalidJobState(
            f"Import job {job_id} already has processed rows; resume it from index {job.next_start_index}.",
            job_id=job_id,
        )

    target = _resolve_target_or_fail(job, actor_id, session)
    total_valid = len(row_numbers)
    begin_processing_run(job, total_rows=total_valid, actor_id=actor_id)
    session.commit()

    start_time = utcnow()
    started = time.monotonic()
    timeout_logged = False
    totals = ProgressDelta()
    resolver = EntityResolver(job_id, target, actor_id=actor_id, session=session)
    try:
        for offset in range(0, total_valid, page_size):
            page_numbers = row_numbers[offset : offset + page_size]
            delta = _process_slice(resolver, page_numbers, session)
            job = apply_progress(
                job_id,
                delta,
                denominator=total_valid,
                next_start_index=offset + len(page_numbers),
                actor_id=actor_id,
                session=session,
            )
            session.commit()
            totals.attempted += delta.attempted
            totals.succeeded += delta.succeeded
            totals.failed += delta.failed
            totals.errors.extend(delta.errors)
            totals.warnings.extend(delta.warnings)

            elapsed = time.monotonic() - started
            if not timeout_logged and elapsed > soft_timeout:
                timeout_logged = True
                current_app.logger.warning(
                    "Import job %s passed the soft timeout of %ss; continuing",
                    job_id,
                    soft_timeout,
                    extra={"importer_job_id": job_id, "importer_elapsed_seconds": round(elapsed, 2)},
                )

        job = load_job(job_id, session=session, lock=True)
        final_status = finish_processing_run(job, actor_id=actor_id)
        session.commit()
    except SQLAlchemyError as exc:
        message = f"Processing failed after {totals.attempted} rows: {exc}"
        mark_failed(job_id, message, actor_id=actor_id, session=session)
        raise JobTerminalFailure(message, job_id=job_id) from exc

    record_import_metrics(
        job_id,
        RunStatistics(
            total_rows=totals.attempted,
            successful_rows=totals.succeeded,
            failed_rows=totals.failed,
            start_time=start_time,
            end_time=utcnow(),
        ),
        session=session,
    )
    current_app.logger.info(
        "Import job %s processed",
        job_id,
        extra={
            "importer_job_id": job_id,
            "importer_status": final_status.value,
            "importer_rows_processed": totals.attempted,
            "importer_rows_succeeded": totals.succeeded,
            "importer_rows_failed": totals.failed,
        },
    )
    return RunResult(
        processed_count=totals.attempted,
        successful_count=totals.succeeded,
        failed_count=totals.failed,
        status=final_status,
        message=_completion_message(totals.attempted, len(totals.errors)),
        errors=totals.errors,
        warnings=totals.warnings,
    )
