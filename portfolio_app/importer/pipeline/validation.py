"""
Validation of staged account rows.

``validate_import_job`` reads every staging row for a job in row-number
order, evaluates the import type's rules and stores the resulting
``ValidationReport`` on the job. Row problems are report data; only
job-level problems raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_app.importer.exceptions import InvalidJobState, JobTerminalFailure, UnsupportedImportType
from portfolio_app.importer.metrics import record_job_outcome, record_validation_rows
from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import ImportJob, ImportJobStatus
from portfolio_app.utils.importer import get_importer_setting

from .job_state import load_job, mark_failed, set_checkpoint, transition, utcnow
from .rules import RULES_BY_IMPORT_TYPE, RowRule, evaluate_row
from .staging import DEFAULT_PAGE_SIZE, iter_staging_pages

VALIDATABLE_STATUSES = frozenset(
    {ImportJobStatus.PENDING, ImportJobStatus.VALIDATING, ImportJobStatus.VALIDATED}
)

CHECKPOINT_STARTED = 10
CHECKPOINT_FETCH_FIRST = 20
CHECKPOINT_FETCH_LAST = 40
CHECKPOINT_RULES_STARTED = 50
CHECKPOINT_RULES_DONE = 90
CHECKPOINT_DONE = 100


@dataclass(frozen=True)
class RowDetail:
    row_number: int
    is_valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "rowNumber": self.row_number,
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class ValidationReport:
    """Per-job validation outcome, stored on ``ImportJob.validation_results``."""

    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    row_details: list[RowDetail] = field(default_factory=list)

    def add_row(self, row_number: int, errors: Sequence[str], warnings: Sequence[str]) -> RowDetail:
        detail = RowDetail(
            row_number=row_number,
            is_valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )
        self.row_details.append(detail)
        self.total_rows += 1
        if detail.is_valid:
            self.valid_rows += 1
        else:
            self.invalid_rows += 1
        self.errors.extend(f"Row {row_number}: {message}" for message in errors)
        self.warnings.extend(f"Row {row_number}: {message}" for message in warnings)
        return detail

    def valid_row_numbers(self) -> list[int]:
        return [detail.row_number for detail in self.row_details if detail.is_valid]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "validRows": self.valid_rows,
            "invalidRows": self.invalid_rows,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "rowDetails": [detail.to_dict() for detail in self.row_details],
        }


def valid_row_numbers_from_report(report: object) -> list[int] | None:
    """
    Extract the ordered valid row numbers from a stored report.

    Returns ``None`` when the stored value is not a report this module wrote.
    """
    if not isinstance(report, Mapping):
        return None
    details = report.get("rowDetails")
    if not isinstance(details, list):
        return None
    numbers: list[int] = []
    for detail in details:
        if not isinstance(detail, Mapping) or "rowNumber" not in detail:
            return None
        if detail.get("isValid") is True:
            try:
                numbers.append(int(detail["rowNumber"]))
            except (TypeError, ValueError):
                return None
    return numbers


def build_report(
    rows: Sequence[tuple[int, Mapping[str, object | None]]], rules: Sequence[RowRule]
) -> ValidationReport:
    """Evaluate ``rules`` over ``(row_number, mapped_data)`` pairs in order."""
    report = ValidationReport()
    for row_number, mapped in rows:
        errors, warnings = evaluate_row(mapped, rules)
        report.add_row(row_number, errors, warnings)
    return report


def rules_for_job(job: ImportJob) -> Sequence[RowRule]:
    factory = RULES_BY_IMPORT_TYPE.get(job.import_type)
    if factory is None:
        raise UnsupportedImportType(
            f"Import type '{job.import_type}' is not supported. Only 'accounts' imports are implemented.",
            job_id=job.id,
        )
    return factory()


def validate_import_job(
    job_id: int,
    *,
    actor_id: str | None = None,
    page_size: int | None = None,
    session: Session | None = None,
) -> ValidationReport:
    """Validate every staging row for ``job_id`` and persist the report."""
    session = session or db.session
    page_size = page_size or get_importer_setting("IMPORTER_STAGING_PAGE_SIZE", DEFAULT_PAGE_SIZE)

    job = load_job(job_id, session=session)
    rules = rules_for_job(job)
    status = ImportJobStatus(job.status)
    if status not in VALIDATABLE_STATUSES:
        raise InvalidJobState(
            f"Import job {job_id} is '{status.value}' and cannot be validated.",
            job_id=job_id,
        )

    transition(job, ImportJobStatus.VALIDATING)
    if actor_id is not None:
        job.updated_by = actor_id
    set_checkpoint(job, CHECKPOINT_STARTED, session=session)

    # Plain values survive the checkpoint commits without reloading each row.
    rows: list[tuple[int, Mapping[str, object | None]]] = []
    try:
        for page_index, page in enumerate(iter_staging_pages(job_id, page_size=page_size, session=session)):
            rows.extend((row.row_number, dict(row.mapped_data or {})) for row in page)
            set_checkpoint(
                job,
                min(CHECKPOINT_FETCH_LAST, CHECKPOINT_FETCH_FIRST + page_index * 5),
                session=session,
            )
    except SQLAlchemyError as exc:
        message = f"Failed to fetch staging rows: {exc}"
        mark_failed(job_id, message, actor_id=actor_id, session=session)
        raise JobTerminalFailure(message, job_id=job_id) from exc
    except Exception as exc:
        mark_failed(job_id, f"Validation failed: {exc}", actor_id=actor_id, session=session)
        raise

    try:
        set_checkpoint(job, CHECKPOINT_RULES_STARTED, session=session)
        report = build_report(rows, rules)
        set_checkpoint(job, CHECKPOINT_RULES_DONE, session=session)

        job.validation_results = report.to_dict()
        job.total_rows = report.total_rows
        job.validation_completed_at = utcnow()
        transition(job, ImportJobStatus.VALIDATED)
        job.progress = CHECKPOINT_DONE
        session.commit()
    except Exception as exc:
        # Nothing may leave the job in 'validating'.
        mark_failed(job_id, f"Validation failed: {exc}", actor_id=actor_id, session=session)
        raise

    record_job_outcome(ImportJobStatus.VALIDATED.value)
    record_validation_rows(valid=report.valid_rows, invalid=report.invalid_rows)
    current_app.logger.info(
        "Import job %s validated",
        job_id,
        extra={
            "importer_job_id": job_id,
            "importer_total_rows": report.total_rows,
            "importer_valid_rows": report.valid_rows,
            "importer_invalid_rows": report.invalid_rows,
            "importer_warning_count": len(report.warnings),
        },
    )
    return report
