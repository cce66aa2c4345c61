from __future__ import annotations

import itertools
import logging

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from portfolio_app.importer.exceptions import (
    InvalidJobState,
    JobFetchError,
    JobTerminalFailure,
    ValidationRequired,
)
from portfolio_app.importer.pipeline import performance, processor
from portfolio_app.importer.pipeline.processor import process_chunk, process_job, process_next_chunk
from portfolio_app.importer.pipeline.resolver import EntityResolver
from portfolio_app.models import db
from portfolio_app.models.account import DebtAccount
from portfolio_app.models.importer.schema import ImportJob, ImportJobStatus, ImportMetrics, StagingRow
from portfolio_app.models.person import Person

from .conftest import account_row


def _count(model) -> int:
    return db.session.scalar(select(func.count()).select_from(model))


def _job(job_id: int) -> ImportJob:
    return db.session.get(ImportJob, job_id)


@pytest.fixture
def failing_row(monkeypatch):
    """Make account creation fail for the given row numbers."""

    def _install(*row_numbers: int) -> None:
        original = EntityResolver.insert_account

        def insert_account(self, person_id, mapped, *, row_number, warnings=None):
            if row_number in row_numbers:
                raise SQLAlchemyError("disk full")
            return original(self, person_id, mapped, row_number=row_number, warnings=warnings)

        monkeypatch.setattr(EntityResolver, "insert_account", insert_account)

    return _install


def test_chunks_walk_the_valid_rows(validated_job, portfolio_factory):
    portfolio = portfolio_factory()
    job = validated_job([account_row() for _ in range(5)], portfolio_id=portfolio.id)

    first = process_chunk(job.id, chunk_size=2, start_index=0).to_dict()
    assert first["completed"] is False
    assert first["processedCount"] == 2
    assert first["nextStartIndex"] == 2
    assert first["progress"] == 40
    assert first["message"] == "Chunk processed: 2 rows, overall progress: 40%"
    assert _job(job.id).status == ImportJobStatus.PROCESSING

    second = process_chunk(job.id, chunk_size=2, start_index=2).to_dict()
    assert second["completed"] is False
    assert second["processedCount"] == 2
    assert second["nextStartIndex"] == 4

    third = process_chunk(job.id, chunk_size=2, start_index=4).to_dict()
    assert third["completed"] is True
    assert third["processedCount"] == 1
    assert "nextStartIndex" not in third
    assert third["message"] == "Processing completed: 5 rows processed"

    stored = _job(job.id)
    assert stored.status == ImportJobStatus.COMPLETED
    assert stored.progress == 100
    assert stored.processed_rows == 5
    assert stored.successful_rows == 5
    assert stored.next_start_index == 6
    assert stored.last_row_number == 5
    assert _count(DebtAccount) == 5
    assert db.session.scalar(
        select(func.count()).select_from(DebtAccount).where(DebtAccount.portfolio_id == portfolio.id)
    ) == 5


def test_invalid_rows_are_skipped(validated_job):
    job = validated_job([account_row(), account_row(current_balance=""), account_row()])

    result = process_chunk(job.id, chunk_size=10).to_dict()

    assert result["completed"] is True
    assert result["processedCount"] == 2
    assert _job(job.id).last_row_number == 3
    assert _count(DebtAccount) == 2


def test_failing_row_does_not_abort_the_chunk(validated_job, failing_row):
    failing_row(7)
    job = validated_job([account_row() for _ in range(10)])

    result = process_chunk(job.id, chunk_size=100, start_index=0).to_dict()

    assert result["processedCount"] == 10
    assert result["completed"] is True
    assert len(result["errors"]) == 1
    assert result["errors"][0].startswith("Row 7: Failed to create account")
    assert result["message"] == "Processing completed: 10 rows processed, 1 errors"
    assert _count(DebtAccount) == 9
    # The failed row's person insert is rolled back with its savepoint.
    assert _count(Person) == 9

    stored = _job(job.id)
    assert stored.status == ImportJobStatus.COMPLETED_WITH_ERRORS
    assert stored.processed_rows == 10
    assert stored.successful_rows == 9
    assert stored.failed_rows == 1
    assert stored.processing_errors == result["errors"]


def test_rows_without_ssn_are_counted_as_failures(validated_job):
    job = validated_job([account_row(), account_row(ssn="")])

    result = process_chunk(job.id).to_dict()

    assert result["errors"] == ["Row 2: No SSN provided - person creation skipped"]
    assert _job(job.id).failed_rows == 1
    assert _count(DebtAccount) == 1


def test_coercion_warnings_reach_the_job(validated_job):
    job = validated_job([account_row(account_type="spaceship")])

    result = process_chunk(job.id).to_dict()

    assert result["errors"] == []
    assert result["warnings"] == ["Row 1: account_type 'spaceship' not recognised; stored as 'other'"]
    assert _job(job.id).processing_warnings == result["warnings"]
    assert _job(job.id).status == ImportJobStatus.COMPLETED


def test_slice_past_the_end_is_completed_noop(validated_job):
    job = validated_job([account_row(), account_row()])
    process_chunk(job.id, chunk_size=2)

    result = process_chunk(job.id, chunk_size=2, start_index=2).to_dict()

    assert result["completed"] is True
    assert result["processedCount"] == 0
    assert result["message"] == "No more rows to process"
    assert _count(DebtAccount) == 2


def test_replayed_chunk_is_not_applied_twice(validated_job):
    job = validated_job([account_row() for _ in range(6)])
    process_chunk(job.id, chunk_size=2, start_index=0)
    process_chunk(job.id, chunk_size=2, start_index=2)

    replay = process_chunk(job.id, chunk_size=2, start_index=2).to_dict()

    assert replay["processedCount"] == 0
    assert replay["completed"] is False
    assert replay["nextStartIndex"] == 4
    assert _job(job.id).processed_rows == 4
    assert _count(DebtAccount) == 4


def test_restarting_from_zero_resets_counters(validated_job):
    job = validated_job([account_row() for _ in range(4)])
    process_chunk(job.id, chunk_size=2, start_index=0)

    result = process_chunk(job.id, chunk_size=2, start_index=0).to_dict()

    assert result["nextStartIndex"] == 2
    assert _job(job.id).processed_rows == 2


def test_next_chunk_follows_the_persisted_cursor(validated_job):
    job = validated_job([account_row() for _ in range(3)])

    results = []
    while not results or not results[-1]["completed"]:
        results.append(process_next_chunk(job.id, chunk_size=2).to_dict())

    assert [result["processedCount"] for result in results] == [2, 1]
    assert _job(job.id).status == ImportJobStatus.COMPLETED


def test_first_chunk_must_start_at_zero(validated_job):
    job = validated_job([account_row() for _ in range(3)])

    with pytest.raises(InvalidJobState):
        process_chunk(job.id, chunk_size=1, start_index=1)


def test_chunk_beyond_the_cursor_is_rejected(validated_job):
    job = validated_job([account_row() for _ in range(5)])
    process_chunk(job.id, chunk_size=2, start_index=0)

    with pytest.raises(InvalidJobState) as excinfo:
        process_chunk(job.id, chunk_size=2, start_index=4)

    assert "resumes from index 2" in excinfo.value.message
    stored = _job(job.id)
    assert stored.status == ImportJobStatus.PROCESSING
    assert stored.next_start_index == 2
    assert stored.processed_rows == 2
    assert _count(DebtAccount) == 2

    # The run can still finish from the persisted cursor.
    assert process_chunk(job.id, chunk_size=2, start_index=2).to_dict()["nextStartIndex"] == 4
    assert process_chunk(job.id, chunk_size=2, start_index=4).to_dict()["completed"] is True
    assert _job(job.id).processed_rows == 5


def test_processing_requires_validation(job_factory):
    job = job_factory([account_row()])

    with pytest.raises(ValidationRequired) as excinfo:
        process_chunk(job.id)

    assert excinfo.value.status_code == 400
    assert _job(job.id).status == ImportJobStatus.PENDING


def test_terminal_jobs_are_rejected(validated_job):
    job = validated_job([account_row()])
    process_chunk(job.id)

    with pytest.raises(InvalidJobState):
        process_job(job.id)


def test_unparseable_report_fails_the_job(validated_job):
    job = validated_job([account_row()])
    job.validation_results = {"rowDetails": "corrupt"}
    db.session.commit()

    with pytest.raises(JobTerminalFailure):
        process_chunk(job.id)

    assert _job(job.id).status == ImportJobStatus.FAILED


def test_missing_portfolio_fails_the_job(validated_job):
    job = validated_job([account_row()], portfolio_id=777)

    with pytest.raises(JobFetchError):
        process_chunk(job.id)

    stored = _job(job.id)
    assert stored.status == ImportJobStatus.FAILED
    assert "Portfolio 777" in stored.processing_errors[-1]


def test_missing_staging_row_is_reported(validated_job):
    job = validated_job([account_row(), account_row()])
    db.session.execute(
        delete(StagingRow).where(StagingRow.job_id == job.id, StagingRow.row_number == 2)
    )
    db.session.commit()

    result = process_chunk(job.id).to_dict()

    assert result["errors"] == ["Row 2: staging row not found"]
    assert _job(job.id).status == ImportJobStatus.COMPLETED_WITH_ERRORS


def test_chunk_records_actor(validated_job):
    job = validated_job([account_row()])

    process_chunk(job.id, actor_id="ops-user")

    assert _job(job.id).updated_by == "ops-user"
    assert db.session.scalars(select(DebtAccount)).one().created_by == "ops-user"


def test_full_run_processes_everything_and_records_metrics(validated_job, failing_row):
    failing_row(3)
    job = validated_job([account_row() for _ in range(5)])

    result = process_job(job.id, page_size=2)

    assert result.processed_count == 5
    assert result.successful_count == 4
    assert result.failed_count == 1
    assert result.status == ImportJobStatus.COMPLETED_WITH_ERRORS
    assert result.to_dict()["message"] == "Processing completed: 5 rows processed, 1 errors"

    stored = _job(job.id)
    assert stored.status == ImportJobStatus.COMPLETED_WITH_ERRORS
    assert stored.progress == 100
    assert stored.processed_rows == 5

    metrics = db.session.scalars(select(ImportMetrics).where(ImportMetrics.job_id == job.id)).one()
    assert metrics.total_rows == 5
    assert metrics.successful_rows == 4
    assert metrics.failed_rows == 1
    assert metrics.success_rate == 80.0


def test_full_run_with_no_valid_rows_completes(validated_job):
    job = validated_job([account_row(original_account_number="")])

    result = process_job(job.id)

    assert result.processed_count == 0
    assert result.status == ImportJobStatus.COMPLETED


def test_metrics_failure_does_not_change_job_status(validated_job, monkeypatch):
    job = validated_job([account_row()])

    def broken_metrics(**kwargs):
        raise SQLAlchemyError("metrics table locked")

    monkeypatch.setattr(performance, "ImportMetrics", broken_metrics)

    result = process_job(job.id)

    assert result.status == ImportJobStatus.COMPLETED
    assert _job(job.id).status == ImportJobStatus.COMPLETED
    assert _count(ImportMetrics) == 0


def test_metrics_can_be_disabled(app, validated_job):
    app.config["IMPORTER_METRICS_ENABLED"] = False
    job = validated_job([account_row()])

    process_job(job.id)

    assert _count(ImportMetrics) == 0


def test_full_run_refuses_partially_chunked_job(validated_job):
    job = validated_job([account_row() for _ in range(4)])
    process_chunk(job.id, chunk_size=2)

    with pytest.raises(InvalidJobState):
        process_job(job.id)


def test_soft_timeout_only_warns(app, validated_job, monkeypatch, caplog):
    app.config.update(IMPORTER_SOFT_TIMEOUT_SECONDS=1, IMPORTER_PROCESS_PAGE_SIZE=1)
    job = validated_job([account_row() for _ in range(3)])
    clock = itertools.count(start=0, step=5)
    monkeypatch.setattr(processor.time, "monotonic", lambda: next(clock))

    with caplog.at_level(logging.WARNING):
        result = process_job(job.id)

    timeout_records = [record for record in caplog.records if "passed the soft timeout" in record.getMessage()]
    assert len(timeout_records) == 1
    assert result.processed_count == 3
    assert result.status == ImportJobStatus.COMPLETED
    stored = _job(job.id)
    assert stored.status == ImportJobStatus.COMPLETED
    assert stored.processed_rows == 3
    assert _count(DebtAccount) == 3
