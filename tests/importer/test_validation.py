from __future__ import annotations

import pytest

from portfolio_app.importer.exceptions import InvalidJobState, JobFetchError, UnsupportedImportType
from portfolio_app.importer.pipeline import validation
from portfolio_app.importer.pipeline.validation import (
    ValidationReport,
    build_report,
    validate_import_job,
    valid_row_numbers_from_report,
)
from portfolio_app.importer.pipeline.rules import account_rules
from portfolio_app.models import db
from portfolio_app.models.importer.schema import ImportJob, ImportJobStatus

from .conftest import account_row


def test_validation_report_counts_and_prefixes(job_factory):
    job = job_factory(
        [
            account_row(),
            account_row(current_balance=""),
            account_row(ssn="123-45-678"),
        ]
    )

    report = validate_import_job(job.id)

    assert report.total_rows == 3
    assert report.valid_rows == 2
    assert report.invalid_rows == 1
    assert report.errors == ["Row 2: Current balance is required"]
    assert report.warnings == ["Row 3: SSN format may be invalid"]

    stored = db.session.get(ImportJob, job.id)
    assert stored.status == ImportJobStatus.VALIDATED
    assert stored.progress == 100
    assert stored.total_rows == 3
    assert stored.validation_completed_at is not None

    details = stored.validation_results["rowDetails"]
    assert [detail["rowNumber"] for detail in details] == [1, 2, 3]
    assert [detail["isValid"] for detail in details] == [True, False, True]
    assert details[1]["errors"] == ["Current balance is required"]
    assert details[2]["warnings"] == ["SSN format may be invalid"]


def test_row_details_follow_row_number_order(job_factory):
    job = job_factory([account_row(), account_row()], first_row_number=7)

    validate_import_job(job.id)

    stored = db.session.get(ImportJob, job.id)
    assert valid_row_numbers_from_report(stored.validation_results) == [7, 8]


def test_job_without_staging_rows_validates_empty(job_factory):
    job = job_factory([])

    report = validate_import_job(job.id)

    assert report.to_dict() == {
        "totalRows": 0,
        "validRows": 0,
        "invalidRows": 0,
        "errors": [],
        "warnings": [],
        "rowDetails": [],
    }
    assert db.session.get(ImportJob, job.id).status == ImportJobStatus.VALIDATED


def test_revalidation_produces_identical_report(job_factory):
    job = job_factory([account_row(), account_row(original_account_number=""), account_row(account_number="")])

    validate_import_job(job.id)
    first = dict(db.session.get(ImportJob, job.id).validation_results)
    validate_import_job(job.id)
    second = db.session.get(ImportJob, job.id).validation_results

    assert first == second


def test_actor_is_recorded_on_the_job(job_factory):
    job = job_factory([account_row()])

    validate_import_job(job.id, actor_id="analyst-7")

    assert db.session.get(ImportJob, job.id).updated_by == "analyst-7"


def test_unsupported_import_type_leaves_job_untouched(job_factory):
    job = job_factory([account_row()], import_type="contacts")

    with pytest.raises(UnsupportedImportType) as excinfo:
        validate_import_job(job.id)

    assert excinfo.value.status_code == 400
    stored = db.session.get(ImportJob, job.id)
    assert stored.status == ImportJobStatus.PENDING
    assert stored.validation_results is None
    assert stored.progress == 0


def test_unexpected_error_during_rules_fails_the_job(job_factory, monkeypatch):
    job = job_factory([account_row()])

    def explode(rows, rules):
        raise RuntimeError("rule engine crashed")

    monkeypatch.setattr(validation, "build_report", explode)

    with pytest.raises(RuntimeError):
        validate_import_job(job.id, actor_id="ops-user")

    stored = db.session.get(ImportJob, job.id)
    assert stored.status == ImportJobStatus.FAILED
    assert stored.processing_errors == ["Validation failed: rule engine crashed"]
    assert stored.validation_results is None
    assert stored.updated_by == "ops-user"


def test_missing_job_raises_fetch_error(app):
    with pytest.raises(JobFetchError) as excinfo:
        validate_import_job(9999)

    assert excinfo.value.status_code == 404


@pytest.mark.parametrize(
    "status",
    [ImportJobStatus.PROCESSING, ImportJobStatus.COMPLETED, ImportJobStatus.FAILED],
)
def test_jobs_past_validation_are_rejected(job_factory, status):
    job = job_factory([account_row()], status=status)

    with pytest.raises(InvalidJobState):
        validate_import_job(job.id)

    assert db.session.get(ImportJob, job.id).status == status


def test_small_page_size_reads_every_row(job_factory):
    job = job_factory([account_row() for _ in range(7)])

    report = validate_import_job(job.id, page_size=3)

    assert report.total_rows == 7
    assert report.valid_row_numbers() == [1, 2, 3, 4, 5, 6, 7]


def test_build_report_without_store():
    report = build_report(
        [(4, account_row()), (5, account_row(current_balance="n/a"))],
        account_rules(),
    )

    assert isinstance(report, ValidationReport)
    assert report.valid_row_numbers() == [4]
    assert report.errors == ["Row 5: Current balance should be a number"]


@pytest.mark.parametrize(
    "stored",
    [None, "not a report", {"rowDetails": "oops"}, {"rowDetails": [{"isValid": True}]}],
)
def test_unparseable_reports_yield_none(stored):
    assert valid_row_numbers_from_report(stored) is None
