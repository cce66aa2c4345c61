from __future__ import annotations

from itertools import count
from typing import Iterable, Mapping

import pytest

from portfolio_app.importer.pipeline.validation import validate_import_job
from portfolio_app.models import Client, Portfolio, db
from portfolio_app.models.importer.schema import ImportJob, ImportJobStatus, StagingRow

_sequence = count(1)


def account_row(**overrides) -> dict[str, str]:
    """A mapped staging row that passes validation without warnings."""
    n = next(_sequence)
    row = {
        "original_account_number": f"ORIG-{n:05d}",
        "account_number": f"ACCT-{n:05d}",
        "current_balance": "100.00",
        "original_balance": "150.00",
        "ssn": f"{100000000 + n}",
        "first_name": "Pat",
        "last_name": f"Debtor{n}",
        "creditor_name": "First Bank",
        "account_type": "credit_card",
        "status": "active",
    }
    row.update(overrides)
    return row


@pytest.fixture
def portfolio_factory(app):
    def _factory(*, name: str = "Spring Portfolio", client_code: str | None = None) -> Portfolio:
        code = client_code or f"CLIENT{next(_sequence)}"
        client = Client(name=f"Client {code}", code=code)
        db.session.add(client)
        db.session.flush()
        portfolio = Portfolio(name=name, client_id=client.id)
        db.session.add(portfolio)
        db.session.commit()
        return portfolio

    return _factory


@pytest.fixture
def job_factory(app):
    def _factory(
        rows: Iterable[Mapping[str, str | None]] = (),
        *,
        import_type: str = "accounts",
        status: ImportJobStatus = ImportJobStatus.PENDING,
        portfolio_id: int | None = None,
        first_row_number: int = 1,
    ) -> ImportJob:
        job = ImportJob(
            import_type=import_type,
            status=status,
            portfolio_id=portfolio_id,
            file_name="accounts.csv",
            created_by="uploader",
        )
        db.session.add(job)
        db.session.flush()
        for offset, mapped in enumerate(rows):
            db.session.add(
                StagingRow(
                    job_id=job.id,
                    row_number=first_row_number + offset,
                    raw_data=dict(mapped),
                    mapped_data=dict(mapped),
                )
            )
        db.session.commit()
        return job

    return _factory


@pytest.fixture
def validated_job(job_factory):
    """Create a job from ``rows`` and run validation on it."""

    def _factory(rows: Iterable[Mapping[str, str | None]], **kwargs) -> ImportJob:
        job = job_factory(rows, **kwargs)
        validate_import_job(job.id)
        return db.session.get(ImportJob, job.id)

    return _factory
