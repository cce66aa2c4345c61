"""Read helpers over ``import_staging_rows``."""

from __future__ import annotations

from typing import Iterator, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import StagingRow

DEFAULT_PAGE_SIZE = 1000

# Keeps ``IN (...)`` lists under common bind-parameter limits.
_ROW_NUMBER_BATCH = 500


def iter_staging_pages(
    job_id: int,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    session: Session | None = None,
) -> Iterator[list[StagingRow]]:
    """
    Yield a job's staging rows in row-number order, one page at a time.

    Pages are keyed on the last row number seen rather than OFFSET so each
    query stays cheap however deep into the job it reads.
    """
    session = session or db.session
    last_row_number: int | None = None
    while True:
        stmt = select(StagingRow).where(StagingRow.job_id == job_id)
        if last_row_number is not None:
            stmt = stmt.where(StagingRow.row_number > last_row_number)
        stmt = stmt.order_by(StagingRow.row_number.asc()).limit(page_size)
        page = list(session.scalars(stmt))
        if not page:
            return
        yield page
        if len(page) < page_size:
            return
        last_row_number = page[-1].row_number


def fetch_rows_by_number(
    job_id: int,
    row_numbers: Sequence[int],
    *,
    session: Session | None = None,
) -> list[StagingRow]:
    """Fetch the staging rows for exactly ``row_numbers``, ordered by row number."""
    session = session or db.session
    rows: list[StagingRow] = []
    numbers = list(row_numbers)
    for offset in range(0, len(numbers), _ROW_NUMBER_BATCH):
        batch = numbers[offset : offset + _ROW_NUMBER_BATCH]
        stmt = select(StagingRow).where(
            StagingRow.job_id == job_id,
            StagingRow.row_number.in_(batch),
        )
        rows.extend(session.scalars(stmt))
    rows.sort(key=lambda row: row.row_number)
    return rows


def count_staging_rows(job_id: int, *, session: Session | None = None) -> int:
    session = session or db.session
    return session.query(StagingRow).filter(StagingRow.job_id == job_id).count()
