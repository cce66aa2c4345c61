"""Throughput summary persisted at the end of a full processing run."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_app.importer.metrics import record_duration, record_processed_rows
from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import ImportMetrics


@dataclass(frozen=True)
class RunStatistics:
    total_rows: int
    successful_rows: int
    failed_rows: int
    start_time: datetime
    end_time: datetime

    @property
    def processing_time_seconds(self) -> float:
        return max((self.end_time - self.start_time).total_seconds(), 0.0)

    @property
    def rows_per_second(self) -> float:
        elapsed = self.processing_time_seconds
        if elapsed <= 0:
            return 0.0
        return round(self.total_rows / elapsed, 2)

    @property
    def success_rate(self) -> float:
        if self.total_rows <= 0:
            return 0.0
        return round(self.successful_rows / self.total_rows * 100, 2)


def record_import_metrics(
    job_id: int,
    stats: RunStatistics,
    *,
    session: Session | None = None,
) -> ImportMetrics | None:
    """
    Persist one ``ImportMetrics`` row for a finished run.

    Failures are logged and swallowed; the job's terminal status never depends
    on this write.
    """
    session = session or db.session
    record_duration("run", stats.processing_time_seconds)
    record_processed_rows(succeeded=stats.successful_rows, failed=stats.failed_rows)
    if not current_app.config.get("IMPORTER_METRICS_ENABLED", True):
        return None

    try:
        with session.begin_nested():
            metrics = ImportMetrics(
                job_id=job_id,
                total_rows=stats.total_rows,
                successful_rows=stats.successful_rows,
                failed_rows=stats.failed_rows,
                processing_time_seconds=stats.processing_time_seconds,
                rows_per_second=stats.rows_per_second,
                success_rate=stats.success_rate,
                start_time=stats.start_time,
                end_time=stats.end_time,
            )
            session.add(metrics)
            session.flush()
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        current_app.logger.warning(
            "Failed to record import metrics for job %s",
            job_id,
            exc_info=True,
            extra={"importer_job_id": job_id},
        )
        return None

    current_app.logger.info(
        "Import metrics recorded for job %s",
        job_id,
        extra={
            "importer_job_id": job_id,
            "importer_rows_per_second": metrics.rows_per_second,
            "importer_success_rate": metrics.success_rate,
            "importer_processing_time_seconds": metrics.processing_time_seconds,
        },
    )
    return metrics
