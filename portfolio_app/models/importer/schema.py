"""
SQLAlchemy models for the bulk account importer.

An ``ImportJob`` is created by the upload step in ``pending`` together with
its ``StagingRow`` records. Validation and processing only ever read staging
rows and mutate the job; ``ImportMetrics`` captures one summary per full run.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportJobStatus(str, enum.Enum):
    """Lifecycle states for an import job."""

    PENDING = "pending"
    VALIDATING = "validating"
    VALIDATED = "validated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ImportJobStatus.COMPLETED,
        ImportJobStatus.COMPLETED_WITH_ERRORS,
        ImportJobStatus.FAILED,
    }
)


class ImportType(str, enum.Enum):
    """Import types understood by the pipeline."""

    ACCOUNTS = "accounts"


class ImportJob(BaseModel):
    """Status and progress record for a single import attempt."""

    __tablename__ = "import_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    import_type: Mapped[str] = mapped_column(db.String(50), nullable=False, default=ImportType.ACCOUNTS.value)
    file_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    status: Mapped[ImportJobStatus] = mapped_column(
        Enum(ImportJobStatus, name="import_job_status_enum"),
        nullable=False,
        default=ImportJobStatus.PENDING,
        index=True,
    )
    progress: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    successful_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    validation_results: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    processing_errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    processing_warnings: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    portfolio_id: Mapped[int | None] = mapped_column(ForeignKey("portfolios.id"), nullable=True)
    next_start_index: Mapped[int] = mapped_column(
        db.Integer,
        nullable=False,
        default=0,
        comment="Index into the valid row numbers where the next chunk starts.",
    )
    last_row_number: Mapped[int | None] = mapped_column(
        db.Integer,
        nullable=True,
        comment="Row number of the last staging row attempted by a chunk.",
    )
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    validation_completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    processing_completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    created_by: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(db.String(100), nullable=True)

    portfolio = relationship("Portfolio")
    staging_rows = relationship(
        "StagingRow",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StagingRow.row_number",
    )
    metrics = relationship(
        "ImportMetrics",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_import_jobs_progress_range"),
        Index("idx_import_jobs_type_status", "import_type", "status"),
    )

    def __repr__(self):
        return f"<ImportJob {self.id} {self.status}>"


class StagingRow(BaseModel):
    """
    One uploaded row, already parsed and field-mapped.

    ``mapped_data`` maps canonical field names (``original_account_number``,
    ``current_balance``, ``ssn`` ...) to string values.
    """

    __tablename__ = "import_staging_rows"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_number: Mapped[int] = mapped_column(db.Integer, nullable=False)
    raw_data: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    mapped_data: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)

    job = relationship("ImportJob", back_populates="staging_rows")

    __table_args__ = (
        UniqueConstraint("job_id", "row_number", name="uq_import_staging_rows_job_row"),
        Index("idx_import_staging_rows_job_row", "job_id", "row_number"),
    )


class ImportMetrics(BaseModel):
    """Throughput summary recorded at the end of a full processing run."""

    __tablename__ = "import_metrics"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_id: Mapped[int] = mapped_column(
        ForeignKey("import_jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    successful_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processing_time_seconds: Mapped[float] = mapped_column(db.Float, nullable=False, default=0.0)
    rows_per_second: Mapped[float] = mapped_column(db.Float, nullable=False, default=0.0)
    success_rate: Mapped[float] = mapped_column(db.Float, nullable=False, default=0.0)
    start_time: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    job = relationship("ImportJob", back_populates="metrics")
