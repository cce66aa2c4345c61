"""
Shared SQLAlchemy handle and abstract base model.
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import Mapped, mapped_column

db = SQLAlchemy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(db.Model):
    """Abstract base adding audit timestamps to every table."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
