# portfolio_app/models/__init__.py
"""
Database models package
"""

from .account import AccountStatus, AccountType, DebtAccount
from .base import BaseModel, db
from .importer import (
    ImportJob,
    ImportJobStatus,
    ImportMetrics,
    ImportType,
    StagingRow,
)
from .person import Person, PersonAddress, PersonEmail, PersonPhone
from .portfolio import Client, Portfolio

__all__ = [
    "db",
    "BaseModel",
    "Client",
    "Portfolio",
    # Person models
    "Person",
    "PersonAddress",
    "PersonPhone",
    "PersonEmail",
    # Account models
    "DebtAccount",
    "AccountType",
    "AccountStatus",
    # Importer models
    "ImportJob",
    "ImportJobStatus",
    "ImportMetrics",
    "ImportType",
    "StagingRow",
]
