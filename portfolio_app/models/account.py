# portfolio_app/models/account.py
"""
Debt account model and its enumerations.
"""

from enum import Enum as PyEnum

from sqlalchemy import Index

from .base import BaseModel, db


class AccountType(PyEnum):
    """Kind of debt an account represents"""

    CREDIT_CARD = "credit_card"
    MEDICAL = "medical"
    PERSONAL_LOAN = "personal_loan"
    AUTO_LOAN = "auto_loan"
    MORTGAGE = "mortgage"
    UTILITY = "utility"
    STUDENT_LOAN = "student_loan"
    BUSINESS_LOAN = "business_loan"
    OTHER = "other"


class AccountStatus(PyEnum):
    """Collection status of an account"""

    ACTIVE = "active"
    INACTIVE = "inactive"
    RESOLVED = "resolved"
    RETURNED = "returned"
    BANKRUPTCY = "bankruptcy"
    DECEASED = "deceased"
    SETTLED = "settled"
    PAID_IN_FULL = "paid_in_full"


class DebtAccount(BaseModel):
    """
    A single debt account placed in a portfolio.

    ``account_type`` and ``account_status`` hold the enum values as plain
    strings so imported data stays queryable without enum casts.
    """

    __tablename__ = "debt_accounts"

    id = db.Column(db.Integer, primary_key=True)
    person_id = db.Column(db.Integer, db.ForeignKey("persons.id"), nullable=True)
    portfolio_id = db.Column(db.Integer, db.ForeignKey("portfolios.id"), nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    import_job_id = db.Column(db.Integer, db.ForeignKey("import_jobs.id", ondelete="SET NULL"), nullable=True)

    account_number = db.Column(db.String(100), nullable=True)
    original_account_number = db.Column(db.String(100), nullable=False)
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    original_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    last_payment_amount = db.Column(db.Numeric(14, 2), nullable=True)
    charge_off_date = db.Column(db.Date, nullable=True)
    date_opened = db.Column(db.Date, nullable=True)
    last_payment_date = db.Column(db.Date, nullable=True)
    original_creditor = db.Column(db.String(200), nullable=True)
    account_type = db.Column(db.String(30), nullable=False, default=AccountType.OTHER.value)
    account_status = db.Column(db.String(30), nullable=False, default=AccountStatus.ACTIVE.value)
    data_source = db.Column(db.String(50), nullable=False, default="import")
    created_by = db.Column(db.String(100), nullable=True)

    person = db.relationship("Person", back_populates="accounts")
    portfolio = db.relationship("Portfolio", back_populates="accounts")
    client = db.relationship("Client")

    __table_args__ = (
        Index("idx_debt_accounts_original_number", "original_account_number"),
        Index("idx_debt_accounts_portfolio", "portfolio_id"),
        Index("idx_debt_accounts_import_job", "import_job_id"),
    )

    def __repr__(self):
        return f"<DebtAccount {self.original_account_number}>"
