# portfolio_app/models/portfolio.py
"""
Client and portfolio models. Their CRUD lives outside the importer; the
import pipeline only reads them to resolve where accounts land.
"""

from sqlalchemy import Index

from .base import BaseModel, db


class Client(BaseModel):
    """A creditor or debt buyer whose accounts are administered."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(50), nullable=False, unique=True)
    client_type = db.Column(db.String(50), nullable=False, default="debt_buyer")
    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    portfolios = db.relationship("Portfolio", back_populates="client")

    def __repr__(self):
        return f"<Client {self.code}>"


class Portfolio(BaseModel):
    """A purchased or placed batch of accounts owned by a client."""

    __tablename__ = "portfolios"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")

    client = db.relationship("Client", back_populates="portfolios")
    accounts = db.relationship("DebtAccount", back_populates="portfolio")

    __table_args__ = (Index("idx_portfolios_client", "client_id"),)

    def __repr__(self):
        return f"<Portfolio {self.name}>"
