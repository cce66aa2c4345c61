# portfolio_app/models/person.py
"""
Natural-person records and their contact satellites.

Persons are deduplicated by SSN; the unique constraint on ``persons.ssn`` is
what the importer's upsert conflicts against.
"""

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class Person(BaseModel):
    """A natural person, keyed by national identifier when one is known."""

    __tablename__ = "persons"

    id = db.Column(db.Integer, primary_key=True)
    ssn = db.Column(db.String(20), nullable=True)
    first_name = db.Column(db.String(100), nullable=True)
    middle_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True, index=True)
    dob = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.String(100), nullable=True)

    addresses = db.relationship("PersonAddress", back_populates="person", cascade="all, delete-orphan")
    phones = db.relationship("PersonPhone", back_populates="person", cascade="all, delete-orphan")
    emails = db.relationship("PersonEmail", back_populates="person", cascade="all, delete-orphan")
    accounts = db.relationship("DebtAccount", back_populates="person")

    __table_args__ = (UniqueConstraint("ssn", name="uq_persons_ssn"),)

    def __repr__(self):
        return f"<Person {self.id}>"


class PersonAddress(BaseModel):
    """Postal address observed for a person"""

    __tablename__ = "person_addresses"

    id = db.Column(db.Integer, primary_key=True)
    person_id = db.Column(db.Integer, db.ForeignKey("persons.id"), nullable=False)
    full_address = db.Column(db.String(500), nullable=True)
    address_line1 = db.Column(db.String(255), nullable=True)
    address_line2 = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zipcode = db.Column(db.String(20), nullable=True)
    address_type = db.Column(db.String(30), nullable=False, default="residential")
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    first_seen = db.Column(db.Date, nullable=True)
    last_seen = db.Column(db.Date, nullable=True)
    source = db.Column(db.String(50), nullable=True)

    person = db.relationship("Person", back_populates="addresses")

    __table_args__ = (Index("idx_person_addresses_person", "person_id"),)


class PersonPhone(BaseModel):
    """Phone number observed for a person"""

    __tablename__ = "person_phones"

    id = db.Column(db.Integer, primary_key=True)
    person_id = db.Column(db.Integer, db.ForeignKey("persons.id"), nullable=False)
    number = db.Column(db.String(30), nullable=False)
    phone_type = db.Column(db.String(20), nullable=False, default="mobile")
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    first_seen = db.Column(db.Date, nullable=True)
    last_seen = db.Column(db.Date, nullable=True)
    source = db.Column(db.String(50), nullable=True)

    person = db.relationship("Person", back_populates="phones")

    __table_args__ = (Index("idx_person_phones_person", "person_id"),)


class PersonEmail(BaseModel):
    """Email address observed for a person"""

    __tablename__ = "person_emails"

    id = db.Column(db.Integer, primary_key=True)
    person_id = db.Column(db.Integer, db.ForeignKey("persons.id"), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    first_seen = db.Column(db.Date, nullable=True)
    last_seen = db.Column(db.Date, nullable=True)
    source = db.Column(db.String(50), nullable=True)

    person = db.relationship("Person", back_populates="emails")

    __table_args__ = (Index("idx_person_emails_person", "person_id"),)
