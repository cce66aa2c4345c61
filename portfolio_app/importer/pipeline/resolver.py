"""
Turn one mapped staging row into domain records.

``EntityResolver`` resolves (or creates) the person keyed by SSN, appends the
contact satellites it can, and inserts the debt account. Callers wrap each
row in a savepoint; satellites get their own nested savepoint so a bad phone
number never costs the row its account.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Mapping

from flask import current_app
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_app.importer.exceptions import JobFetchError, RowProcessingError
from portfolio_app.models.account import AccountStatus, AccountType, DebtAccount
from portfolio_app.models.base import db
from portfolio_app.models.importer.schema import ImportJob
from portfolio_app.models.person import Person, PersonAddress, PersonEmail, PersonPhone
from portfolio_app.models.portfolio import Client, Portfolio

from .coerce import coerce_str, optional_str, parse_date, parse_decimal

ACCOUNT_TYPES = frozenset(member.value for member in AccountType)
ACCOUNT_STATUSES = frozenset(member.value for member in AccountStatus)
DEFAULT_ACCOUNT_TYPE = AccountType.OTHER.value
DEFAULT_ACCOUNT_STATUS = AccountStatus.ACTIVE.value

IMPORT_SOURCE = "import"
NO_SSN_MESSAGE = "No SSN provided - person creation skipped"

_ADDRESS_FIELDS = ("address_line1", "address_line2", "city", "state", "zip_code")
_ACCOUNT_DATE_FIELDS = ("charge_off_date", "date_opened", "last_payment_date")
_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass(frozen=True)
class ImportTarget:
    """Client and portfolio that imported accounts are attached to."""

    client_id: int
    portfolio_id: int | None


@dataclass
class RowOutcome:
    """What resolving a single row produced."""

    row_number: int
    person_id: int | None = None
    account_id: int | None = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None


def resolve_import_target(job: ImportJob, *, session: Session | None = None) -> ImportTarget:
    """
    Work out which client/portfolio the job's accounts belong to.

    A job naming a portfolio must point at an existing portfolio and client.
    Jobs without one fall back to the first client, creating the default
    import client when the store has none.
    """
    session = session or db.session
    if job.portfolio_id is not None:
        portfolio = session.get(Portfolio, job.portfolio_id)
        if portfolio is None:
            raise JobFetchError(f"Portfolio {job.portfolio_id} not found for import job {job.id}.", job_id=job.id)
        client = session.get(Client, portfolio.client_id)
        if client is None:
            raise JobFetchError(
                f"Client {portfolio.client_id} for portfolio {portfolio.id} not found.",
                job_id=job.id,
            )
        return ImportTarget(client_id=client.id, portfolio_id=portfolio.id)

    client = session.scalars(select(Client).order_by(Client.id.asc()).limit(1)).first()
    if client is None:
        client = Client(
            name=current_app.config.get("IMPORTER_DEFAULT_CLIENT_NAME", "Default Import Client"),
            code=current_app.config.get("IMPORTER_DEFAULT_CLIENT_CODE", "DEFAULT_IMPORT"),
        )
        session.add(client)
        session.flush()
        current_app.logger.info(
            "Created default import client %s",
            client.code,
            extra={"importer_job_id": job.id, "importer_client_id": client.id},
        )
    return ImportTarget(client_id=client.id, portfolio_id=None)


class EntityResolver:
    """Resolve persons, satellites and accounts for one import job."""

    def __init__(
        self,
        job_id: int,
        target: ImportTarget,
        *,
        actor_id: str | None = None,
        session: Session | None = None,
    ) -> None:
        self.job_id = job_id
        self.target = target
        self.actor_id = actor_id
        self.session: Session = session or db.session

    def resolve_row(self, row_number: int, mapped: Mapping[str, object | None]) -> RowOutcome:
        """
        Resolve one row. Rows without an SSN produce an outcome carrying an
        error and no records; store failures raise ``RowProcessingError``.
        """
        outcome = RowOutcome(row_number=row_number)
        ssn = coerce_str(mapped.get("ssn"))
        if not ssn:
            outcome.error = f"Row {row_number}: {NO_SSN_MESSAGE}"
            return outcome

        try:
            outcome.person_id = self.resolve_person(ssn, mapped)
        except SQLAlchemyError as exc:
            raise RowProcessingError(row_number, f"Failed to resolve person: {exc}") from exc

        self.attach_satellites(outcome.person_id, mapped, row_number=row_number)

        try:
            account = self.insert_account(outcome.person_id, mapped, row_number=row_number, warnings=outcome.warnings)
        except SQLAlchemyError as exc:
            raise RowProcessingError(row_number, f"Failed to create account: {exc}") from exc
        outcome.account_id = account.id
        return outcome

    # Person -----------------------------------------------------------------

    def resolve_person(self, ssn: str, mapped: Mapping[str, object | None]) -> int:
        """Return the id of the person with ``ssn``, creating them if needed."""
        values = {
            "ssn": ssn,
            "first_name": optional_str(mapped.get("first_name")),
            "middle_name": optional_str(mapped.get("middle_name")),
            "last_name": optional_str(mapped.get("last_name")),
            "dob": parse_date(mapped.get("date_of_birth")),
            "created_by": self.actor_id,
        }
        insert_factory = _UPSERT_DIALECTS.get(self.session.get_bind().dialect.name)
        if insert_factory is not None:
            stmt = insert_factory(Person).values(**values)
            # Touching ssn with its own value makes RETURNING yield the existing id.
            stmt = stmt.on_conflict_do_update(
                index_elements=[Person.ssn],
                set_={"ssn": stmt.excluded.ssn},
            ).returning(Person.id)
            return self.session.execute(stmt).scalar_one()
        return self._insert_or_select_person(values)

    def _insert_or_select_person(self, values: Mapping[str, object]) -> int:
        existing_id = self.session.scalar(select(Person.id).where(Person.ssn == values["ssn"]))
        if existing_id is not None:
            return existing_id
        try:
            with self.session.begin_nested():
                person = Person(**values)
                self.session.add(person)
                self.session.flush()
            return person.id
        except IntegrityError:
            # Another writer inserted the same SSN between our select and insert.
            return self.session.scalar(select(Person.id).where(Person.ssn == values["ssn"]))

    # Satellites -------------------------------------------------------------

    def attach_satellites(self, person_id: int, mapped: Mapping[str, object | None], *, row_number: int) -> None:
        """Best-effort address, phone and email records for ``person_id``."""
        today = date.today()
        if any(coerce_str(mapped.get(name)) for name in ("address_line1", "city", "state")):
            parts = [coerce_str(mapped.get(name)) for name in _ADDRESS_FIELDS]
            self._add_satellite(
                PersonAddress(
                    person_id=person_id,
                    full_address=", ".join(part for part in parts if part),
                    address_line1=optional_str(mapped.get("address_line1")),
                    address_line2=optional_str(mapped.get("address_line2")),
                    city=optional_str(mapped.get("city")),
                    state=optional_str(mapped.get("state")),
                    zipcode=optional_str(mapped.get("zip_code")),
                    address_type="residential",
                    is_current=True,
                    first_seen=today,
                    last_seen=today,
                    source=IMPORT_SOURCE,
                ),
                kind="address",
                row_number=row_number,
            )

        phone = coerce_str(mapped.get("phone_primary"))
        if phone:
            self._add_satellite(
                PersonPhone(
                    person_id=person_id,
                    number=phone,
                    phone_type="mobile",
                    is_current=True,
                    first_seen=today,
                    last_seen=today,
                    source=IMPORT_SOURCE,
                ),
                kind="phone",
                row_number=row_number,
            )

        email = coerce_str(mapped.get("email_primary"))
        if email:
            self._add_satellite(
                PersonEmail(
                    person_id=person_id,
                    email=email,
                    is_current=True,
                    first_seen=today,
                    last_seen=today,
                    source=IMPORT_SOURCE,
                ),
                kind="email",
                row_number=row_number,
            )

    def _add_satellite(self, record: db.Model, *, kind: str, row_number: int) -> None:
        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except SQLAlchemyError as exc:
            current_app.logger.warning(
                "Row %s: failed to store %s for person %s: %s",
                row_number,
                kind,
                record.person_id,
                exc,
                extra={"importer_job_id": self.job_id, "importer_row_number": row_number},
            )

    # Account ----------------------------------------------------------------

    def insert_account(
        self,
        person_id: int | None,
        mapped: Mapping[str, object | None],
        *,
        row_number: int,
        warnings: list[str] | None = None,
    ) -> DebtAccount:
        """Insert the debt account for a row; coercions are appended to ``warnings``."""
        notes = warnings if warnings is not None else []

        current_balance = parse_decimal(mapped.get("current_balance"))
        if current_balance is None:
            current_balance = Decimal("0")
            notes.append(f"Row {row_number}: current_balance could not be parsed; stored as 0")
        original_balance = parse_decimal(mapped.get("original_balance"))
        if original_balance is None:
            if coerce_str(mapped.get("original_balance")):
                notes.append(f"Row {row_number}: original_balance could not be parsed; stored as 0")
            original_balance = Decimal("0")

        dates: dict[str, date | None] = {}
        for name in _ACCOUNT_DATE_FIELDS:
            raw = coerce_str(mapped.get(name))
            parsed = parse_date(raw) if raw else None
            if raw and parsed is None:
                notes.append(f"Row {row_number}: {name} '{raw}' is not a valid date; left empty")
            dates[name] = parsed

        account = DebtAccount(
            person_id=person_id,
            portfolio_id=self.target.portfolio_id,
            client_id=self.target.client_id,
            import_job_id=self.job_id,
            account_number=optional_str(mapped.get("account_number")),
            original_account_number=coerce_str(mapped.get("original_account_number")),
            current_balance=current_balance,
            original_balance=original_balance,
            last_payment_amount=parse_decimal(mapped.get("last_payment_amount")),
            original_creditor=optional_str(mapped.get("creditor_name")),
            account_type=self._coerce_choice(
                mapped.get("account_type"), "account_type", ACCOUNT_TYPES, DEFAULT_ACCOUNT_TYPE, row_number, notes
            ),
            account_status=self._coerce_choice(
                mapped.get("status"), "account_status", ACCOUNT_STATUSES, DEFAULT_ACCOUNT_STATUS, row_number, notes
            ),
            data_source=IMPORT_SOURCE,
            created_by=self.actor_id,
            **dates,
        )
        self.session.add(account)
        self.session.flush()
        return account

    @staticmethod
    def _coerce_choice(
        value: object | None,
        field_name: str,
        allowed: frozenset[str],
        default: str,
        row_number: int,
        notes: list[str],
    ) -> str:
        text = coerce_str(value)
        if text.lower() in allowed:
            return text.lower()
        if text:
            notes.append(f"Row {row_number}: {field_name} '{text}' not recognised; stored as '{default}'")
        return default
