from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from portfolio_app.importer.exceptions import JobFetchError
from portfolio_app.importer.pipeline.resolver import (
    NO_SSN_MESSAGE,
    EntityResolver,
    ImportTarget,
    resolve_import_target,
)
from portfolio_app.models import Client, db
from portfolio_app.models.account import DebtAccount
from portfolio_app.models.person import Person, PersonAddress, PersonEmail, PersonPhone

from .conftest import account_row


@pytest.fixture
def resolver(job_factory, portfolio_factory):
    portfolio = portfolio_factory()
    job = job_factory(portfolio_id=portfolio.id)
    target = resolve_import_target(job)
    return EntityResolver(job.id, target, actor_id="importer-test")


def _count(model) -> int:
    return db.session.scalar(select(func.count()).select_from(model))


def test_same_ssn_resolves_to_one_person(resolver):
    first = resolver.resolve_row(1, account_row(ssn="555443333", first_name="Ann"))
    second = resolver.resolve_row(2, account_row(ssn="555443333", first_name="Annie"))
    db.session.commit()

    assert first.succeeded and second.succeeded
    assert first.person_id == second.person_id
    assert _count(Person) == 1
    assert _count(DebtAccount) == 2
    # The first row's person details win.
    assert db.session.get(Person, first.person_id).first_name == "Ann"


def test_account_fields_are_coerced(resolver):
    outcome = resolver.resolve_row(
        3,
        account_row(
            current_balance="$1,250.75",
            original_balance="2000",
            charge_off_date="03/15/2022",
            date_opened="2019-07-01",
            account_type="Medical",
            status="SETTLED",
        ),
    )
    db.session.commit()

    account = db.session.get(DebtAccount, outcome.account_id)
    assert account.current_balance == Decimal("1250.75")
    assert account.original_balance == Decimal("2000")
    assert account.charge_off_date == date(2022, 3, 15)
    assert account.date_opened == date(2019, 7, 1)
    assert account.account_type == "medical"
    assert account.account_status == "settled"
    assert account.data_source == "import"
    assert account.created_by == "importer-test"
    assert account.import_job_id == resolver.job_id
    assert account.portfolio_id == resolver.target.portfolio_id
    assert outcome.warnings == []


def test_unknown_account_type_falls_back_with_warning(resolver):
    outcome = resolver.resolve_row(4, account_row(account_type="spaceship"))
    db.session.commit()

    assert outcome.succeeded
    assert outcome.error is None
    assert outcome.warnings == ["Row 4: account_type 'spaceship' not recognised; stored as 'other'"]
    assert db.session.get(DebtAccount, outcome.account_id).account_type == "other"


def test_unparseable_date_is_left_empty_with_warning(resolver):
    outcome = resolver.resolve_row(5, account_row(last_payment_date="someday"))
    db.session.commit()

    assert db.session.get(DebtAccount, outcome.account_id).last_payment_date is None
    assert outcome.warnings == ["Row 5: last_payment_date 'someday' is not a valid date; left empty"]


def test_row_without_ssn_creates_nothing(resolver):
    outcome = resolver.resolve_row(6, account_row(ssn="  "))

    assert not outcome.succeeded
    assert outcome.error == f"Row 6: {NO_SSN_MESSAGE}"
    assert outcome.person_id is None
    assert _count(Person) == 0
    assert _count(DebtAccount) == 0


def test_contact_satellites_are_attached(resolver):
    outcome = resolver.resolve_row(
        7,
        account_row(
            address_line1="12 Elm St",
            city="Springfield",
            state="IL",
            zip_code="62701",
            phone_primary="(217) 555-0100",
            email_primary="pat@example.com",
        ),
    )
    db.session.commit()

    address = db.session.scalars(select(PersonAddress).where(PersonAddress.person_id == outcome.person_id)).one()
    assert address.full_address == "12 Elm St, Springfield, IL, 62701"
    assert address.zipcode == "62701"
    assert address.is_current is True
    phone = db.session.scalars(select(PersonPhone).where(PersonPhone.person_id == outcome.person_id)).one()
    assert phone.number == "(217) 555-0100"
    email = db.session.scalars(select(PersonEmail).where(PersonEmail.person_id == outcome.person_id)).one()
    assert email.email == "pat@example.com"


def test_rows_without_contact_fields_skip_satellites(resolver):
    resolver.resolve_row(8, account_row())
    db.session.commit()

    assert _count(PersonAddress) == 0
    assert _count(PersonPhone) == 0
    assert _count(PersonEmail) == 0


def test_target_falls_back_to_first_client(job_factory):
    older = Client(name="Older", code="OLD")
    newer = Client(name="Newer", code="NEW")
    db.session.add_all([older, newer])
    db.session.commit()
    job = job_factory()

    target = resolve_import_target(job)

    assert target == ImportTarget(client_id=older.id, portfolio_id=None)


def test_target_creates_default_client_when_store_is_empty(app, job_factory):
    job = job_factory()

    target = resolve_import_target(job)
    db.session.commit()

    client = db.session.get(Client, target.client_id)
    assert client.code == app.config["IMPORTER_DEFAULT_CLIENT_CODE"]
    assert target.portfolio_id is None


def test_missing_portfolio_is_a_fetch_error(job_factory):
    job = job_factory(portfolio_id=12345)

    with pytest.raises(JobFetchError) as excinfo:
        resolve_import_target(job)

    assert "Portfolio 12345" in excinfo.value.message
