from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from models import TransactionType
from schemas import CategoryIn, ProjectIn, TransactionIn, TransactionUpdateIn


def _payload(**overrides):
    data = {
        "description": "Concrete",
        "amount": "1200.00",
        "date": "2024-01-15",
        "type": "EXPENSE",
        "category_id": 1,
    }
    data.update(overrides)
    return data


def test_transaction_in_parses_payload():
    data = TransactionIn(**_payload(installments=3, project_id=""))
    assert data.amount == Decimal("1200.00")
    assert data.date == date(2024, 1, 15)
    assert data.type == TransactionType.expense
    assert data.project_id is None
    assert data.installments == 3


@pytest.mark.parametrize("installments", [0, 121, 2.5])
def test_installments_out_of_range_rejected(installments):
    with pytest.raises(ValidationError):
        TransactionIn(**_payload(installments=installments))


@pytest.mark.parametrize("amount", ["0", "-5", "10.001"])
def test_amount_must_be_positive_cents(amount):
    with pytest.raises(ValidationError):
        TransactionIn(**_payload(amount=amount))


@pytest.mark.parametrize("bad_date", ["15/01/2024", "2024-1-5", "yesterday"])
def test_date_must_be_iso(bad_date):
    with pytest.raises(ValidationError):
        TransactionIn(**_payload(date=bad_date))


def test_blank_description_rejected():
    with pytest.raises(ValidationError):
        TransactionIn(**_payload(description="   "))


def test_update_does_not_accept_installments():
    with pytest.raises(ValidationError):
        TransactionUpdateIn(**_payload(installments=2))
    assert TransactionUpdateIn(**_payload()).amount == Decimal("1200.00")


def test_category_requires_name_and_known_type():
    with pytest.raises(ValidationError):
        CategoryIn(name="", type="EXPENSE")
    with pytest.raises(ValidationError):
        CategoryIn(name="Labor", type="TRANSFER")
    assert CategoryIn(name=" Labor ", type="EXPENSE").name == "Labor"


def test_project_dates_optional_and_ordered():
    project = ProjectIn(name="Tower A", description="", start_date="", end_date=None)
    assert project.description is None
    assert project.start_date is None

    with pytest.raises(ValidationError):
        ProjectIn(name="Tower A", start_date="2024-05-01", end_date="2024-04-01")
