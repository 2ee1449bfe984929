from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from auth import Identity
from database import Base, create_db_engine
from models import Company, Transaction, TransactionType, User
from periods import all_periods_range, month_range
from schemas import CategoryIn, ProjectIn, TransactionIn, TransactionUpdateIn
from services import (
    EMPTY_NO_DATA,
    EMPTY_NO_DATA_IN_PERIOD,
    CategoryService,
    DashboardService,
    NotFoundError,
    ProjectService,
    ReferenceConflictError,
    TenantService,
    TransactionService,
)


def make_session():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_company(session, name: str = "Acme Construction") -> int:
    company = Company(name=name)
    session.add(company)
    session.commit()
    return company.id


def seed(session, company_id: int):
    categories = CategoryService(session, company_id)
    materials = categories.create(CategoryIn(name="Materials", type=TransactionType.expense))
    contract = categories.create(CategoryIn(name="Contract", type=TransactionType.income))
    project = ProjectService(session, company_id).create(ProjectIn(name="Tower A"))
    return materials, contract, project


def expense(category_id: int, **overrides) -> TransactionIn:
    data = {
        "description": "Concrete",
        "amount": Decimal("1200.00"),
        "date": date(2024, 1, 15),
        "type": TransactionType.expense,
        "category_id": category_id,
    }
    data.update(overrides)
    return TransactionIn(**data)


def count_transactions(session) -> int:
    return session.execute(select(func.count(Transaction.id))).scalar_one()


def test_create_installments_persists_group():
    session = make_session()
    company_id = make_company(session)
    materials, _, project = seed(session, company_id)

    rows = TransactionService(session, company_id).create(
        expense(materials.id, installments=3, project_id=project.id)
    )

    assert [r.date for r in rows] == [
        date(2024, 1, 15),
        date(2024, 2, 15),
        date(2024, 3, 15),
    ]
    assert [r.amount_cents for r in rows] == [40_000, 40_000, 40_000]
    assert [r.description for r in rows] == [
        "Concrete (1/3)",
        "Concrete (2/3)",
        "Concrete (3/3)",
    ]
    assert len({r.installment_group_id for r in rows}) == 1
    assert rows[0].installment_group_id is not None
    assert all(r.project.name == "Tower A" for r in rows)
    assert all(r.category.name == "Materials" for r in rows)
    assert count_transactions(session) == 3


def test_create_single_transaction_has_no_group():
    session = make_session()
    company_id = make_company(session)
    materials, _, _ = seed(session, company_id)

    rows = TransactionService(session, company_id).create(expense(materials.id))

    assert len(rows) == 1
    assert rows[0].description == "Concrete"
    assert rows[0].amount_cents == 120_000
    assert rows[0].installment_group_id is None
    assert rows[0].project_id is None


def test_category_type_mismatch_is_rejected():
    session = make_session()
    company_id = make_company(session)
    _, contract, _ = seed(session, company_id)

    with pytest.raises(ValueError, match="type mismatch"):
        TransactionService(session, company_id).create(
            expense(contract.id, installments=4)
        )
    assert count_transactions(session) == 0


def test_references_must_belong_to_tenant():
    session = make_session()
    company_id = make_company(session)
    other_id = make_company(session, "Other Builders")
    materials, _, project = seed(session, company_id)

    service = TransactionService(session, other_id)
    with pytest.raises(ValueError, match="Category not found"):
        service.create(expense(materials.id))

    other_materials = CategoryService(session, other_id).create(
        CategoryIn(name="Materials", type=TransactionType.expense)
    )
    with pytest.raises(ValueError, match="Project not found"):
        service.create(expense(other_materials.id, project_id=project.id))


def test_failed_installment_batch_leaves_nothing(monkeypatch):
    session = make_session()
    company_id = make_company(session)
    materials, _, _ = seed(session, company_id)

    def failing_commit():
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(SQLAlchemyError):
        TransactionService(session, company_id).create(
            expense(materials.id, installments=6)
        )
    monkeypatch.undo()

    assert count_transactions(session) == 0


def test_update_edits_single_row_without_resplitting():
    session = make_session()
    company_id = make_company(session)
    materials, _, project = seed(session, company_id)
    service = TransactionService(session, company_id)
    rows = service.create(expense(materials.id, installments=3))

    updated = service.update(
        rows[1].id,
        TransactionUpdateIn(
            description="Concrete, second batch",
            amount=Decimal("450.50"),
            date=date(2024, 2, 20),
            type=TransactionType.expense,
            project_id=project.id,
            category_id=materials.id,
        ),
    )

    assert updated.amount_cents == 45_050
    assert updated.date == date(2024, 2, 20)
    assert updated.project.name == "Tower A"
    assert updated.installment_group_id == rows[0].installment_group_id
    assert updated.installment_number == 2
    assert service.get(rows[0].id).amount_cents == 40_000
    assert count_transactions(session) == 3


def test_delete_removes_only_one_installment():
    session = make_session()
    company_id = make_company(session)
    materials, _, _ = seed(session, company_id)
    service = TransactionService(session, company_id)
    rows = service.create(expense(materials.id, installments=3))

    service.delete(rows[0].id)

    assert count_transactions(session) == 2
    with pytest.raises(NotFoundError):
        service.get(rows[0].id)


def test_other_tenant_cannot_touch_transaction():
    session = make_session()
    company_id = make_company(session)
    other_id = make_company(session, "Other Builders")
    materials, _, _ = seed(session, company_id)
    txn = TransactionService(session, company_id).create(expense(materials.id))[0]

    with pytest.raises(NotFoundError):
        TransactionService(session, other_id).delete(txn.id)
    assert count_transactions(session) == 1


def test_deleting_referenced_category_or_project_conflicts():
    session = make_session()
    company_id = make_company(session)
    materials, contract, project = seed(session, company_id)
    TransactionService(session, company_id).create(
        expense(materials.id, project_id=project.id)
    )

    with pytest.raises(ReferenceConflictError):
        CategoryService(session, company_id).delete(materials.id)
    with pytest.raises(ReferenceConflictError):
        ProjectService(session, company_id).delete(project.id)

    CategoryService(session, company_id).delete(contract.id)
    names = [c.name for c in CategoryService(session, company_id).list_all()]
    assert names == ["Materials"]


def test_category_names_unique_per_type():
    session = make_session()
    company_id = make_company(session)
    categories = CategoryService(session, company_id)
    categories.create(CategoryIn(name="Services", type=TransactionType.expense))
    categories.create(CategoryIn(name="Services", type=TransactionType.income))

    with pytest.raises(ValueError, match="already exists"):
        categories.create(CategoryIn(name="services", type=TransactionType.expense))
    assert len(categories.list_all(TransactionType.income)) == 1


def test_category_type_locked_while_in_use():
    session = make_session()
    company_id = make_company(session)
    materials, _, _ = seed(session, company_id)
    TransactionService(session, company_id).create(expense(materials.id))

    with pytest.raises(ReferenceConflictError):
        CategoryService(session, company_id).update(
            materials.id, CategoryIn(name="Materials", type=TransactionType.income)
        )
    renamed = CategoryService(session, company_id).update(
        materials.id, CategoryIn(name="Building materials", type=TransactionType.expense)
    )
    assert renamed.name == "Building materials"


def test_project_update_and_listing():
    session = make_session()
    company_id = make_company(session)
    projects = ProjectService(session, company_id)
    first = projects.create(ProjectIn(name="Tower A"))
    projects.create(ProjectIn(name="Bridge"))

    updated = projects.update(
        first.id,
        ProjectIn(name="Tower A1", description="North block", start_date="2024-01-01"),
    )
    assert updated.name == "Tower A1"
    assert updated.description == "North block"
    assert updated.start_date == date(2024, 1, 1)
    assert len(projects.list_all()) == 2

    projects.delete(first.id)
    with pytest.raises(NotFoundError):
        projects.get(first.id)


def test_tenant_is_provisioned_once():
    session = make_session()
    identity = Identity(subject="auth|42", email="ana@example.com")

    first = TenantService(session).resolve_user(identity)
    second = TenantService(session).resolve_user(identity)

    assert first.company_id == second.company_id
    assert first.name == "ana"
    assert first.company.name == "ana's company"
    assert session.execute(select(func.count(User.id))).scalar_one() == 1


def test_tenant_uses_provided_company_name():
    session = make_session()
    identity = Identity(subject="auth|7", name="Bruno", company_name="Bruno Obras")
    company_id = TenantService(session).resolve_company_id(identity)
    assert session.get(Company, company_id).name == "Bruno Obras"


def test_transaction_listing_paginates_and_totals_period():
    session = make_session()
    company_id = make_company(session)
    materials, contract, _ = seed(session, company_id)
    service = TransactionService(session, company_id)
    for day in range(1, 12):
        service.create(
            expense(materials.id, amount=Decimal("10.00"), date=date(2024, 3, day))
        )
    service.create(
        TransactionIn(
            description="Down payment",
            amount=Decimal("500.00"),
            date=date(2024, 3, 20),
            type=TransactionType.income,
            category_id=contract.id,
        )
    )
    service.create(expense(materials.id, date=date(2024, 4, 2)))

    dashboard = DashboardService(session, company_id)
    listing = dashboard.transaction_listing(month_range(2024, 2), page=2, per_page=10)

    assert listing.page.total_items == 12
    assert listing.page.total_pages == 2
    assert [t.date for t in listing.page.items] == [date(2024, 3, 2), date(2024, 3, 1)]
    assert (listing.totals.income, listing.totals.expense, listing.totals.balance) == (
        500.0,
        110.0,
        390.0,
    )
    assert listing.empty_state is None

    incomes = dashboard.transaction_listing(
        month_range(2024, 2), txn_type=TransactionType.income
    )
    assert incomes.page.total_items == 1

    empty = dashboard.transaction_listing(month_range(2024, 7))
    assert empty.empty_state == EMPTY_NO_DATA_IN_PERIOD


def test_dashboard_combines_period_views_and_full_forecast():
    session = make_session()
    company_id = make_company(session)
    materials, contract, project = seed(session, company_id)
    service = TransactionService(session, company_id)
    service.create(expense(materials.id, installments=3, project_id=project.id))
    service.create(
        TransactionIn(
            description="Measurement 1",
            amount=Decimal("2000.00"),
            date=date(2024, 1, 30),
            type=TransactionType.income,
            category_id=contract.id,
        )
    )

    dashboard = DashboardService(session, company_id).build(
        month_range(2024, 0), today=date(2024, 1, 31)
    )

    assert dashboard.totals.total_income == 2000.0
    assert dashboard.totals.total_expense == 400.0
    assert [p.project_name for p in dashboard.profit_by_project] == ["Tower A"]
    assert [m.month for m in dashboard.monthly_data] == ["2024-01"]
    assert [c.name for c in dashboard.expense_by_category] == ["Materials"]
    assert [(f.month, f.expense) for f in dashboard.forecast] == [
        ("2024-02", 400.0),
        ("2024-03", 400.0),
    ]
    assert dashboard.empty_state is None

    with_unassigned = DashboardService(session, company_id).build(
        month_range(2024, 0), today=date(2024, 1, 31), include_unassigned=True
    )
    assert [p.project_id for p in with_unassigned.profit_by_project] == [
        None,
        project.id,
    ]


def test_dashboard_empty_states():
    session = make_session()
    company_id = make_company(session)
    materials, _, _ = seed(session, company_id)
    dashboard = DashboardService(session, company_id)

    assert dashboard.build(all_periods_range(), today=date(2024, 1, 1)).empty_state == (
        EMPTY_NO_DATA
    )

    TransactionService(session, company_id).create(expense(materials.id))
    june = dashboard.build(month_range(2024, 5), today=date(2024, 12, 31))
    assert june.empty_state == EMPTY_NO_DATA_IN_PERIOD
    assert june.forecast == []
