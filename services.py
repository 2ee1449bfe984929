from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from auth import Identity
from config import get_settings
from installments import local_today, split_installments, to_cents
from metrics import (
    CategoryDistribution,
    ForecastData,
    MonthlyData,
    PeriodTotals,
    ProjectProfit,
    Totals,
    calculate_expense_by_category,
    calculate_forecast,
    calculate_monthly_data,
    calculate_period_totals,
    calculate_profit_by_project,
    calculate_totals,
    filter_by_period,
    filter_by_type,
)
from models import Category, Company, Project, Transaction, TransactionType, User
from periods import PeriodRange
from schemas import CategoryIn, ProjectIn, TransactionIn, TransactionUpdateIn

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ReferenceConflictError(ValueError):
    pass


EMPTY_NO_DATA = "no_data"
EMPTY_NO_DATA_IN_PERIOD = "no_data_in_period"


def empty_state(has_any: bool, visible_count: int) -> Optional[str]:
    if not has_any:
        return EMPTY_NO_DATA
    if visible_count == 0:
        return EMPTY_NO_DATA_IN_PERIOD
    return None


@dataclass
class Page:
    items: list
    page: int
    per_page: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.per_page) if self.per_page else 0


def paginate(items: list, page: int, per_page: Optional[int] = None) -> Page:
    per_page = per_page or get_settings().page_size
    page = max(page, 1)
    start = (page - 1) * per_page
    return Page(
        items=items[start : start + per_page],
        page=page,
        per_page=per_page,
        total_items=len(items),
    )


class TenantService:
    """Maps an authenticated identity onto its company.

    A user seen for the first time gets a fresh company and user record.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def resolve_user(self, identity: Identity) -> User:
        user = self.session.get(User, identity.subject)
        if user:
            return user

        logger.info(
            f"tenant_provision: user record missing for {identity.subject}, provisioning"
        )
        name = identity.display_name
        company = Company(name=identity.company_name or f"{name}'s company")
        self.session.add(company)
        self.session.flush()
        user = User(
            id=identity.subject,
            email=identity.email,
            name=name,
            company_id=company.id,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request provisioned the same identity first.
            self.session.rollback()
            user = self.session.get(User, identity.subject)
            if not user:
                raise
            return user
        self.session.refresh(user)
        logger.info(
            f"tenant_provision: created company_id={company.id} for user {user.id}"
        )
        return user

    def resolve_company_id(self, identity: Identity) -> int:
        return self.resolve_user(identity).company_id


class ProjectService:
    def __init__(self, session: Session, company_id: int) -> None:
        self.session = session
        self.company_id = company_id

    def list_all(self) -> list[Project]:
        stmt = (
            select(Project)
            .where(Project.company_id == self.company_id)
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, project_id: int) -> Project:
        project = self.session.get(Project, project_id)
        if not project or project.company_id != self.company_id:
            raise NotFoundError("Project not found")
        return project

    def create(self, data: ProjectIn) -> Project:
        project = Project(
            company_id=self.company_id,
            name=data.name,
            description=data.description,
            start_date=data.start_date,
            end_date=data.end_date,
        )
        self.session.add(project)
        self.session.commit()
        self.session.refresh(project)
        return project

    def update(self, project_id: int, data: ProjectIn) -> Project:
        project = self.get(project_id)
        project.name = data.name
        project.description = data.description
        project.start_date = data.start_date
        project.end_date = data.end_date
        self.session.commit()
        self.session.refresh(project)
        return project

    def delete(self, project_id: int) -> None:
        project = self.get(project_id)
        in_use = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.company_id == self.company_id,
                Transaction.project_id == project.id,
            )
        ).scalar_one()
        if in_use:
            logger.info(
                f"project_delete_conflict: project_id={project.id} transactions={in_use}"
            )
            raise ReferenceConflictError(
                "Project is still used by transactions and cannot be deleted"
            )
        _delete_or_conflict(self.session, project, "Project")


class CategoryService:
    def __init__(self, session: Session, company_id: int) -> None:
        self.session = session
        self.company_id = company_id

    def list_all(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.company_id == self.company_id)
            .order_by(Category.name, Category.id)
        )
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.company_id != self.company_id:
            raise NotFoundError("Category not found")
        return category

    def _ensure_unique(self, data: CategoryIn, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(
            Category.company_id == self.company_id,
            Category.type == data.type,
            func.lower(Category.name) == data.name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique(data)
        category = Category(company_id=self.company_id, name=data.name, type=data.type)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        self._ensure_unique(data, exclude_id=category.id)
        if data.type != category.type:
            in_use = self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.company_id == self.company_id,
                    Transaction.category_id == category.id,
                )
            ).scalar_one()
            if in_use:
                raise ReferenceConflictError(
                    "Category type cannot change while transactions use it"
                )
        category.name = data.name
        category.type = data.type
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.company_id == self.company_id,
                Transaction.category_id == category.id,
            )
        ).scalar_one()
        if in_use:
            logger.info(
                f"category_delete_conflict: category_id={category.id} transactions={in_use}"
            )
            raise ReferenceConflictError(
                "Category is still used by transactions and cannot be deleted"
            )
        _delete_or_conflict(self.session, category, "Category")


def _delete_or_conflict(session: Session, instance: object, label: str) -> None:
    session.delete(instance)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        logger.warning(f"delete_conflict: {label.lower()} rejected by database: {exc}")
        raise ReferenceConflictError(
            f"{label} is still referenced and cannot be deleted"
        ) from exc


class TransactionService:
    def __init__(self, session: Session, company_id: int) -> None:
        self.session = session
        self.company_id = company_id

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.company_id == self.company_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def _check_references(self, data: TransactionUpdateIn) -> None:
        category = self.session.get(Category, data.category_id)
        if not category or category.company_id != self.company_id:
            raise ValueError("Category not found")
        if category.type != data.type:
            raise ValueError("Category type mismatch")
        if data.project_id is not None:
            project = self.session.get(Project, data.project_id)
            if not project or project.company_id != self.company_id:
                raise ValueError("Project not found")

    def create(self, data: TransactionIn) -> list[Transaction]:
        """Create one transaction, or one row per installment.

        Installment rows are committed together; if anything fails nothing
        is stored.
        """
        self._check_references(data)
        lines = split_installments(
            data.description, to_cents(data.amount), data.date, data.installments
        )
        rows = [
            Transaction(
                company_id=self.company_id,
                description=line.description,
                amount_cents=line.amount_cents,
                date=line.date,
                type=data.type,
                project_id=data.project_id,
                category_id=data.category_id,
                installment_group_id=line.installment_group_id,
                installment_number=line.installment_number,
                total_installments=line.total_installments,
            )
            for line in lines
        ]
        try:
            self.session.add_all(rows)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                f"transaction_create_failed: company_id={self.company_id} rows={len(rows)}"
            )
            raise
        if len(rows) > 1:
            logger.info(
                f"installments_created: group={rows[0].installment_group_id} "
                f"count={len(rows)} company_id={self.company_id}"
            )
        return [self.get(row.id) for row in rows]

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.project)
            )
            .where(
                Transaction.company_id == self.company_id,
                Transaction.id == transaction_id,
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdateIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_references(data)
        txn.description = data.description
        txn.amount_cents = to_cents(data.amount)
        txn.date = data.date
        txn.type = data.type
        txn.project_id = data.project_id
        txn.category_id = data.category_id
        self.session.commit()
        self.session.expire(txn)
        return self.get(transaction_id)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(
            f"transaction_deleted: id={transaction_id} company_id={self.company_id}"
        )

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.project)
            )
            .where(Transaction.company_id == self.company_id)
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def list_for_period(
        self,
        period: PeriodRange,
        txn_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """Transactions inside ``period``, newest first."""
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.project)
            )
            .where(
                Transaction.company_id == self.company_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        return self.session.scalars(stmt).all()


@dataclass
class TransactionListing:
    period: PeriodRange
    page: Page
    totals: PeriodTotals
    empty_state: Optional[str]


@dataclass
class Dashboard:
    period: PeriodRange
    totals: Totals
    profit_by_project: list[ProjectProfit]
    monthly_data: list[MonthlyData]
    expense_by_category: list[CategoryDistribution]
    forecast: list[ForecastData]
    empty_state: Optional[str]


class DashboardService:
    def __init__(self, session: Session, company_id: int) -> None:
        self.session = session
        self.company_id = company_id
        self.transactions = TransactionService(session, company_id)

    def transaction_listing(
        self,
        period: PeriodRange,
        *,
        txn_type: Optional[TransactionType] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> TransactionListing:
        items = self.transactions.list_for_period(period, txn_type)
        return TransactionListing(
            period=period,
            page=paginate(items, page, per_page),
            totals=calculate_period_totals(items),
            empty_state=empty_state(self.transactions.has_any(), len(items)),
        )

    def build(
        self,
        period: PeriodRange,
        *,
        today: Optional[date] = None,
        include_unassigned: bool = False,
        txn_type: Optional[TransactionType] = None,
    ) -> Dashboard:
        today = today or local_today()
        everything = self.transactions.list_all()
        in_period = filter_by_type(filter_by_period(everything, period), txn_type)

        profit_by_project = calculate_profit_by_project(in_period)
        if not include_unassigned:
            profit_by_project = [p for p in profit_by_project if not p.is_unassigned]

        return Dashboard(
            period=period,
            totals=calculate_totals(in_period, today=today),
            profit_by_project=profit_by_project,
            monthly_data=calculate_monthly_data(in_period),
            expense_by_category=calculate_expense_by_category(in_period),
            forecast=calculate_forecast(everything, today=today),
            empty_state=empty_state(bool(everything), len(in_period)),
        )
