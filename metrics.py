"""Dashboard aggregations over already-fetched transactions.

Every function here is pure: it reads the given transactions and returns new
records. Amounts are summed as integer cents and converted to currency units
when a record is built. Transactions only need ``date``, ``type``,
``amount_cents``, ``project_id`` and optionally ``project`` and ``category``
relationships exposing ``name``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from installments import cents_to_amount, local_today
from models import Transaction, TransactionType
from periods import PeriodRange

NO_PROJECT_LABEL = "No project"
NO_CATEGORY_LABEL = "No category"


@dataclass(frozen=True)
class Totals:
    total_income: float
    total_expense: float
    total_profit: float


@dataclass(frozen=True)
class PeriodTotals:
    income: float
    expense: float
    balance: float


@dataclass(frozen=True)
class ProjectProfit:
    # None is the bucket of transactions without a project.
    project_id: Optional[int]
    project_name: str
    income: float
    expense: float
    profit: float

    @property
    def is_unassigned(self) -> bool:
        return self.project_id is None


@dataclass(frozen=True)
class MonthlyData:
    month: str
    income: float
    expense: float
    profit: float


@dataclass(frozen=True)
class CategoryDistribution:
    name: str
    value: float
    percentage: float
    # False for the bucket of expenses without a category.
    has_category: bool = True


@dataclass(frozen=True)
class ForecastData:
    month: str
    income: float
    expense: float


class _Bucket:
    __slots__ = ("label", "income_cents", "expense_cents")

    def __init__(self, label: str) -> None:
        self.label = label
        self.income_cents = 0
        self.expense_cents = 0

    def add(self, txn: Transaction) -> None:
        if txn.type == TransactionType.income:
            self.income_cents += txn.amount_cents
        else:
            self.expense_cents += txn.amount_cents

    @property
    def profit_cents(self) -> int:
        return self.income_cents - self.expense_cents


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _sum_cents(transactions: Iterable[Transaction], txn_type: TransactionType) -> int:
    return sum(t.amount_cents for t in transactions if t.type == txn_type)


def filter_by_period(
    transactions: Iterable[Transaction], period: PeriodRange
) -> list[Transaction]:
    return [t for t in transactions if period.contains(t.date)]


def filter_by_type(
    transactions: Iterable[Transaction], txn_type: Optional[TransactionType]
) -> list[Transaction]:
    if txn_type is None:
        return list(transactions)
    return [t for t in transactions if t.type == txn_type]


def calculate_totals(
    transactions: Sequence[Transaction], *, today: Optional[date] = None
) -> Totals:
    """Income, expense and profit of everything dated today or earlier.

    The date filter applies on top of any period filtering done by the
    caller, so future installments never count towards totals.
    """
    today = today or local_today()
    past = [t for t in transactions if t.date <= today]
    income = _sum_cents(past, TransactionType.income)
    expense = _sum_cents(past, TransactionType.expense)
    return Totals(
        total_income=cents_to_amount(income),
        total_expense=cents_to_amount(expense),
        total_profit=cents_to_amount(income - expense),
    )


def calculate_period_totals(transactions: Sequence[Transaction]) -> PeriodTotals:
    income = _sum_cents(transactions, TransactionType.income)
    expense = _sum_cents(transactions, TransactionType.expense)
    return PeriodTotals(
        income=cents_to_amount(income),
        expense=cents_to_amount(expense),
        balance=cents_to_amount(income - expense),
    )


def calculate_profit_by_project(
    transactions: Sequence[Transaction],
) -> list[ProjectProfit]:
    buckets: dict[Optional[int], _Bucket] = {}
    for txn in transactions:
        key = txn.project_id
        bucket = buckets.get(key)
        if bucket is None:
            project = getattr(txn, "project", None)
            if key is None:
                label = NO_PROJECT_LABEL
            else:
                label = project.name if project is not None else f"Project {key}"
            bucket = buckets[key] = _Bucket(label)
        bucket.add(txn)

    ordered = sorted(
        buckets.items(),
        key=lambda item: (
            -item[1].profit_cents,
            item[1].label,
            item[0] is None,
            item[0] or 0,
        ),
    )
    return [
        ProjectProfit(
            project_id=key,
            project_name=bucket.label,
            income=cents_to_amount(bucket.income_cents),
            expense=cents_to_amount(bucket.expense_cents),
            profit=cents_to_amount(bucket.profit_cents),
        )
        for key, bucket in ordered
    ]


def calculate_monthly_data(transactions: Sequence[Transaction]) -> list[MonthlyData]:
    buckets: dict[str, _Bucket] = {}
    for txn in transactions:
        key = month_key(txn.date)
        buckets.setdefault(key, _Bucket(key)).add(txn)

    return [
        MonthlyData(
            month=key,
            income=cents_to_amount(bucket.income_cents),
            expense=cents_to_amount(bucket.expense_cents),
            profit=cents_to_amount(bucket.profit_cents),
        )
        for key, bucket in sorted(buckets.items())
    ]


def calculate_expense_by_category(
    transactions: Sequence[Transaction],
) -> list[CategoryDistribution]:
    expenses = [t for t in transactions if t.type == TransactionType.expense]
    total = sum(t.amount_cents for t in expenses)

    # Keyed by category name; None collects expenses without a category.
    amounts: dict[Optional[str], int] = {}
    for txn in expenses:
        category = getattr(txn, "category", None)
        key = category.name if category is not None else None
        amounts[key] = amounts.get(key, 0) + txn.amount_cents

    ordered = sorted(
        amounts.items(),
        key=lambda item: (-item[1], item[0] is None, item[0] or ""),
    )
    return [
        CategoryDistribution(
            name=name if name is not None else NO_CATEGORY_LABEL,
            value=cents_to_amount(cents),
            percentage=(cents / total * 100) if total else 0.0,
            has_category=name is not None,
        )
        for name, cents in ordered
    ]


def calculate_forecast(
    transactions: Sequence[Transaction], *, today: Optional[date] = None
) -> list[ForecastData]:
    """Future income and expense per month, strictly after ``today``.

    Pass the full transaction list, not a period-filtered one.
    """
    today = today or local_today()
    buckets: dict[str, _Bucket] = {}
    for txn in transactions:
        if txn.date <= today:
            continue
        key = month_key(txn.date)
        buckets.setdefault(key, _Bucket(key)).add(txn)

    return [
        ForecastData(
            month=key,
            income=cents_to_amount(bucket.income_cents),
            expense=cents_to_amount(bucket.expense_cents),
        )
        for key, bucket in sorted(buckets.items())
    ]
