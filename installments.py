import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from config import get_settings

MAX_INSTALLMENTS = 120


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> float:
    return cents / 100


def split_amount_cents(amount_cents: int, installments: int) -> int:
    """Per-installment share, rounded half-up to the cent.

    The remainder is not pushed onto the last installment, so the shares
    may drift from the original total by up to half a cent each.
    """
    share = Decimal(amount_cents) / Decimal(installments)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def new_group_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class InstallmentLine:
    description: str
    amount_cents: int
    date: date
    installment_group_id: Optional[str] = None
    installment_number: Optional[int] = None
    total_installments: Optional[int] = None


def split_installments(
    description: str,
    amount_cents: int,
    start: date,
    installments: Optional[int] = None,
    *,
    group_id_factory: Callable[[], str] = new_group_id,
) -> list[InstallmentLine]:
    if amount_cents <= 0:
        raise ValueError("Amount must be greater than zero")
    if installments is not None and installments > MAX_INSTALLMENTS:
        raise ValueError(f"Installments must be at most {MAX_INSTALLMENTS}")

    if not installments or installments <= 1:
        return [InstallmentLine(description, amount_cents, start)]

    group_id = group_id_factory()
    share = split_amount_cents(amount_cents, installments)
    if share <= 0:
        raise ValueError(f"Amount is too small to split into {installments} installments")
    return [
        InstallmentLine(
            description=f"{description} ({i + 1}/{installments})",
            amount_cents=share,
            date=add_months(start, i),
            installment_group_id=group_id,
            installment_number=i + 1,
            total_installments=installments,
        )
        for i in range(installments)
    ]
