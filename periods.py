import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from installments import local_today


class PeriodMode(str, Enum):
    week = "week"
    month = "month"
    all = "all"


ALL_PERIODS_START = date(1900, 1, 1)
ALL_PERIODS_END = date(2100, 12, 31)
ALL_PERIODS_LABEL = "All periods"

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class PeriodRange:
    mode: PeriodMode
    start: date
    end: date
    label: str

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def all_periods_range() -> PeriodRange:
    return PeriodRange(
        PeriodMode.all, ALL_PERIODS_START, ALL_PERIODS_END, ALL_PERIODS_LABEL
    )


def month_range(year: int, month_index: int) -> PeriodRange:
    """Range of a calendar month; ``month_index`` is 0-based and may overflow."""
    year, month_index = year + month_index // 12, month_index % 12
    start = date(year, month_index + 1, 1)
    end = start.replace(day=calendar.monthrange(year, month_index + 1)[1])
    label = f"{MONTH_NAMES[month_index]} {year}"
    return PeriodRange(PeriodMode.month, start, end, label)


def week_start(anchor: date) -> date:
    # weekday(): Monday == 0, Sunday == 6
    return anchor - timedelta(days=anchor.weekday())


def week_range(anchor: date) -> PeriodRange:
    start = week_start(anchor)
    end = start + timedelta(days=6)
    label = (
        f"{start.day:02d}/{start.month:02d} — "
        f"{end.day:02d}/{end.month:02d}/{end.year:04d}"
    )
    return PeriodRange(PeriodMode.week, start, end, label)


@dataclass
class PeriodSelector:
    """Navigation state for the period picker.

    Month and week state are kept independently, so switching modes never
    recomputes one from the other.
    """

    mode: PeriodMode = PeriodMode.month
    year: int = field(default_factory=lambda: local_today().year)
    month_index: int = field(default_factory=lambda: local_today().month - 1)
    week_anchor: date = field(default_factory=lambda: week_start(local_today()))

    @classmethod
    def for_today(
        cls, today: date, mode: PeriodMode = PeriodMode.month
    ) -> "PeriodSelector":
        return cls(
            mode=mode,
            year=today.year,
            month_index=today.month - 1,
            week_anchor=week_start(today),
        )

    def set_mode(self, mode: PeriodMode) -> None:
        self.mode = PeriodMode(mode)

    def _shift_month(self, delta: int) -> None:
        total = self.year * 12 + self.month_index + delta
        self.year, self.month_index = divmod(total, 12)

    def go_back(self) -> None:
        if self.mode == PeriodMode.month:
            self._shift_month(-1)
        elif self.mode == PeriodMode.week:
            self.week_anchor -= timedelta(days=7)

    def go_forward(self) -> None:
        if self.mode == PeriodMode.month:
            self._shift_month(1)
        elif self.mode == PeriodMode.week:
            self.week_anchor += timedelta(days=7)

    def go_today(self, today: Optional[date] = None) -> None:
        today = today or local_today()
        self.year = today.year
        self.month_index = today.month - 1
        self.week_anchor = week_start(today)

    def period_range(self) -> PeriodRange:
        if self.mode == PeriodMode.all:
            return all_periods_range()
        if self.mode == PeriodMode.month:
            return month_range(self.year, self.month_index)
        return week_range(self.week_anchor)

    def to_params(self) -> dict[str, str]:
        return {
            "mode": self.mode.value,
            "month": f"{self.year:04d}-{self.month_index + 1:02d}",
            "anchor": self.week_anchor.isoformat(),
        }


def selector_from_params(
    mode: Optional[str],
    month: Optional[str],
    anchor: Optional[str],
    *,
    today: Optional[date] = None,
) -> PeriodSelector:
    """Build a selector from request parameters.

    ``month`` is ``YYYY-MM`` and ``anchor`` is any ``YYYY-MM-DD`` inside the
    wanted week. Missing values default to today.
    """
    today = today or local_today()
    try:
        period_mode = PeriodMode(mode) if mode else PeriodMode.month
    except ValueError as exc:
        raise ValueError(f"Unknown period mode: {mode}") from exc

    selector = PeriodSelector.for_today(today, period_mode)
    if month:
        try:
            year_str, month_str = month.split("-", 1)
            year, month_number = int(year_str), int(month_str)
        except ValueError as exc:
            raise ValueError("Month must be formatted as YYYY-MM") from exc
        if not 1 <= month_number <= 12:
            raise ValueError("Month must be between 01 and 12")
        if not date.min.year <= year <= date.max.year:
            raise ValueError(
                f"Year must be between {date.min.year} and {date.max.year}"
            )
        selector.year = year
        selector.month_index = month_number - 1
    if anchor:
        try:
            anchor_date = date.fromisoformat(anchor)
        except ValueError as exc:
            raise ValueError("Anchor must be formatted as YYYY-MM-DD") from exc
        selector.week_anchor = week_start(anchor_date)
        # The whole Monday..Sunday week must be representable.
        if date.max - selector.week_anchor < timedelta(days=6):
            raise ValueError("Anchor week ends after the last supported date")
    return selector


def resolve_period(
    mode: Optional[str],
    month: Optional[str] = None,
    anchor: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> PeriodRange:
    return selector_from_params(mode, month, anchor, today=today).period_range()
