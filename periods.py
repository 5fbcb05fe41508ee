from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from errors import ValidationFailed

NAMED_PERIODS = ("week", "month", "quarter", "year")


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: Optional[date]


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def add_months(d: date, count: int) -> date:
    """Shift ``d`` by ``count`` calendar months, clamping the day to the month length."""
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, min(d.day, _month_end(year, month).day))


def resolve_period(
    period: Optional[str],
    start: Optional[date],
    end: Optional[date],
    *,
    today: date,
) -> Period:
    if start is not None or end is not None:
        if start is not None and end is not None and start > end:
            raise ValidationFailed("Start date must be before end date")
        return Period("custom", start, end)

    if not period or period == "all":
        return Period("all", None, None)
    if period == "week":
        return Period("week", today - timedelta(days=7), today)
    if period == "month":
        first = today.replace(day=1)
        return Period("month", first, _month_end(today.year, today.month))
    if period == "quarter":
        first_month = ((today.month - 1) // 3) * 3 + 1
        return Period(
            "quarter",
            date(today.year, first_month, 1),
            _month_end(today.year, first_month + 2),
        )
    if period == "year":
        return Period("year", date(today.year, 1, 1), date(today.year, 12, 31))
    raise ValidationFailed(f"Unknown period: {period}")
