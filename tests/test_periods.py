from datetime import date

import pytest

from errors import ValidationFailed
from periods import add_months, resolve_period

TODAY = date(2024, 5, 15)


def test_named_periods_resolve_against_today() -> None:
    week = resolve_period("week", None, None, today=TODAY)
    assert (week.start, week.end) == (date(2024, 5, 8), TODAY)

    month = resolve_period("month", None, None, today=TODAY)
    assert (month.start, month.end) == (date(2024, 5, 1), date(2024, 5, 31))

    quarter = resolve_period("quarter", None, None, today=TODAY)
    assert (quarter.start, quarter.end) == (date(2024, 4, 1), date(2024, 6, 30))

    year = resolve_period("year", None, None, today=TODAY)
    assert (year.start, year.end) == (date(2024, 1, 1), date(2024, 12, 31))


def test_month_period_handles_february_and_december() -> None:
    feb = resolve_period("month", None, None, today=date(2024, 2, 10))
    assert feb.end == date(2024, 2, 29)

    dec = resolve_period("month", None, None, today=date(2023, 12, 31))
    assert (dec.start, dec.end) == (date(2023, 12, 1), date(2023, 12, 31))

    q4 = resolve_period("quarter", None, None, today=date(2023, 11, 2))
    assert (q4.start, q4.end) == (date(2023, 10, 1), date(2023, 12, 31))


def test_missing_or_all_period_is_unbounded() -> None:
    for value in (None, "", "all"):
        period = resolve_period(value, None, None, today=TODAY)
        assert period.slug == "all"
        assert period.start is None and period.end is None


def test_explicit_dates_override_named_period() -> None:
    period = resolve_period(
        "year", date(2024, 2, 1), date(2024, 2, 10), today=TODAY
    )
    assert period.slug == "custom"
    assert (period.start, period.end) == (date(2024, 2, 1), date(2024, 2, 10))


def test_one_sided_ranges_are_allowed() -> None:
    since = resolve_period(None, date(2024, 1, 1), None, today=TODAY)
    assert (since.start, since.end) == (date(2024, 1, 1), None)

    until = resolve_period(None, None, date(2024, 1, 31), today=TODAY)
    assert (until.start, until.end) == (None, date(2024, 1, 31))


def test_inverted_range_and_unknown_period_are_rejected() -> None:
    with pytest.raises(ValidationFailed):
        resolve_period(None, date(2024, 3, 2), date(2024, 3, 1), today=TODAY)
    with pytest.raises(ValidationFailed):
        resolve_period("fortnight", None, None, today=TODAY)


def test_add_months_clamps_day() -> None:
    assert add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2024, 6, 15), -6) == date(2023, 12, 15)
    assert add_months(date(2023, 11, 30), 3) == date(2024, 2, 29)
    assert add_months(date(2024, 5, 15), 0) == date(2024, 5, 15)
