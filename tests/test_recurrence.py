from datetime import date, timedelta
from types import SimpleNamespace

from backend.recurrence import recurrence_occurs_on


def rule(frequency, start_day, **extra):
    fields = dict(
        frequency=frequency, start_day=start_day, end_day=None, interval=1,
        interval_unit=None, days_of_week=None, day_of_month=None,
        month_of_year=None, week_of_month=None, weekday_of_month=None,
    )
    fields.update(extra)
    return SimpleNamespace(**fields)


def occurrences(r, start, days):
    return [start + timedelta(days=n) for n in range(days) if recurrence_occurs_on(r, start + timedelta(days=n))]


def test_daily_respects_start_and_end():
    r = rule('daily', date(2026, 3, 2), end_day=date(2026, 3, 4))
    assert occurrences(r, date(2026, 3, 1), 6) == [date(2026, 3, 2), date(2026, 3, 3), date(2026, 3, 4)]


def test_weekly_on_selected_weekdays():
    # Mondays and Thursdays
    r = rule('weekly', date(2026, 3, 2), days_of_week='0,3')
    assert occurrences(r, date(2026, 3, 2), 8) == [date(2026, 3, 2), date(2026, 3, 5), date(2026, 3, 9)]


def test_biweekly_skips_alternate_weeks():
    r = rule('biweekly', date(2026, 3, 2))
    assert occurrences(r, date(2026, 3, 2), 29) == [date(2026, 3, 2), date(2026, 3, 16), date(2026, 3, 30)]


def test_monthly_clamps_to_short_months():
    r = rule('monthly', date(2026, 1, 31))
    assert recurrence_occurs_on(r, date(2026, 2, 28))
    assert recurrence_occurs_on(r, date(2026, 4, 30))
    assert not recurrence_occurs_on(r, date(2026, 3, 30))


def test_monthly_weekday_uses_nth_weekday():
    # second Tuesday of the month
    r = rule('monthly_weekday', date(2026, 3, 10))
    assert recurrence_occurs_on(r, date(2026, 4, 14))
    assert not recurrence_occurs_on(r, date(2026, 4, 7))


def test_yearly_and_custom_intervals():
    assert recurrence_occurs_on(rule('yearly', date(2024, 2, 29)), date(2026, 2, 28))
    every_three_days = rule('custom', date(2026, 3, 1), interval=3, interval_unit='days')
    assert occurrences(every_three_days, date(2026, 3, 1), 8) == [date(2026, 3, 1), date(2026, 3, 4), date(2026, 3, 7)]


def test_unknown_frequency_never_occurs():
    assert not recurrence_occurs_on(rule('hourly', date(2026, 3, 1)), date(2026, 3, 1))
