"""Recurrence rule evaluation and instance materialization."""

import calendar
from datetime import date, datetime, timedelta

from sqlalchemy import or_

from models import db, CalendarEvent, RecurrenceException, RecurrenceRule, Task
from services.validation_service import parse_days_of_week

FREQUENCY_UNITS = {
    'daily': ('days', 1),
    'weekly': ('weeks', 1),
    'biweekly': ('weeks', 2),
    'monthly': ('months', 1),
    'yearly': ('years', 1),
}
ALLOWED_FREQUENCIES = set(FREQUENCY_UNITS) | {'monthly_weekday', 'custom'}
ALLOWED_UNITS = {'days', 'weeks', 'months', 'years'}


def _weekday_occurrence_in_month(day_value):
    weekday = day_value.weekday()
    month_cal = calendar.monthcalendar(day_value.year, day_value.month)
    count = 0
    for week in month_cal:
        if week[weekday]:
            count += 1
            if week[weekday] == day_value.day:
                return count
    return None


def _nth_weekday_of_month(year, month, weekday, nth):
    """nth weekday of a month; an nth past the last occurrence means the last one."""
    if weekday is None or nth is None:
        return None
    month_cal = calendar.monthcalendar(year, month)
    days = [week[weekday] for week in month_cal if week[weekday]]
    if not days:
        return None
    if nth > len(days):
        day = days[-1]
    else:
        day = days[max(nth, 1) - 1]
    return date(year, month, day)


def _months_since(start_day, day_value):
    return (day_value.year - start_day.year) * 12 + (day_value.month - start_day.month)


def recurrence_occurs_on(rule, day_value):
    if day_value < rule.start_day:
        return False
    if rule.end_day and day_value > rule.end_day:
        return False

    freq = (rule.frequency or '').lower()
    interval = max(int(rule.interval or 1), 1)
    unit = (rule.interval_unit or '').lower()
    days_of_week = parse_days_of_week(rule.days_of_week)
    start_day = rule.start_day

    if freq == 'monthly_weekday':
        months_since = _months_since(start_day, day_value)
        if months_since % interval != 0:
            return False
        weekday = rule.weekday_of_month
        if weekday is None:
            weekday = start_day.weekday()
        week_of_month = rule.week_of_month
        if week_of_month is None:
            week_of_month = _weekday_occurrence_in_month(start_day)
        target = _nth_weekday_of_month(day_value.year, day_value.month, weekday, week_of_month)
        return bool(target) and day_value == target

    if freq in FREQUENCY_UNITS:
        unit, interval = FREQUENCY_UNITS[freq]
    elif freq != 'custom':
        return False

    if unit == 'days':
        return (day_value - start_day).days % interval == 0
    if unit == 'weeks':
        weeks_since = (day_value - start_day).days // 7
        if weeks_since % interval != 0:
            return False
        if days_of_week:
            return day_value.weekday() in days_of_week
        return day_value.weekday() == start_day.weekday()
    if unit == 'months':
        if _months_since(start_day, day_value) % interval != 0:
            return False
        target_dom = rule.day_of_month or start_day.day
        _, last_dom = calendar.monthrange(day_value.year, day_value.month)
        return day_value.day == min(target_dom, last_dom)
    if unit == 'years':
        if (day_value.year - start_day.year) % interval != 0:
            return False
        target_month = rule.month_of_year or start_day.month
        target_dom = rule.day_of_month or start_day.day
        _, last_dom = calendar.monthrange(day_value.year, target_month)
        return day_value.month == target_month and day_value.day == min(target_dom, last_dom)
    return False


def _instance_model(rule):
    return Task if rule.entity_type == 'task' else CalendarEvent


def _instance_day(instance):
    value = instance.due_date if isinstance(instance, Task) else instance.start_date
    return value.date() if value else None


def _build_instance(rule, day_value):
    start = datetime.combine(day_value, rule.start_time) if rule.start_time else datetime.combine(day_value, datetime.min.time())
    if rule.entity_type == 'task':
        return Task(
            user_id=rule.user_id,
            title=rule.title,
            description=rule.description,
            project=rule.project,
            priority=rule.priority or 'medium',
            status='todo',
            due_date=start,
            estimated_minutes=rule.duration_minutes,
            recurrence_id=rule.id,
        )
    end = start + timedelta(minutes=rule.duration_minutes) if rule.duration_minutes else None
    return CalendarEvent(
        user_id=rule.user_id,
        title=rule.title,
        description=rule.description,
        project=rule.project,
        start_date=start,
        end_date=end,
        all_day=rule.start_time is None,
        recurrence_id=rule.id,
    )


def ensure_recurring_instances(user_id, start_day, end_day):
    """Create missing instances of the user's rules between start_day and end_day (inclusive)."""
    if not start_day or not end_day or start_day > end_day:
        return []
    rules = RecurrenceRule.query.filter(
        RecurrenceRule.user_id == user_id,
        RecurrenceRule.start_day <= end_day,
        or_(RecurrenceRule.end_day.is_(None), RecurrenceRule.end_day >= start_day)
    ).all()
    if not rules:
        return []

    exceptions = RecurrenceException.query.filter(
        RecurrenceException.user_id == user_id,
        RecurrenceException.day >= start_day,
        RecurrenceException.day <= end_day
    ).all()
    exception_days = {(ex.recurrence_id, ex.day) for ex in exceptions}

    range_start = datetime.combine(start_day, datetime.min.time())
    range_end = datetime.combine(end_day + timedelta(days=1), datetime.min.time())

    created = []
    for rule in rules:
        model = _instance_model(rule)
        column = model.due_date if model is Task else model.start_date
        existing = model.query.filter(
            model.recurrence_id == rule.id,
            column >= range_start,
            column < range_end
        ).all()
        existing_days = {_instance_day(inst) for inst in existing}
        for current in _days(max(start_day, rule.start_day), end_day):
            if (rule.id, current) in exception_days or current in existing_days:
                continue
            if recurrence_occurs_on(rule, current):
                instance = _build_instance(rule, current)
                db.session.add(instance)
                created.append(instance)

    if created:
        db.session.commit()
    return created


def _days(start_day, end_day):
    current = start_day
    while current <= end_day:
        yield current
        current += timedelta(days=1)


def prune_recurring_instances(rule):
    """Delete instances and exceptions that no longer fall on the rule's schedule."""
    model = _instance_model(rule)
    instances = model.query.filter_by(user_id=rule.user_id, recurrence_id=rule.id).all()
    to_delete = []
    for inst in instances:
        day_value = _instance_day(inst)
        if day_value is None or not recurrence_occurs_on(rule, day_value):
            to_delete.append(inst)
    for inst in to_delete:
        db.session.delete(inst)

    stale_exceptions = [ex for ex in rule.exceptions if not recurrence_occurs_on(rule, ex.day)]
    for ex in stale_exceptions:
        db.session.delete(ex)

    if to_delete or stale_exceptions:
        db.session.commit()
    return len(to_delete)


def record_exception(instance, day_value=None):
    """Remember that a recurring instance's day must not get a new instance."""
    if day_value is None:
        day_value = _instance_day(instance)
    if not instance.recurrence_id or day_value is None:
        return None
    existing = RecurrenceException.query.filter_by(
        recurrence_id=instance.recurrence_id, day=day_value
    ).first()
    if existing:
        return existing
    exception = RecurrenceException(
        user_id=instance.user_id,
        recurrence_id=instance.recurrence_id,
        day=day_value,
    )
    db.session.add(exception)
    return exception


def detach_if_moved(instance, old_day):
    """
    Take a recurring instance off its rule once it has left `old_day`.
    The old day is recorded as an exception so it is not filled again.
    """
    if not getattr(instance, 'recurrence_id', None) or old_day is None:
        return None
    if _instance_day(instance) == old_day:
        return None
    exception = record_exception(instance, old_day)
    instance.recurrence_id = None
    return exception
