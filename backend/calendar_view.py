"""Filtering, navigation and view layouts for the calendar page."""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from backend.calendar_helpers import (
    calculate_workload,
    format_duration,
    get_workload_color,
    get_workload_level,
)

VIEW_TYPES = ('month', 'week', 'day', 'list')
DIRECTIONS = ('previous', 'next', 'today')
MONTH_PREVIEW_LIMIT = 3
DEFAULT_BLOCK_MINUTES = 60
PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}
WEEKDAY_INDEX = {'monday': 0, 'sunday': 6}


@dataclass
class CalendarFilters:
    search: str = ''
    project: str = 'all'
    type: str = 'all'

    def to_dict(self):
        return {'search': self.search, 'project': self.project, 'type': self.type}


def matches_filters(item, filters):
    query = (filters.search or '').strip().lower()
    if query:
        in_title = query in (item.title or '').lower()
        in_description = query in (item.description or '').lower()
        if not (in_title or in_description):
            return False
    if filters.project not in (None, '', 'all') and item.project != filters.project:
        return False
    if filters.type not in (None, '', 'all') and item.type != filters.type:
        return False
    return True


def filter_items(items, filters):
    return [item for item in items if matches_filters(item, filters)]


def list_projects(items):
    return sorted({item.project for item in items if item.project})


def add_months(day, months):
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    _, last_dom = calendar.monthrange(year, month)
    return day.replace(year=year, month=month, day=min(day.day, last_dom))


def navigate(view_type, current, direction, today=None):
    """Return the new current date after a previous/next/today action."""
    if direction == 'today':
        return today or date.today()
    if direction not in ('previous', 'next'):
        raise ValueError(f"Unknown direction: {direction}")
    step = 1 if direction == 'next' else -1
    if view_type == 'month':
        return add_months(current, step)
    if view_type == 'week':
        return current + timedelta(weeks=step)
    if view_type == 'day':
        return current + timedelta(days=step)
    if view_type == 'list':
        return current
    raise ValueError(f"Unknown view type: {view_type}")


def week_bounds(day, week_start='sunday'):
    first_weekday = WEEKDAY_INDEX.get(week_start, 6)
    offset = (day.weekday() - first_weekday) % 7
    start = day - timedelta(days=offset)
    return start, start + timedelta(days=6)


def days_between(start, end):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def visible_range(view_type, current, week_start='sunday'):
    """Inclusive day range that a view renders; None for the unbounded list view."""
    if view_type == 'month':
        month_start = current.replace(day=1)
        _, last_dom = calendar.monthrange(current.year, current.month)
        month_end = current.replace(day=last_dom)
        return week_bounds(month_start, week_start)[0], week_bounds(month_end, week_start)[1]
    if view_type == 'week':
        return week_bounds(current, week_start)
    if view_type == 'day':
        return current, current
    return None


def period_label(view_type, current, week_start='sunday'):
    if view_type == 'week':
        start, end = week_bounds(current, week_start)
        return f"{start.strftime('%b %d')} - {end.strftime('%b %d, %Y')}"
    if view_type == 'day':
        return current.strftime('%A, %B %d, %Y')
    return current.strftime('%B %Y')


def group_by_day(items):
    by_day = {}
    for item in sorted(items, key=lambda i: i.sort_key()):
        by_day.setdefault(item.date, []).append(item)
    return by_day


def _workload_payload(day_items, day, show_workload):
    minutes = calculate_workload(day_items, day)
    payload = {'workload': minutes}
    if show_workload and minutes > 0:
        payload.update({
            'workload_label': format_duration(minutes),
            'workload_level': get_workload_level(minutes),
            'workload_color': get_workload_color(minutes),
        })
    return payload


def _timed_item(item):
    data = item.to_dict()
    data['time_label'] = item.start_time.strftime('%H:%M') if item.start_time else None
    return data


def build_month_view(items, current, selected, today, show_workload=False, week_start='sunday'):
    start, end = visible_range('month', current, week_start)
    by_day = group_by_day(items)
    first_weekday = WEEKDAY_INDEX.get(week_start, 6)
    headers = [calendar.day_abbr[(first_weekday + i) % 7] for i in range(7)]

    weeks = []
    week = []
    for day in days_between(start, end):
        day_items = by_day.get(day, [])
        cell = {
            'date': day.isoformat(),
            'day': day.day,
            'in_month': day.month == current.month,
            'is_today': day == today,
            'is_selected': day == selected,
            'items': [i.to_dict() for i in day_items[:MONTH_PREVIEW_LIMIT]],
            'more': max(len(day_items) - MONTH_PREVIEW_LIMIT, 0),
        }
        cell.update(_workload_payload(day_items, day, show_workload))
        week.append(cell)
        if len(week) == 7:
            weeks.append(week)
            week = []
    return {'headers': headers, 'weeks': weeks}


def build_week_view(items, current, today, show_workload=False, week_start='sunday'):
    start, end = week_bounds(current, week_start)
    by_day = group_by_day(items)
    days = []
    for day in days_between(start, end):
        day_items = by_day.get(day, [])
        column = {
            'date': day.isoformat(),
            'weekday': day.strftime('%a'),
            'day': day.day,
            'is_today': day == today,
            'items': [_timed_item(i) for i in day_items],
        }
        column.update(_workload_payload(day_items, day, show_workload))
        days.append(column)
    return {'days': days}


def build_day_view(items, current, today, show_workload=False):
    day_items = [i for i in sorted(items, key=lambda i: i.sort_key()) if i.date == current]
    timed = [_timed_item(i) for i in day_items if i.start_time and i.start_time.time() != time.min]
    untimed = [i.to_dict() for i in day_items if not i.start_time or i.start_time.time() == time.min]
    view = {
        'date': current.isoformat(),
        'is_today': current == today,
        'all_day': untimed,
        'timed': timed,
    }
    view.update(_workload_payload(day_items, current, show_workload))
    return view


def build_list_view(items):
    ordered = sorted(items, key=lambda i: i.sort_key())
    return {
        'items': [_timed_item(i) for i in ordered],
        'empty': not ordered,
    }


def quick_stats(items, selected, today):
    scheduled = calculate_workload(items, selected)
    return {
        'today_items': sum(1 for item in items if item.date == today),
        'total_scheduled_minutes': scheduled,
        'total_scheduled_time': format_duration(scheduled),
    }


def focus_items(items, day):
    """Incomplete items of `day`, most urgent first."""
    pending = [item for item in items if item.date == day and not item.is_completed]
    return sorted(
        pending,
        key=lambda i: (PRIORITY_RANK.get(i.priority or '', 1), i.sort_key()),
    )


def _move_to_day(value, target_day):
    return datetime.combine(target_day, value.time())


def plan_reschedule(item, target_day):
    """
    Field updates for dropping `item` on `target_day`. Only the date changes;
    timed items keep their time of day and duration.
    """
    if isinstance(target_day, datetime):
        target_day = target_day.date()
    if item.type == 'goal':
        return {'target_date': target_day}

    start = item.start_time or datetime.combine(item.date, time.min)
    new_start = _move_to_day(start, target_day)
    if item.type == 'task':
        return {'due_date': new_start}
    if item.type == 'reminder':
        return {'remind_at': new_start}

    if item.end_time and item.start_time:
        duration = item.end_time - item.start_time
    else:
        duration = timedelta(minutes=DEFAULT_BLOCK_MINUTES)
    new_end = new_start + duration
    if item.type == 'event':
        return {'start_date': new_start, 'end_date': new_end}
    if item.type == 'timeblock':
        return {'start_time': new_start, 'end_time': new_end}
    raise ValueError(f"Unsupported item type: {item.type}")
