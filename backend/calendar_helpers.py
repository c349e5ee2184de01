"""Conversion of stored records into calendar items, workload and rollover rules."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

DEFAULT_TASK_MINUTES = 30

# Upper bound (inclusive, minutes) of each heatmap bucket.
WORKLOAD_LEVELS = (
    ('light', 120),
    ('moderate', 240),
    ('heavy', 360),
)
WORKLOAD_COLORS = {
    'none': None,
    'light': '#dcfce7',
    'moderate': '#fef9c3',
    'heavy': '#fed7aa',
    'overloaded': '#fecaca',
}


@dataclass
class CalendarItem:
    id: int
    title: str
    type: str
    date: date
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    project: Optional[str] = None
    color: Optional[str] = None
    original_item: Any = field(default=None, repr=False, compare=False)

    @property
    def key(self):
        return f"{self.type}:{self.id}"

    @property
    def is_completed(self):
        return self.status == 'completed'

    def sort_key(self):
        start = self.start_time or datetime.combine(self.date, time.min)
        return (start, self.title.lower(), self.key)

    def to_dict(self):
        original = self.original_item
        if original is not None and hasattr(original, 'to_dict'):
            original = original.to_dict()
        return {
            'key': self.key,
            'id': self.id,
            'title': self.title,
            'type': self.type,
            'date': self.date.isoformat(),
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration': self.duration,
            'duration_label': format_duration(self.duration) if self.duration else None,
            'priority': self.priority,
            'status': self.status,
            'description': self.description,
            'project': self.project,
            'color': self.color,
            'original_item': original,
        }


def _minutes_between(start, end):
    if not start or not end or end <= start:
        return None
    return int((end - start).total_seconds() // 60)


def _task_item(task):
    if not task.due_date:
        return None
    duration = task.estimated_minutes if task.estimated_minutes and task.estimated_minutes > 0 else None
    end = task.due_date + timedelta(minutes=duration) if duration else None
    return CalendarItem(
        id=task.id,
        title=task.title,
        type='task',
        date=task.due_date.date(),
        start_time=task.due_date,
        end_time=end,
        duration=duration,
        priority=task.priority,
        status=task.status,
        description=task.description,
        project=task.project,
        original_item=task,
    )


def _event_item(event):
    if not event.start_date:
        return None
    return CalendarItem(
        id=event.id,
        title=event.title,
        type='event',
        date=event.start_date.date(),
        start_time=event.start_date,
        end_time=event.end_date,
        duration=_minutes_between(event.start_date, event.end_date),
        description=event.description,
        project=event.project,
        color=event.color,
        original_item=event,
    )


def _goal_item(goal):
    if not goal.target_date:
        return None
    return CalendarItem(
        id=goal.id,
        title=goal.title,
        type='goal',
        date=goal.target_date,
        status=goal.status,
        description=goal.description,
        project=goal.project,
        original_item=goal,
    )


def _reminder_item(reminder):
    if not reminder.remind_at:
        return None
    return CalendarItem(
        id=reminder.id,
        title=reminder.title,
        type='reminder',
        date=reminder.remind_at.date(),
        start_time=reminder.remind_at,
        status='completed' if reminder.completed else 'pending',
        description=reminder.notes,
        original_item=reminder,
    )


def _time_block_item(block):
    if not block.start_time:
        return None
    return CalendarItem(
        id=block.id,
        title=block.title,
        type='timeblock',
        date=block.start_time.date(),
        start_time=block.start_time,
        end_time=block.end_time,
        duration=_minutes_between(block.start_time, block.end_time),
        description=block.description,
        project=block.project,
        color=block.color,
        original_item=block,
    )


CONVERTERS = {
    'task': _task_item,
    'event': _event_item,
    'goal': _goal_item,
    'reminder': _reminder_item,
    'timeblock': _time_block_item,
}


def to_calendar_item(item_type, record):
    """Single-record conversion; None when the record has no date."""
    return CONVERTERS[item_type](record)


def convert_to_calendar_items(tasks, events, goals, reminders, time_blocks=None):
    """Project every dated record into a CalendarItem. Undated records are skipped."""
    collections = (tasks, events, goals, reminders, time_blocks)
    items = []
    for records, convert in zip(collections, CONVERTERS.values()):
        for record in records or []:
            item = convert(record)
            if item is not None:
                items.append(item)
    return items


def item_minutes(item):
    """Minutes an item contributes to its day's workload."""
    if item.is_completed:
        return 0
    if item.duration:
        return item.duration
    if item.type == 'task':
        return DEFAULT_TASK_MINUTES
    return 0


def calculate_workload(items, day):
    """Total scheduled minutes for `day` across the given items."""
    if isinstance(day, datetime):
        day = day.date()
    return sum(item_minutes(item) for item in items if item.date == day)


def format_duration(minutes):
    minutes = int(minutes or 0)
    if minutes <= 0:
        return '0m'
    hours, mins = divmod(minutes, 60)
    if not hours:
        return f"{mins}m"
    if not mins:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def get_workload_level(minutes):
    if not minutes or minutes <= 0:
        return 'none'
    for level, upper in WORKLOAD_LEVELS:
        if minutes <= upper:
            return level
    return 'overloaded'


def get_workload_color(minutes):
    return WORKLOAD_COLORS[get_workload_level(minutes)]


@dataclass
class RolloverChange:
    task_id: int
    previous_due: datetime
    due_date: datetime


def auto_rollover_tasks(tasks, today):
    """
    Return the changes that move overdue, incomplete, rollover-enabled tasks
    onto `today`. The time of day of the original due date is kept.
    """
    if isinstance(today, datetime):
        today = today.date()
    changes = []
    for task in tasks:
        due = task.due_date
        if not due or due.date() >= today:
            continue
        if task.status == 'completed' or task.rollover_enabled is False:
            continue
        changes.append(RolloverChange(
            task_id=task.id,
            previous_due=due,
            due_date=datetime.combine(today, due.time()),
        ))
    return changes
