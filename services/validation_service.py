import re
from datetime import date, datetime, time

ALLOWED_PRIORITIES = {'low', 'medium', 'high'}
TASK_STATUSES = {'todo', 'in_progress', 'completed'}
GOAL_STATUSES = {'active', 'completed', 'abandoned'}
ITEM_TYPES = ('task', 'event', 'goal', 'reminder', 'timeblock')
LINKABLE_TYPES = {'task', 'event', 'goal', 'reminder'}


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_int(value, default=None, minimum=None, maximum=None):
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


def clean_text(value, max_len=None):
    """Strip a free-text field; empty strings become None."""
    text = str(value or "").strip()
    if not text:
        return None
    if max_len:
        text = text[:max_len]
    return text


def parse_priority(value, default='medium'):
    priority = str(value or "").strip().lower()
    return priority if priority in ALLOWED_PRIORITIES else default


def parse_time_str(val):
    """Parse 24h or am/pm strings into a time object; return None on failure."""
    if not val:
        return None
    if isinstance(val, time):
        return val
    s = str(val).strip().lower().replace(" ", "")

    pattern = r"^(?P<hour>\d{1,2})(:(?P<minute>\d{1,2}))?(:(?P<second>\d{1,2}))?(?P<ampm>a|p|am|pm)?$"
    m = re.match(pattern, s)
    if not m:
        return None
    try:
        hour = int(m.group("hour"))
        minute = int(m.group("minute") or 0)
        ampm = m.group("ampm")
        if m.group("second") is not None:
            sec_val = int(m.group("second"))
            if not (0 <= sec_val <= 59):
                return None
        if ampm:
            if ampm in ("p", "pm") and hour != 12:
                hour += 12
            if ampm in ("a", "am") and hour == 12:
                hour = 0
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            return None
        return time(hour=hour, minute=minute)
    except (TypeError, ValueError):
        return None


def parse_days_of_week(raw):
    if raw is None:
        return []
    if isinstance(raw, list):
        values = raw
    else:
        values = str(raw).split(",")
    days = []
    for val in values:
        try:
            day = int(val)
        except (TypeError, ValueError):
            continue
        if 0 <= day <= 6:
            days.append(day)
    return sorted(set(days))


def parse_day_value(raw):
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def parse_datetime_value(raw, tz=None):
    """
    Parse an ISO-8601 datetime (or a bare YYYY-MM-DD day, read as midnight).
    Aware values are converted to `tz` when given and returned naive, matching
    how datetimes are stored.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        value = raw
    elif isinstance(raw, date):
        return datetime.combine(raw, time.min)
    else:
        text = str(raw).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
    if value.tzinfo is not None:
        if tz is not None:
            value = value.astimezone(tz)
        value = value.replace(tzinfo=None)
    return value
