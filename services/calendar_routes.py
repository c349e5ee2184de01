"""Calendar page routes: views, filters, navigation, drag-and-drop and focus mode."""

import calendar
from datetime import datetime

from flask import current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from backend.app_core_logic import (
    _now_local,
    apply_auto_rollover,
    apply_updates,
    commit_or_error,
    find_record,
    get_current_user,
    load_calendar_items,
)
from backend.calendar_helpers import (
    calculate_workload,
    format_duration,
    get_workload_level,
    to_calendar_item,
)
from backend.calendar_view import (
    DIRECTIONS,
    VIEW_TYPES,
    CalendarFilters,
    build_day_view,
    build_list_view,
    build_month_view,
    build_week_view,
    filter_items,
    focus_items,
    list_projects,
    navigate,
    period_label,
    plan_reschedule,
    quick_stats,
    visible_range,
)
from backend.recurrence import detach_if_moved, ensure_recurring_instances
from models import db
from services.event_routes import update_event_fields
from services.goal_routes import update_goal_fields
from services.reminder_routes import update_reminder_fields
from services.task_routes import update_task_fields
from services.timeblock_routes import update_time_block_fields
from services.validation_service import ITEM_TYPES, parse_bool, parse_day_value

FIELD_UPDATERS = {
    'task': update_task_fields,
    'event': update_event_fields,
    'goal': update_goal_fields,
    'reminder': update_reminder_fields,
    'timeblock': update_time_block_fields,
}

# Calendar item field names accepted by the typed update, per owning record
ITEM_FIELD_ALIASES = {
    'task': {'start_time': 'due_date', 'duration': 'estimated_minutes'},
    'event': {'start_time': 'start_date', 'end_time': 'end_date'},
    'goal': {},
    'reminder': {'start_time': 'remind_at', 'description': 'notes'},
    'timeblock': {},
}
RECORD_FIELDS = {
    'task': {'title', 'description', 'project', 'priority', 'status', 'due_date',
             'estimated_minutes', 'rollover_enabled', 'is_auto_rolled'},
    'event': {'title', 'description', 'project', 'location', 'color', 'all_day',
              'start_date', 'end_date'},
    'goal': {'title', 'description', 'project', 'status', 'progress', 'target_date'},
    'reminder': {'title', 'notes', 'completed', 'status', 'remind_at'},
    'timeblock': {'title', 'description', 'project', 'color', 'start_time', 'end_time',
                  'linked_type', 'linked_id'},
}
ITEM_IDENTITY_FIELDS = {'id', 'key', 'type'}


def _filters_from_args(args):
    item_type = args.get('type') or 'all'
    return CalendarFilters(
        search=(args.get('q') or args.get('search') or '').strip(),
        project=args.get('project') or 'all',
        type=item_type,
    )


def _month_range(day_value):
    _, last_dom = calendar.monthrange(day_value.year, day_value.month)
    return day_value.replace(day=1), day_value.replace(day=last_dom)


def _mini_calendar(items, selected, show_workload):
    """Per-day counts (and workload when enabled) for the selected date's month."""
    start, end = _month_range(selected)
    days = {}
    for item in items:
        if start <= item.date <= end:
            days.setdefault(item.date, []).append(item)
    payload = {}
    for day_value, day_items in days.items():
        entry = {'count': len(day_items)}
        if show_workload:
            minutes = calculate_workload(day_items, day_value)
            entry['workload'] = minutes
            entry['workload_level'] = get_workload_level(minutes)
        payload[day_value.isoformat()] = entry
    return {'month': start.strftime('%Y-%m'), 'days': payload}


def _drop_updates(item_type, record, target_day):
    item = to_calendar_item(item_type, record)
    if item is not None:
        return plan_reschedule(item, target_day)
    if item_type == 'task':
        return {'due_date': datetime.combine(target_day, datetime.min.time())}
    return {'target_date': target_day}


def _record_updates(item_type, record, data):
    """Translate a calendar item update into the owning record's fields. Returns (updates, error)."""
    aliases = ITEM_FIELD_ALIASES[item_type]
    allowed = RECORD_FIELDS[item_type]
    updates = {}
    unknown = []
    target_day = None
    for field_name, value in data.items():
        if field_name in ITEM_IDENTITY_FIELDS:
            continue
        if field_name == 'date':
            target_day = parse_day_value(value)
            if not target_day:
                return None, 'Invalid date'
            continue
        name = aliases.get(field_name, field_name)
        if name not in allowed:
            unknown.append(field_name)
            continue
        updates[name] = value
    if unknown:
        return None, f"Unknown field(s) for {item_type}: {', '.join(sorted(unknown))}"
    if target_day:
        # Explicit times win over the ones carried over by a date move
        for name, value in _drop_updates(item_type, record, target_day).items():
            updates.setdefault(name, value)
    return updates, None


def _materialize_recurring(user_id, start_day, end_day):
    try:
        ensure_recurring_instances(user_id, start_day, end_day)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Failed to materialize recurring items for user {user_id}: {exc}")


def calendar_page_data():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    today = _now_local().date()
    view_type = (request.args.get('view') or 'month').lower()
    if view_type not in VIEW_TYPES:
        return jsonify({'error': 'Invalid view'}), 400
    current = parse_day_value(request.args.get('date')) if request.args.get('date') else today
    selected = parse_day_value(request.args.get('selected')) if request.args.get('selected') else current
    if not current or not selected:
        return jsonify({'error': 'Invalid date'}), 400
    filters = _filters_from_args(request.args)
    if filters.type != 'all' and filters.type not in ITEM_TYPES:
        return jsonify({'error': 'Invalid type filter'}), 400
    show_workload = parse_bool(request.args.get('workload'))
    week_start = current_app.config.get('CALENDAR_WEEK_START', 'sunday')

    # Overdue tasks move to today before anything is displayed
    rolled = 0
    try:
        rolled = apply_auto_rollover(user.id, today)
    except SQLAlchemyError:
        current_app.logger.warning(f"Auto-rollover skipped for user {user.id}")

    bounds = visible_range(view_type, current, week_start) or _month_range(current)
    _materialize_recurring(user.id, *bounds)

    all_items = load_calendar_items(user.id)
    items = filter_items(all_items, filters)

    if view_type == 'month':
        view_data = build_month_view(items, current, selected, today, show_workload, week_start)
    elif view_type == 'week':
        view_data = build_week_view(items, current, today, show_workload, week_start)
    elif view_type == 'day':
        view_data = build_day_view(items, current, today, show_workload)
    else:
        view_data = build_list_view(items)

    return jsonify({
        'view': view_type,
        'date': current.isoformat(),
        'selected': selected.isoformat(),
        'today': today.isoformat(),
        'period_label': period_label(view_type, current, week_start),
        'filters': filters.to_dict(),
        'projects': list_projects(all_items),
        'types': list(ITEM_TYPES),
        'show_workload': show_workload,
        'stats': quick_stats(items, selected, today),
        'mini_calendar': _mini_calendar(items, selected, show_workload),
        'rolled_over': rolled,
        'data': view_data,
    })


def navigate_period():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    view_type = (request.args.get('view') or 'month').lower()
    direction = (request.args.get('direction') or '').lower()
    if view_type not in VIEW_TYPES:
        return jsonify({'error': 'Invalid view'}), 400
    if direction not in DIRECTIONS:
        return jsonify({'error': 'direction must be previous, next or today'}), 400
    today = _now_local().date()
    current = parse_day_value(request.args.get('date')) if request.args.get('date') else today
    if not current:
        return jsonify({'error': 'Invalid date'}), 400

    new_date = navigate(view_type, current, direction, today=today)
    payload = {
        'view': view_type,
        'date': new_date.isoformat(),
        'period_label': period_label(view_type, new_date, current_app.config.get('CALENDAR_WEEK_START', 'sunday')),
    }
    if direction == 'today':
        payload['selected'] = today.isoformat()
    return jsonify(payload)


def calendar_items():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    start_raw = request.args.get('start')
    end_raw = request.args.get('end')
    start_day = parse_day_value(start_raw) if start_raw else None
    end_day = parse_day_value(end_raw) if end_raw else None
    if (start_raw and not start_day) or (end_raw and not end_day):
        return jsonify({'error': 'Invalid date range'}), 400
    if start_day and end_day:
        if end_day < start_day:
            return jsonify({'error': 'end must be on/after start'}), 400
        _materialize_recurring(user.id, start_day, end_day)

    items = filter_items(load_calendar_items(user.id, start_day, end_day), _filters_from_args(request.args))
    items.sort(key=lambda i: i.sort_key())
    return jsonify({
        'start': start_day.isoformat() if start_day else None,
        'end': end_day.isoformat() if end_day else None,
        'items': [i.to_dict() for i in items],
    })


def update_calendar_item(item_type, item_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    if item_type not in FIELD_UPDATERS:
        return jsonify({'error': 'Unknown item type'}), 404

    record = find_record(item_type, item_id, user.id)
    if not record:
        return jsonify({'error': 'Item not found'}), 404

    updates, message = _record_updates(item_type, record, request.get_json(silent=True) or {})
    if not message:
        message = FIELD_UPDATERS[item_type](record, updates)
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update calendar item')
    if error:
        return error

    item = to_calendar_item(item_type, record)
    return jsonify({
        'success': True,
        'item': item.to_dict() if item else None,
        'record': record.to_dict(),
    })


def reschedule_item(item_type, item_id):
    """Drop handler: move an item to another day, keeping time of day and duration."""
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    if item_type not in FIELD_UPDATERS:
        return jsonify({'error': 'Unknown item type'}), 404

    data = request.get_json(silent=True) or {}
    target_day = parse_day_value(data.get('date'))
    if not target_day:
        return jsonify({'error': 'Invalid date'}), 400

    record = find_record(item_type, item_id, user.id)
    if not record:
        return jsonify({'error': 'Item not found'}), 404

    before = to_calendar_item(item_type, record)
    apply_updates(record, _drop_updates(item_type, record, target_day))
    if before is not None:
        detach_if_moved(record, before.date)
    if item_type == 'task':
        record.is_auto_rolled = False

    error = commit_or_error('Could not reschedule item')
    if error:
        return error
    current_app.logger.info(f"Rescheduled {item_type} {item_id} to {target_day.isoformat()} for user {user.id}")

    moved = to_calendar_item(item_type, record)
    return jsonify({
        'success': True,
        'message': 'Item rescheduled',
        'item': moved.to_dict() if moved else None,
    })


def focus_mode_items():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    today = _now_local().date()
    day_value = parse_day_value(request.args.get('date')) if request.args.get('date') else today
    if not day_value:
        return jsonify({'error': 'Invalid date'}), 400

    items = filter_items(load_calendar_items(user.id, day_value, day_value), _filters_from_args(request.args))
    queue = focus_items(items, day_value)
    remaining = calculate_workload(queue, day_value)
    return jsonify({
        'date': day_value.isoformat(),
        'items': [i.to_dict() for i in queue],
        'remaining_minutes': remaining,
        'remaining_time': format_duration(remaining),
    })


def manual_rollover():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401
    current_app.logger.info(f"Manual rollover triggered by user {user.id}")
    try:
        rolled = apply_auto_rollover(user.id, _now_local().date())
    except SQLAlchemyError:
        return jsonify({'error': 'Could not roll over overdue tasks'}), 500
    return jsonify({'status': 'ok', 'rolled': rolled})
