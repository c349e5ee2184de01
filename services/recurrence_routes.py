"""Recurrence rule routes."""

from datetime import datetime

from flask import current_app, jsonify, request

from backend.app_core_logic import _now_local, commit_or_error, get_current_user
from backend.recurrence import (
    ALLOWED_FREQUENCIES,
    ALLOWED_UNITS,
    prune_recurring_instances,
)
from models import db, CalendarEvent, RecurrenceRule, Task
from services.validation_service import (
    clean_text,
    parse_day_value,
    parse_days_of_week,
    parse_int,
    parse_priority,
    parse_time_str,
)

ENTITY_TYPES = {'task', 'event'}


def apply_rule_fields(rule, data, creating=False):
    """Validate and apply rule fields. Returns an error message or None."""
    if creating or 'entity_type' in data:
        entity_type = (data.get('entity_type') or 'event').lower()
        if entity_type not in ENTITY_TYPES:
            return 'entity_type must be task or event'
        rule.entity_type = entity_type
    if creating or 'title' in data:
        title = clean_text(data.get('title'), max_len=200)
        if not title:
            return 'Title is required'
        rule.title = title
    if 'description' in data:
        rule.description = clean_text(data.get('description'))
    if 'project' in data:
        rule.project = clean_text(data.get('project'), max_len=100)
    if creating or 'priority' in data:
        rule.priority = parse_priority(data.get('priority'))
    if creating or 'frequency' in data:
        frequency = (data.get('frequency') or '').lower()
        if frequency not in ALLOWED_FREQUENCIES:
            return 'Invalid frequency'
        rule.frequency = frequency
    if creating or 'start_day' in data:
        start_day = parse_day_value(data.get('start_day'))
        if not start_day:
            return 'Invalid start_day'
        rule.start_day = start_day
    if 'end_day' in data:
        raw = data.get('end_day')
        if raw in (None, ''):
            rule.end_day = None
        else:
            end_day = parse_day_value(raw)
            if not end_day:
                return 'Invalid end_day'
            rule.end_day = end_day
    if rule.end_day and rule.end_day < rule.start_day:
        return 'end_day must be on/after start_day'
    if 'start_time' in data:
        raw = data.get('start_time')
        start_time = parse_time_str(raw)
        if raw and not start_time:
            return 'Invalid start_time'
        rule.start_time = start_time
    if 'duration_minutes' in data:
        rule.duration_minutes = parse_int(data.get('duration_minutes'), minimum=0)
    if creating or 'interval' in data:
        rule.interval = parse_int(data.get('interval'), default=1, minimum=1)
    if 'interval_unit' in data:
        unit = clean_text(data.get('interval_unit'))
        if unit and unit not in ALLOWED_UNITS:
            return 'Invalid interval_unit'
        rule.interval_unit = unit
    if rule.frequency == 'custom' and not rule.interval_unit:
        return 'interval_unit is required for custom frequency'
    if 'days_of_week' in data:
        days = parse_days_of_week(data.get('days_of_week'))
        rule.days_of_week = ','.join(str(d) for d in days) if days else None
    for field_name, upper in (('day_of_month', 31), ('month_of_year', 12), ('week_of_month', 5), ('weekday_of_month', 6)):
        if field_name in data:
            lower = 0 if field_name == 'weekday_of_month' else 1
            setattr(rule, field_name, parse_int(data.get(field_name), minimum=lower, maximum=upper))
    return None


def handle_rules():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        rules = RecurrenceRule.query.filter_by(user_id=user.id).order_by(RecurrenceRule.title).all()
        return jsonify([r.to_dict() for r in rules])

    data = request.get_json(silent=True) or {}
    rule = RecurrenceRule(user_id=user.id)
    message = apply_rule_fields(rule, data, creating=True)
    if message:
        return jsonify({'error': message}), 400
    db.session.add(rule)
    error = commit_or_error('Could not create recurrence rule')
    if error:
        return error
    current_app.logger.info(f"Recurrence rule {rule.id} ({rule.frequency}) created for user {user.id}")
    return jsonify(rule.to_dict()), 201


def _delete_rule(rule):
    """Remove upcoming instances and detach past ones before deleting the rule."""
    model = Task if rule.entity_type == 'task' else CalendarEvent
    column = model.due_date if model is Task else model.start_date
    today_start = datetime.combine(_now_local().date(), datetime.min.time())
    for instance in model.query.filter(model.recurrence_id == rule.id).all():
        value = getattr(instance, column.key)
        if value is not None and value >= today_start:
            db.session.delete(instance)
        else:
            instance.recurrence_id = None
    db.session.delete(rule)


def handle_rule(rule_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    rule = RecurrenceRule.query.filter_by(id=rule_id, user_id=user.id).first_or_404()

    if request.method == 'GET':
        return jsonify(rule.to_dict())

    if request.method == 'DELETE':
        _delete_rule(rule)
        error = commit_or_error('Could not delete recurrence rule')
        if error:
            return error
        return '', 204

    data = request.get_json(silent=True) or {}
    if 'entity_type' in data and (data.get('entity_type') or '').lower() != rule.entity_type:
        return jsonify({'error': 'entity_type cannot be changed'}), 400
    message = apply_rule_fields(rule, data)
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update recurrence rule')
    if error:
        return error
    removed = prune_recurring_instances(rule)
    if removed:
        current_app.logger.info(f"Pruned {removed} instance(s) no longer matching rule {rule.id}")
    return jsonify(rule.to_dict())
