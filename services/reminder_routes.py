"""Reminder collection routes."""

from flask import jsonify, request

from backend.app_core_logic import commit_or_error, get_current_user, local_timezone
from models import db, Reminder
from services.validation_service import clean_text, parse_bool, parse_datetime_value


def handle_reminders():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        query = Reminder.query.filter_by(user_id=user.id)
        if 'completed' in request.args:
            query = query.filter(Reminder.completed.is_(parse_bool(request.args.get('completed'))))
        reminders = query.order_by(Reminder.remind_at.asc()).all()
        return jsonify([r.to_dict() for r in reminders])

    data = request.get_json(silent=True) or {}
    title = clean_text(data.get('title'), max_len=200)
    if not title:
        return jsonify({'error': 'Title is required'}), 400

    remind_at = parse_datetime_value(data.get('remind_at'), tz=local_timezone())
    if not remind_at:
        return jsonify({'error': 'Invalid remind_at'}), 400

    reminder = Reminder(
        user_id=user.id,
        title=title,
        notes=clean_text(data.get('notes')),
        remind_at=remind_at,
        completed=parse_bool(data.get('completed')),
    )
    db.session.add(reminder)
    error = commit_or_error('Could not create reminder')
    if error:
        return error
    return jsonify(reminder.to_dict()), 201


def update_reminder_fields(reminder, data):
    if 'title' in data:
        title = clean_text(data.get('title'), max_len=200)
        if not title:
            return 'Title is required'
        reminder.title = title
    if 'notes' in data:
        reminder.notes = clean_text(data.get('notes'))
    if 'completed' in data:
        reminder.completed = parse_bool(data.get('completed'))
    elif data.get('status') in ('completed', 'pending'):
        # Calendar items expose completion as a status string
        reminder.completed = data.get('status') == 'completed'
    if 'remind_at' in data:
        remind_at = parse_datetime_value(data.get('remind_at'), tz=local_timezone())
        if not remind_at:
            return 'Invalid remind_at'
        reminder.remind_at = remind_at
    return None


def handle_reminder(reminder_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    reminder = Reminder.query.filter_by(id=reminder_id, user_id=user.id).first_or_404()

    if request.method == 'GET':
        return jsonify(reminder.to_dict())

    if request.method == 'DELETE':
        db.session.delete(reminder)
        error = commit_or_error('Could not delete reminder')
        if error:
            return error
        return '', 204

    message = update_reminder_fields(reminder, request.get_json(silent=True) or {})
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update reminder')
    if error:
        return error
    return jsonify(reminder.to_dict())
