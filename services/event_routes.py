"""Calendar event collection routes."""

from flask import jsonify, request

from backend.app_core_logic import commit_or_error, get_current_user, local_timezone, range_bounds
from backend.recurrence import detach_if_moved, record_exception
from models import db, CalendarEvent
from services.validation_service import clean_text, parse_bool, parse_datetime_value, parse_day_value


def handle_events():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        query = CalendarEvent.query.filter_by(user_id=user.id)
        start, end = range_bounds(
            parse_day_value(request.args.get('start')) if request.args.get('start') else None,
            parse_day_value(request.args.get('end')) if request.args.get('end') else None,
        )
        if start:
            query = query.filter(CalendarEvent.start_date >= start)
        if end:
            query = query.filter(CalendarEvent.start_date < end)
        events = query.order_by(CalendarEvent.start_date.asc()).all()
        return jsonify([ev.to_dict() for ev in events])

    data = request.get_json(silent=True) or {}
    title = clean_text(data.get('title'), max_len=200)
    if not title:
        return jsonify({'error': 'Title is required'}), 400

    tz = local_timezone()
    start_date = parse_datetime_value(data.get('start_date'), tz=tz)
    if not start_date:
        return jsonify({'error': 'Invalid start_date'}), 400
    end_date = None
    if data.get('end_date'):
        end_date = parse_datetime_value(data.get('end_date'), tz=tz)
        if not end_date:
            return jsonify({'error': 'Invalid end_date'}), 400
        if end_date < start_date:
            return jsonify({'error': 'end_date must be on/after start_date'}), 400

    event = CalendarEvent(
        user_id=user.id,
        title=title,
        description=clean_text(data.get('description')),
        project=clean_text(data.get('project'), max_len=100),
        location=clean_text(data.get('location'), max_len=200),
        start_date=start_date,
        end_date=end_date,
        all_day=parse_bool(data.get('all_day')),
        color=clean_text(data.get('color'), max_len=20),
    )
    db.session.add(event)
    error = commit_or_error('Could not create event')
    if error:
        return error
    return jsonify(event.to_dict()), 201


def update_event_fields(event, data):
    """Apply a partial update. Returns an error message for invalid input, else None."""
    tz = local_timezone()
    if 'title' in data:
        title = clean_text(data.get('title'), max_len=200)
        if not title:
            return 'Title is required'
        event.title = title
    if 'description' in data:
        event.description = clean_text(data.get('description'))
    if 'project' in data:
        event.project = clean_text(data.get('project'), max_len=100)
    if 'location' in data:
        event.location = clean_text(data.get('location'), max_len=200)
    if 'color' in data:
        event.color = clean_text(data.get('color'), max_len=20)
    if 'all_day' in data:
        event.all_day = parse_bool(data.get('all_day'))
    if 'start_date' in data:
        start_date = parse_datetime_value(data.get('start_date'), tz=tz)
        if not start_date:
            return 'Invalid start_date'
        old_day = event.start_date.date() if event.start_date else None
        event.start_date = start_date
        detach_if_moved(event, old_day)
    if 'end_date' in data:
        raw = data.get('end_date')
        if raw in (None, ''):
            event.end_date = None
        else:
            end_date = parse_datetime_value(raw, tz=tz)
            if not end_date:
                return 'Invalid end_date'
            event.end_date = end_date
    if event.end_date and event.end_date < event.start_date:
        return 'end_date must be on/after start_date'
    return None


def handle_event(event_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    event = CalendarEvent.query.filter_by(id=event_id, user_id=user.id).first_or_404()

    if request.method == 'GET':
        return jsonify(event.to_dict())

    if request.method == 'DELETE':
        record_exception(event)
        db.session.delete(event)
        error = commit_or_error('Could not delete event')
        if error:
            return error
        return '', 204

    data = request.get_json(silent=True) or {}
    message = update_event_fields(event, data)
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update event')
    if error:
        return error
    return jsonify(event.to_dict())
