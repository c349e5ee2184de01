"""Task collection routes."""

from flask import jsonify, request

from backend.app_core_logic import commit_or_error, get_current_user, local_timezone
from backend.recurrence import detach_if_moved, record_exception
from models import db, Task
from services.validation_service import (
    TASK_STATUSES,
    clean_text,
    parse_bool,
    parse_datetime_value,
    parse_int,
    parse_priority,
)


def handle_tasks():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        query = Task.query.filter_by(user_id=user.id)
        status = request.args.get('status')
        if status:
            query = query.filter(Task.status == status)
        project = request.args.get('project')
        if project:
            query = query.filter(Task.project == project)
        tasks = query.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc()).all()
        return jsonify([t.to_dict() for t in tasks])

    data = request.get_json(silent=True) or {}
    title = clean_text(data.get('title'), max_len=200)
    if not title:
        return jsonify({'error': 'Title is required'}), 400

    due_date = None
    if data.get('due_date'):
        due_date = parse_datetime_value(data.get('due_date'), tz=local_timezone())
        if not due_date:
            return jsonify({'error': 'Invalid due_date'}), 400

    status = data.get('status') or 'todo'
    if status not in TASK_STATUSES:
        status = 'todo'

    task = Task(
        user_id=user.id,
        title=title,
        description=clean_text(data.get('description')),
        project=clean_text(data.get('project'), max_len=100),
        priority=parse_priority(data.get('priority')),
        status=status,
        due_date=due_date,
        estimated_minutes=parse_int(data.get('estimated_minutes'), minimum=0),
        rollover_enabled=parse_bool(data.get('rollover_enabled'), default=True),
    )
    db.session.add(task)
    error = commit_or_error('Could not create task')
    if error:
        return error
    return jsonify(task.to_dict()), 201


def update_task_fields(task, data):
    """Apply a partial update. Returns an error message for invalid input, else None."""
    if 'title' in data:
        title = clean_text(data.get('title'), max_len=200)
        if not title:
            return 'Title is required'
        task.title = title
    if 'description' in data:
        task.description = clean_text(data.get('description'))
    if 'project' in data:
        task.project = clean_text(data.get('project'), max_len=100)
    if 'priority' in data:
        task.priority = parse_priority(data.get('priority'), default=task.priority)
    if 'status' in data:
        status = data.get('status')
        if status not in TASK_STATUSES:
            return 'Invalid status'
        task.status = status
    if 'estimated_minutes' in data:
        task.estimated_minutes = parse_int(data.get('estimated_minutes'), minimum=0)
    if 'rollover_enabled' in data:
        task.rollover_enabled = parse_bool(data.get('rollover_enabled'))
    if 'due_date' in data:
        old_day = task.due_date.date() if task.due_date else None
        raw = data.get('due_date')
        if raw in (None, ''):
            task.due_date = None
        else:
            due_date = parse_datetime_value(raw, tz=local_timezone())
            if not due_date:
                return 'Invalid due_date'
            task.due_date = due_date
        detach_if_moved(task, old_day)
        # A manual reschedule supersedes the last rollover
        task.is_auto_rolled = False
    if 'is_auto_rolled' in data:
        task.is_auto_rolled = parse_bool(data.get('is_auto_rolled'))
    return None


def handle_task(task_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    task = Task.query.filter_by(id=task_id, user_id=user.id).first_or_404()

    if request.method == 'GET':
        return jsonify(task.to_dict())

    if request.method == 'DELETE':
        record_exception(task)
        db.session.delete(task)
        error = commit_or_error('Could not delete task')
        if error:
            return error
        return '', 204

    data = request.get_json(silent=True) or {}
    message = update_task_fields(task, data)
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update task')
    if error:
        return error
    return jsonify(task.to_dict())
