"""Goal collection routes."""

from flask import jsonify, request

from backend.app_core_logic import commit_or_error, get_current_user
from models import db, Goal
from services.validation_service import GOAL_STATUSES, clean_text, parse_day_value, parse_int


def handle_goals():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        goals = Goal.query.filter_by(user_id=user.id).order_by(
            Goal.target_date.is_(None), Goal.target_date.asc(), Goal.id.asc()
        ).all()
        return jsonify([g.to_dict() for g in goals])

    data = request.get_json(silent=True) or {}
    title = clean_text(data.get('title'), max_len=200)
    if not title:
        return jsonify({'error': 'Title is required'}), 400

    target_date = None
    if data.get('target_date'):
        target_date = parse_day_value(data.get('target_date'))
        if not target_date:
            return jsonify({'error': 'Invalid target_date'}), 400

    status = data.get('status') or 'active'
    if status not in GOAL_STATUSES:
        status = 'active'

    goal = Goal(
        user_id=user.id,
        title=title,
        description=clean_text(data.get('description')),
        project=clean_text(data.get('project'), max_len=100),
        target_date=target_date,
        status=status,
        progress=parse_int(data.get('progress'), default=0, minimum=0, maximum=100),
    )
    db.session.add(goal)
    error = commit_or_error('Could not create goal')
    if error:
        return error
    return jsonify(goal.to_dict()), 201


def update_goal_fields(goal, data):
    if 'title' in data:
        title = clean_text(data.get('title'), max_len=200)
        if not title:
            return 'Title is required'
        goal.title = title
    if 'description' in data:
        goal.description = clean_text(data.get('description'))
    if 'project' in data:
        goal.project = clean_text(data.get('project'), max_len=100)
    if 'status' in data:
        if data.get('status') not in GOAL_STATUSES:
            return 'Invalid status'
        goal.status = data.get('status')
    if 'progress' in data:
        goal.progress = parse_int(data.get('progress'), default=goal.progress, minimum=0, maximum=100)
    if 'target_date' in data:
        raw = data.get('target_date')
        if raw in (None, ''):
            goal.target_date = None
        else:
            target_date = parse_day_value(raw)
            if not target_date:
                return 'Invalid target_date'
            goal.target_date = target_date
    return None


def handle_goal(goal_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    goal = Goal.query.filter_by(id=goal_id, user_id=user.id).first_or_404()

    if request.method == 'GET':
        return jsonify(goal.to_dict())

    if request.method == 'DELETE':
        db.session.delete(goal)
        error = commit_or_error('Could not delete goal')
        if error:
            return error
        return '', 204

    message = update_goal_fields(goal, request.get_json(silent=True) or {})
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update goal')
    if error:
        return error
    return jsonify(goal.to_dict())
