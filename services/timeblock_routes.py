"""Time block routes. A block may be dedicated to one task, event, goal or reminder."""

from flask import jsonify, request

from backend.app_core_logic import commit_or_error, find_record, get_current_user, local_timezone
from models import db, TimeBlock
from services.validation_service import LINKABLE_TYPES, clean_text, parse_datetime_value, parse_int


def _resolve_link(data, user_id):
    """Validate linked_type/linked_id. Returns (linked_type, linked_id, error)."""
    linked_type = clean_text(data.get('linked_type'))
    if not linked_type:
        return None, None, None
    if linked_type not in LINKABLE_TYPES:
        return None, None, 'Invalid linked_type'
    linked_id = parse_int(data.get('linked_id'))
    if linked_id is None:
        return None, None, 'linked_id required with linked_type'
    if not find_record(linked_type, linked_id, user_id):
        return None, None, f'Linked {linked_type} not found'
    return linked_type, linked_id, None


def handle_time_blocks():
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    if request.method == 'GET':
        blocks = TimeBlock.query.filter_by(user_id=user.id).order_by(TimeBlock.start_time.asc()).all()
        return jsonify([b.to_dict() for b in blocks])

    data = request.get_json(silent=True) or {}
    title = clean_text(data.get('title'), max_len=200)
    if not title:
        return jsonify({'error': 'Title is required'}), 400

    tz = local_timezone()
    start_time = parse_datetime_value(data.get('start_time'), tz=tz)
    end_time = parse_datetime_value(data.get('end_time'), tz=tz)
    if not start_time or not end_time:
        return jsonify({'error': 'start_time and end_time are required'}), 400
    if end_time <= start_time:
        return jsonify({'error': 'end_time must be after start_time'}), 400

    linked_type, linked_id, message = _resolve_link(data, user.id)
    if message:
        return jsonify({'error': message}), 400

    block = TimeBlock(
        user_id=user.id,
        title=title,
        description=clean_text(data.get('description')),
        project=clean_text(data.get('project'), max_len=100),
        start_time=start_time,
        end_time=end_time,
        color=clean_text(data.get('color'), max_len=20),
        linked_type=linked_type,
        linked_id=linked_id,
    )
    db.session.add(block)
    error = commit_or_error('Could not create time block')
    if error:
        return error
    return jsonify(block.to_dict()), 201


def update_time_block_fields(block, data):
    tz = local_timezone()
    if 'title' in data:
        title = clean_text(data.get('title'), max_len=200)
        if not title:
            return 'Title is required'
        block.title = title
    if 'description' in data:
        block.description = clean_text(data.get('description'))
    if 'project' in data:
        block.project = clean_text(data.get('project'), max_len=100)
    if 'color' in data:
        block.color = clean_text(data.get('color'), max_len=20)
    for field_name in ('start_time', 'end_time'):
        if field_name in data:
            value = parse_datetime_value(data.get(field_name), tz=tz)
            if not value:
                return f'Invalid {field_name}'
            setattr(block, field_name, value)
    if block.end_time <= block.start_time:
        return 'end_time must be after start_time'
    if 'linked_type' in data:
        linked_type, linked_id, message = _resolve_link(data, block.user_id)
        if message:
            return message
        block.linked_type = linked_type
        block.linked_id = linked_id
    return None


def handle_time_block(block_id):
    user = get_current_user()
    if not user:
        return jsonify({'error': 'No user selected'}), 401

    block = TimeBlock.query.filter_by(id=block_id, user_id=user.id).first_or_404()

    if request.method == 'GET':
        return jsonify(block.to_dict())

    if request.method == 'DELETE':
        db.session.delete(block)
        error = commit_or_error('Could not delete time block')
        if error:
            return error
        return '', 204

    message = update_time_block_fields(block, request.get_json(silent=True) or {})
    if message:
        db.session.rollback()
        return jsonify({'error': message}), 400
    error = commit_or_error('Could not update time block')
    if error:
        return error
    return jsonify(block.to_dict())
