"""User selection and session routes."""

import re

from flask import jsonify, request, session

from backend.app_core_logic import commit_or_error, get_current_user
from models import db, User


def list_users():
    users = User.query.order_by(User.username).all()
    return jsonify([u.to_dict() for u in users])


def logout_user():
    session.pop('user_id', None)
    return jsonify({'success': True})


def set_user(user_id):
    data = request.get_json(silent=True) or {}
    pin = str(data.get('pin', '')).strip()

    if not re.fullmatch(r'\d{4}', pin):
        return jsonify({'error': 'A 4-digit PIN is required'}), 400

    user = db.get_or_404(User, user_id)
    pin_created = False

    if not user.pin_hash:
        user.set_pin(pin)
        error = commit_or_error('Could not save PIN')
        if error:
            return error
        pin_created = True
    elif not user.check_pin(pin):
        return jsonify({'error': 'Invalid PIN'}), 401

    session['user_id'] = user.id
    session.permanent = True
    return jsonify({'success': True, 'username': user.username, 'user_id': user.id, 'pin_created': pin_created})


def create_user():
    data = request.get_json(silent=True) or {}
    username = str(data.get('username') or '').strip()
    pin = str(data.get('pin', '')).strip()

    if not username:
        return jsonify({'error': 'Username is required'}), 400

    if not re.fullmatch(r'\d{4}', pin):
        return jsonify({'error': 'PIN must be exactly 4 digits'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=username)
    user.set_pin(pin)
    db.session.add(user)
    error = commit_or_error('Could not create user')
    if error:
        return error

    session['user_id'] = user.id
    session.permanent = True

    return jsonify({'success': True, 'user_id': user.id, 'username': user.username}), 201


def current_user_info():
    user = get_current_user()
    if user:
        return jsonify({'user_id': user.id, 'username': user.username})
    return jsonify({'user_id': None, 'username': None})
