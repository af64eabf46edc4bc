"""
Authentication routes: first-run setup, login, logout and current user.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf

from volbackup import db
from volbackup.audit import record_event
from volbackup.models import User
from volbackup.auth import hash_password, verify_password, validate_password_strength, UserModel


bp = Blueprint('auth', __name__, url_prefix='/api/auth')


@bp.route('/status', methods=['GET'])
def status():
    """Whether setup is still needed and whether the caller is logged in."""
    return jsonify({
        'setup_required': User.query.count() == 0,
        'authenticated': current_user.is_authenticated,
        'csrf_token': generate_csrf()
    })


@bp.route('/setup', methods=['POST'])
def setup():
    """
    Create the first (admin) account.
    Only accessible if no users exist in the database.
    """
    if User.query.count() > 0:
        return jsonify({'error': 'Setup already completed'}), 400

    data = request.get_json() or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    password_confirm = data.get('password_confirm', password)

    if not username:
        return jsonify({'error': 'Username is required'}), 400

    if password != password_confirm:
        return jsonify({'error': 'Passwords do not match'}), 400

    is_valid, error_msg = validate_password_strength(password)
    if not is_valid:
        return jsonify({'error': error_msg}), 400

    user = User(username=username, password_hash=hash_password(password), role='admin')
    db.session.add(user)
    db.session.commit()

    record_event('success', 'auth', f"Admin account {username} created", user_id=username)
    return jsonify({'id': user.id, 'username': user.username}), 201


@bp.route('/login', methods=['POST'])
def login():
    """Login handler."""
    data = request.get_json() or {}
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'error': 'Username and password are required'}), 400

    user = User.query.filter_by(username=username).first()

    if not user or not verify_password(user.password_hash, password):
        record_event('warning', 'auth', "Failed login attempt", details={'username': username})
        return jsonify({'error': 'Invalid username or password'}), 401

    login_user(UserModel(user), remember=True)
    record_event('info', 'auth', f"User {username} logged in", user_id=username)
    return jsonify({'id': user.id, 'username': user.username, 'role': user.role})


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """Logout handler."""
    username = current_user.username
    logout_user()
    record_event('info', 'auth', f"User {username} logged out", user_id=username)
    return jsonify({'message': 'Logged out'})


@bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'id': current_user.id, 'username': current_user.username, 'role': current_user.role})
