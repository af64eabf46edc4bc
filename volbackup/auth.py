"""
Authentication utilities for Flask-Login integration and password management.
"""

import hmac
from functools import wraps

from flask import current_app, jsonify, request
from flask_login import UserMixin, current_user
from werkzeug.security import generate_password_hash, check_password_hash

from volbackup.models import User

INTERNAL_TOKEN_HEADER = 'X-Internal-Scheduler-Token'


def hash_password(password: str) -> str:
    """
    Hash a password using werkzeug's pbkdf2:sha256.

    Args:
        password: Plain text password

    Returns:
        Hashed password string
    """
    return generate_password_hash(password, method='pbkdf2:sha256')


def verify_password(password_hash: str, password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        password_hash: Stored password hash
        password: Plain text password to verify

    Returns:
        True if password matches, False otherwise
    """
    return check_password_hash(password_hash, password)


def validate_password_strength(password: str) -> tuple[bool, str]:
    """
    Validate password meets security requirements.

    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit

    Args:
        password: Password to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if not any(c.isalpha() for c in password):
        return False, "Password must contain at least one letter"

    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one digit"

    return True, ""


class UserModel(UserMixin):
    """
    Flask-Login user wrapper for the User database model.
    """

    def __init__(self, user: User):
        self.user = user

    def get_id(self):
        """Return user ID as required by Flask-Login."""
        return str(self.user.id)

    @property
    def id(self):
        return self.user.id

    @property
    def username(self):
        return self.user.username

    @property
    def role(self):
        return self.user.role


def is_internal_request() -> bool:
    """True when the request carries the configured internal credential."""
    expected = current_app.config.get('INTERNAL_SCHEDULER_TOKEN')
    supplied = request.headers.get(INTERNAL_TOKEN_HEADER)
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected, supplied)


def api_auth_required(view):
    """
    Require a logged-in session or the internal credential header.

    Returns a JSON 401 instead of redirecting to a login page.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        if is_internal_request() or current_user.is_authenticated:
            return view(*args, **kwargs)
        return jsonify({'error': 'Authentication required'}), 401
    return wrapper


def acting_user_id():
    """Username for audit entries: the session user, or 'scheduler' for internal calls."""
    if current_user.is_authenticated:
        return current_user.username
    if is_internal_request():
        return 'scheduler'
    return None
