"""
EMI Tracker - Token Authentication

Bearer-token authentication on top of Flask-Login. Clients log in once, keep
the signed JWT and send it as `Authorization: Bearer <token>` on every API
call; Flask-Login's request_loader turns a valid token into current_user.

License: MIT
"""

import datetime
import logging
from functools import wraps

import jwt
from flask import current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user

logger = logging.getLogger(__name__)

JWT_ALGORITHM = 'HS256'

login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, id, name, email, role):
        self.id = id
        self.name = name
        self.email = email
        self.role = role

    @classmethod
    def from_api(cls, user):
        return cls(id=user['id'], name=user['name'], email=user['email'], role=user['role'])


def _jwt_secret():
    return current_app.config['JWT_SECRET']


def create_token(user_id, role, expire_days=None):
    now = datetime.datetime.now(datetime.timezone.utc)
    expire_days = expire_days or current_app.config['JWT_EXPIRE_DAYS']
    payload = {
        'sub': str(user_id),
        'role': role,
        'iat': int(now.timestamp()),
        'exp': int((now + datetime.timedelta(days=expire_days)).timestamp()),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_token(token):
    """
    Decode a token.

    Returns:
        tuple: (True, payload dict) or (False, reason str)
    """
    try:
        return True, jwt.decode(token, _jwt_secret(), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return False, "Token has expired."
    except jwt.InvalidTokenError as e:
        return False, f"Invalid token: {e}"


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return None


def _engine():
    return current_app.extensions['finance_engine']


@login_manager.user_loader
def load_user(user_id):
    user = _engine().get_user(user_id)
    return User.from_api(user) if user else None


@login_manager.request_loader
def load_user_from_request(req):
    token = _bearer_token()
    if not token:
        return None
    ok, payload = verify_token(token)
    if not ok:
        logger.debug("Rejected bearer token: %s", payload)
        return None

    # Role comes from the database so demotions apply to existing tokens
    user = _engine().get_user(payload.get('sub'))
    return User.from_api(user) if user else None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify(success=False, message="Authorization required. Please log in."), 401


def role_required(*roles):
    """Reject the request with 403 unless current_user has one of the roles."""
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if roles and current_user.role not in roles:
                return jsonify(success=False, message="You do not have permission to perform this action."), 403
            return view_func(*args, **kwargs)
        return wrapper
    return decorator
