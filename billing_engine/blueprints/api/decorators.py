"""
JWT authentication decorators for the REST API.
Tokens are issued by the identity provider; `sub` carries the profile id.
"""
from functools import wraps
from datetime import datetime, timedelta, timezone

import jwt
from flask import request, jsonify, current_app

from billing_engine.extensions import db
from billing_engine.models.profile import UserProfile


def _jwt_secret():
    return current_app.config.get('JWT_SECRET_KEY') or current_app.config['SECRET_KEY']


def create_access_token(user_id, expires_minutes=None):
    """Issue an access token for a profile id (used by tests and local tooling)."""
    if expires_minutes is None:
        expires_minutes = current_app.config.get('JWT_ACCESS_TOKEN_MINUTES', 60)
    issued = datetime.now(timezone.utc)
    return jwt.encode(
        {'sub': str(user_id), 'type': 'access', 'iat': issued,
         'exp': issued + timedelta(minutes=expires_minutes)},
        _jwt_secret(),
        algorithm='HS256',
    )


def decode_token(token):
    """Return the token payload, or None when it is expired or malformed."""
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=['HS256'])
    except jwt.InvalidTokenError:
        return None


def _unauthorized(code, message):
    return jsonify({'error': {'code': code, 'message': message}}), 401


def get_current_api_user():
    """Extract the profile from the Authorization header. Returns (profile, error_response)."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None, _unauthorized('missing_token', 'Authorization header with Bearer token required.')

    payload = decode_token(auth_header[7:])
    if payload is None:
        return None, _unauthorized('invalid_token', 'Token is invalid or expired.')

    if payload.get('type') != 'access':
        return None, _unauthorized('wrong_token_type', 'Access token required.')

    user_id = payload.get('sub')
    if not user_id:
        return None, _unauthorized('invalid_token', 'Token contains no user ID.')

    profile = db.session.get(UserProfile, str(user_id))
    if profile is None:
        return None, _unauthorized('user_not_found', 'User not found.')

    return profile, None


def jwt_required(f):
    """Decorator: require valid JWT access token."""
    @wraps(f)
    def decorated(*args, **kwargs):
        profile, error = get_current_api_user()
        if error:
            return error
        request.api_user = profile
        return f(*args, **kwargs)
    return decorated
