from functools import wraps

from flask import g, jsonify, request
from flask_login import current_user

from smartmarks.extensions import db
from smartmarks.models import ApiToken, utcnow


def bearer_token_from_request() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    return token or None


def active_token_row(token: str | None):
    if not token:
        return None
    token_row = ApiToken.query.filter_by(token_hash=ApiToken.hash_token(token)).first()
    if not token_row or token_row.revoked_at is not None:
        return None
    if not token_row.user.is_active:
        return None
    return token_row


def _user_from_bearer_token():
    token_row = active_token_row(bearer_token_from_request())
    if not token_row:
        return None
    token_row.last_used_at = utcnow()
    db.session.commit()
    return token_row.user


def get_authenticated_api_user(token_only=False):
    if not token_only and current_user.is_authenticated:
        return current_user
    return _user_from_bearer_token()


def api_auth_required(token_only=False):
    def decorator(func):
        @wraps(func)
        def wrapped(*args, **kwargs):
            user = get_authenticated_api_user(token_only=token_only)
            if not user:
                return jsonify({"error": "authentication required"}), 401
            g.api_user = user
            return func(*args, **kwargs)

        return wrapped

    return decorator
