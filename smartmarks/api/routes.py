from __future__ import annotations

from flask import current_app, g, jsonify, request
from flask_login import current_user

from smartmarks.api import api_bp
from smartmarks.extensions import db
from smartmarks.models import CHANGE_KINDS, ApiToken, utcnow
from smartmarks.services.bookmarks import (
    BookmarkInputError,
    create_bookmark,
    delete_bookmark,
    list_bookmarks,
)
from smartmarks.services.changes import head_cursor, pull_changes
from smartmarks.services.security import (
    active_token_row,
    api_auth_required,
    bearer_token_from_request,
)


def issue_api_token(user_id: int, token_name: str) -> str:
    token, token_hash = ApiToken.issue_token()
    db.session.add(ApiToken(user_id=user_id, name=token_name, token_hash=token_hash))
    db.session.commit()
    return token


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "smartmarks"})


@api_bp.route("/auth/session", methods=["GET"])
@api_auth_required()
def auth_session():
    return jsonify({"user": g.api_user.as_identity()})


@api_bp.route("/auth/token", methods=["POST"])
def auth_token_create():
    if not current_user.is_authenticated:
        return jsonify({"error": "sign in with the browser first"}), 401
    payload = request.get_json(silent=True) or {}
    token_name = (payload.get("token_name") or "smartmarks CLI").strip()
    token = issue_api_token(current_user.id, token_name)
    return jsonify({"token": token, "token_name": token_name, "user_id": current_user.id})


@api_bp.route("/auth/token/revoke", methods=["POST"])
@api_auth_required(token_only=True)
def auth_token_revoke():
    token_row = active_token_row(bearer_token_from_request())
    if token_row:
        token_row.revoked_at = utcnow()
        db.session.commit()
    return jsonify({"status": "revoked"})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    user = g.api_user
    items = list_bookmarks(user.id)
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    try:
        bookmark = create_bookmark(user.id, payload.get("title"), payload.get("url"))
    except BookmarkInputError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: int):
    user = g.api_user
    if not delete_bookmark(user.id, bookmark_id):
        return jsonify({"error": "bookmark not found"}), 404
    return jsonify({"status": "deleted", "id": bookmark_id})


@api_bp.route("/changes/head", methods=["GET"])
@api_auth_required()
def changes_head():
    return jsonify({"cursor": head_cursor(g.api_user.id)})


@api_bp.route("/changes", methods=["GET"])
@api_auth_required()
def changes_pull():
    user = g.api_user
    since = request.args.get("since", default=0, type=int)
    kind = (request.args.get("kind") or "").strip().lower() or None
    if kind and kind not in CHANGE_KINDS:
        return jsonify({"error": f"unsupported kind: {kind}"}), 400
    max_limit = current_app.config["CHANGE_PULL_LIMIT"]
    limit = request.args.get("limit", default=max_limit, type=int)
    limit = max(1, min(limit, max_limit))

    events, latest_cursor, has_more = pull_changes(user.id, since, kind, limit)
    return jsonify(
        {
            "events": [event.as_dict() for event in events],
            "cursor": latest_cursor,
            "has_more": has_more,
        }
    )
