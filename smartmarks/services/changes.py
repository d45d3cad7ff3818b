from __future__ import annotations

from smartmarks.extensions import db
from smartmarks.models import CHANGE_CREATED, CHANGE_DELETED, Bookmark, ChangeEvent


def log_change_event(
    user_id: int, kind: str, record_id: int, payload: dict, collection="bookmarks"
) -> ChangeEvent:
    event = ChangeEvent(
        user_id=user_id,
        collection=collection,
        kind=kind,
        record_id=record_id,
        payload=payload,
    )
    db.session.add(event)
    return event


def log_created(bookmark: Bookmark) -> ChangeEvent:
    return log_change_event(
        bookmark.user_id, CHANGE_CREATED, bookmark.id, bookmark.as_dict()
    )


def log_deleted(user_id: int, bookmark_id: int) -> ChangeEvent:
    # Delete notifications only ever carry the key of the removed row.
    return log_change_event(user_id, CHANGE_DELETED, bookmark_id, {"id": bookmark_id})


def head_cursor(user_id: int) -> int:
    return (
        db.session.query(db.func.max(ChangeEvent.id)).filter_by(user_id=user_id).scalar()
        or 0
    )


def pull_changes(
    user_id: int, since: int, kind: str | None = None, limit: int = 200
) -> tuple[list[ChangeEvent], int, bool]:
    query = ChangeEvent.query.filter_by(user_id=user_id).filter(ChangeEvent.id > since)
    if kind:
        query = query.filter_by(kind=kind)
    events = query.order_by(ChangeEvent.id.asc()).limit(limit).all()
    latest_cursor = events[-1].id if events else since
    return events, latest_cursor, len(events) == limit
