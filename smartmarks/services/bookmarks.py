from __future__ import annotations

from smartmarks.extensions import db
from smartmarks.models import Bookmark
from smartmarks.services.changes import log_created, log_deleted


class BookmarkInputError(ValueError):
    pass


def clean_text(value) -> str:
    return str(value or "").strip()


def list_bookmarks(user_id: int) -> list[Bookmark]:
    return (
        Bookmark.query.filter_by(user_id=user_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .all()
    )


def create_bookmark(user_id: int, title, url) -> Bookmark:
    title = clean_text(title)
    url = clean_text(url)
    if not title or not url:
        raise BookmarkInputError("title and url are required")

    bookmark = Bookmark(user_id=user_id, title=title, url=url)
    db.session.add(bookmark)
    db.session.flush()
    log_created(bookmark)
    db.session.commit()
    return bookmark


def delete_bookmark(user_id: int, bookmark_id: int) -> bool:
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return False
    db.session.delete(bookmark)
    log_deleted(user_id, bookmark_id)
    db.session.commit()
    return True
