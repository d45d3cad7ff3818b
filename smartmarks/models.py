import hashlib
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin

from smartmarks.extensions import db, login_manager


CHANGE_CREATED = "created"
CHANGE_DELETED = "deleted"
CHANGE_KINDS = {CHANGE_CREATED, CHANGE_DELETED}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(320), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=True)
    oauth_provider = db.Column(db.String(64), nullable=True)
    oauth_subject = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)

    __table_args__ = (
        db.UniqueConstraint(
            "oauth_provider", "oauth_subject", name="uq_user_oauth_identity"
        ),
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def as_identity(self):
        return {"id": self.id, "email": self.email, "full_name": self.full_name}


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    title = db.Column(db.String(512), nullable=False)
    url = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.Index("ix_bookmark_user_created", "user_id", "created_at"),)

    def as_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "user_id": self.user_id,
            "created_at": isoformat_utc(self.created_at),
        }


class ApiToken(db.Model):
    __tablename__ = "api_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(120), nullable=False)
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User", backref="api_tokens")

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @classmethod
    def issue_token(cls, prefix="sm"):
        token = f"{prefix}_{secrets.token_urlsafe(32)}"
        return token, cls.hash_token(token)


class ChangeEvent(db.Model):
    __tablename__ = "change_events"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    collection = db.Column(db.String(64), nullable=False, default="bookmarks")
    kind = db.Column(db.String(32), nullable=False)
    record_id = db.Column(db.Integer, nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.Index("ix_change_user_cursor", "user_id", "id"),)

    def as_dict(self):
        return {
            "cursor": self.id,
            "collection": self.collection,
            "kind": self.kind,
            "record_id": self.record_id,
            "payload": self.payload,
            "created_at": isoformat_utc(self.created_at),
        }
