import hashlib
import secrets
from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from shelfmark.extensions import db, login_manager


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


bookmark_tags = db.Table(
    "bookmark_tags",
    db.Column(
        "bookmark_id", db.Integer, db.ForeignKey("bookmarks.id"), primary_key=True
    ),
    db.Column("tag_id", db.Integer, db.ForeignKey("tags.id"), primary_key=True),
)


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)
    collections = db.relationship("Collection", backref="user", lazy=True)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class Collection(db.Model):
    __tablename__ = "collections"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    color = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": _isoformat(self.created_at),
        }


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    collection_id = db.Column(
        db.Integer, db.ForeignKey("collections.id"), nullable=True, index=True
    )

    url = db.Column(db.Text, nullable=False)
    title = db.Column(db.String(512), nullable=False)
    favicon_url = db.Column(db.Text, nullable=True)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False)
    description = db.Column(db.Text, nullable=True)
    thumbnail_url = db.Column(db.Text, nullable=True)
    author = db.Column(db.String(255), nullable=True)
    published_at = db.Column(db.String(64), nullable=True)
    domain = db.Column(db.String(255), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    collection = db.relationship("Collection", backref="bookmarks")
    tags = db.relationship("Tag", secondary=bookmark_tags, backref="bookmarks")

    __table_args__ = (
        db.UniqueConstraint("user_id", "url", name="uq_bookmark_user_url"),
        db.Index("ix_bookmark_user_created", "user_id", "created_at"),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "favicon_url": self.favicon_url or "",
            "collection_id": self.collection_id,
            "is_favorite": self.is_favorite,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "author": self.author,
            "published_at": self.published_at,
            "domain": self.domain,
            "tags": sorted(tag.name for tag in self.tags),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.UniqueConstraint("user_id", "name", name="uq_tag_user_name"),)


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
    def issue_token(prefix="sm"):
        token = f"{prefix}_{secrets.token_urlsafe(32)}"
        token_hash = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return token, token_hash


class ChangeEvent(db.Model):
    __tablename__ = "change_events"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    table_name = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.Index("ix_change_user_cursor", "user_id", "id"),)

    def as_dict(self):
        return {
            "id": self.id,
            "table": self.table_name,
            "entity_id": self.entity_id,
            "action": self.action,
            "payload": self.payload,
            "created_at": _isoformat(self.created_at),
        }
