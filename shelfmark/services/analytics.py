from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from shelfmark.extensions import db
from shelfmark.models import Bookmark, Collection, Tag, bookmark_tags, utcnow

POPULAR_TAGS_LIMIT = 15
TOP_DOMAINS_LIMIT = 10


def tag_usage_counts(
    user_id: int, search: str | None = None, limit: int = POPULAR_TAGS_LIMIT
) -> list[dict]:
    usage = func.count(bookmark_tags.c.bookmark_id).label("usage")
    query = (
        db.session.query(Tag.name, usage)
        .join(bookmark_tags, bookmark_tags.c.tag_id == Tag.id)
        .filter(Tag.user_id == user_id)
        .group_by(Tag.id, Tag.name)
        .order_by(usage.desc(), Tag.name.asc())
    )
    if search:
        query = query.filter(Tag.name.contains(search.strip().lower()))
    return [{"tag": name, "count": count} for name, count in query.limit(limit)]


def top_domains(user_id: int, limit: int = TOP_DOMAINS_LIMIT) -> list[dict]:
    hits = func.count(Bookmark.id).label("hits")
    rows = (
        db.session.query(Bookmark.domain, hits)
        .filter(Bookmark.user_id == user_id, Bookmark.domain.is_not(None))
        .group_by(Bookmark.domain)
        .order_by(hits.desc(), Bookmark.domain.asc())
        .limit(limit)
    )
    return [{"domain": domain, "count": count} for domain, count in rows]


def _created_since(user_id: int, since: datetime) -> int:
    return Bookmark.query.filter(
        Bookmark.user_id == user_id, Bookmark.created_at >= since
    ).count()


def collect_stats(user_id: int, now: datetime | None = None) -> dict:
    now = now or utcnow()
    used_tags = (
        db.session.query(func.count(func.distinct(Tag.id)))
        .join(bookmark_tags, bookmark_tags.c.tag_id == Tag.id)
        .filter(Tag.user_id == user_id)
        .scalar()
    )
    return {
        "total": Bookmark.query.filter_by(user_id=user_id).count(),
        "favorites": Bookmark.query.filter_by(user_id=user_id, is_favorite=True).count(),
        "collections": Collection.query.filter_by(user_id=user_id).count(),
        "tags": used_tags or 0,
        "this_week": _created_since(user_id, now - timedelta(days=7)),
        "this_month": _created_since(user_id, now - timedelta(days=30)),
        "popular_tags": tag_usage_counts(user_id),
        "top_domains": top_domains(user_id),
    }
