from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from shelfmark.extensions import db
from shelfmark.models import Bookmark, Collection
from shelfmark.services.changes import (
    ACTION_INSERT,
    TABLE_BOOKMARKS,
    TABLE_COLLECTIONS,
    log_change,
)
from shelfmark.services.import_normalizer import CollectionSpec, NormalizedBookmark


@dataclass
class ImportSummary:
    imported: int
    skipped: int
    total: int

    def as_dict(self) -> dict:
        return asdict(self)


def existing_urls(user_id: int) -> set[str]:
    rows = db.session.query(Bookmark.url).filter(Bookmark.user_id == user_id).all()
    return {row.url for row in rows}


def partition_new(
    bookmarks: list[NormalizedBookmark], known: set[str]
) -> tuple[list[NormalizedBookmark], int]:
    """Split entries into unseen ones and a count of URLs already stored or seen earlier in the file."""
    seen = set(known)
    fresh = []
    for entry in bookmarks:
        if entry.url in seen:
            continue
        seen.add(entry.url)
        fresh.append(entry)
    return fresh, len(bookmarks) - len(fresh)


def _insert_collection(user_id: int, spec: CollectionSpec) -> int:
    collection = Collection(user_id=user_id, name=spec.name, color=spec.color)
    db.session.add(collection)
    db.session.flush()
    log_change(
        user_id, TABLE_COLLECTIONS, collection.id, ACTION_INSERT, collection.as_dict()
    )
    return collection.id


def _insert_bookmarks(user_id: int, rows: list[Bookmark]) -> int:
    db.session.add_all(rows)
    db.session.flush()
    for bookmark in rows:
        log_change(
            user_id, TABLE_BOOKMARKS, bookmark.id, ACTION_INSERT, bookmark.as_dict()
        )
    return len(rows)


def _bookmark_row(
    entry: NormalizedBookmark, collection_ids: dict[str, int]
) -> Bookmark:
    collection_id = collection_ids.get(entry.collection) if entry.collection else None
    return Bookmark(
        user_id=entry.user_id,
        url=entry.url,
        title=entry.title,
        favicon_url=entry.favicon_url,
        collection_id=collection_id,
        is_favorite=entry.is_favorite,
        domain=entry.domain,
        tags=[],
    )


def _commit_in_phases(
    user_id: int,
    fresh: list[NormalizedBookmark],
    registry: dict[str, CollectionSpec],
) -> int:
    collection_ids: dict[str, int] = {}
    for name, spec in registry.items():
        try:
            collection_ids[name] = _insert_collection(user_id, spec)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            collection_ids.pop(name, None)
            current_app.logger.warning(
                "Import: collection %r for user %s was not created: %s",
                name,
                user_id,
                exc,
            )

    if not fresh:
        return 0

    rows = [_bookmark_row(entry, collection_ids) for entry in fresh]
    try:
        imported = _insert_bookmarks(user_id, rows)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Import: batch insert of %s bookmarks for user %s failed: %s",
            len(rows),
            user_id,
            exc,
        )
        return 0
    return imported


def _commit_atomically(
    user_id: int,
    fresh: list[NormalizedBookmark],
    registry: dict[str, CollectionSpec],
) -> int:
    try:
        collection_ids = {
            name: _insert_collection(user_id, spec) for name, spec in registry.items()
        }
        rows = [_bookmark_row(entry, collection_ids) for entry in fresh]
        imported = _insert_bookmarks(user_id, rows) if rows else 0
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Import: transaction for user %s rolled back: %s", user_id, exc
        )
        return 0
    return imported


def commit_import(
    user_id: int,
    bookmarks: list[NormalizedBookmark],
    registry: dict[str, CollectionSpec],
    single_transaction: bool = False,
) -> ImportSummary:
    """
    Drop bookmarks whose URL the user already has, then store the rest.

    URLs are compared as exact strings; a URL repeated within the file is
    kept once, at its first position, and later copies count as skipped. By
    default collections are committed one at a time before the single
    bookmark batch, so a failed batch leaves the new collections in place and
    reports ``imported=0``. With ``single_transaction`` both phases share one
    commit.
    """
    fresh, skipped = partition_new(bookmarks, existing_urls(user_id))

    if single_transaction:
        imported = _commit_atomically(user_id, fresh, registry)
    else:
        imported = _commit_in_phases(user_id, fresh, registry)

    current_app.logger.info(
        "Import for user %s: %s imported, %s skipped, %s total",
        user_id,
        imported,
        skipped,
        len(bookmarks),
    )
    return ImportSummary(imported=imported, skipped=skipped, total=len(bookmarks))
