from __future__ import annotations

from shelfmark.extensions import db
from shelfmark.models import ChangeEvent

TABLE_BOOKMARKS = "bookmarks"
TABLE_COLLECTIONS = "collections"
CHANGE_TABLES = {TABLE_BOOKMARKS, TABLE_COLLECTIONS}

ACTION_INSERT = "insert"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"

DEFAULT_FEED_LIMIT = 200
MAX_FEED_LIMIT = 1000


def log_change(
    user_id: int, table_name: str, entity_id: int | None, action: str, payload: dict
) -> ChangeEvent:
    event = ChangeEvent(
        user_id=user_id,
        table_name=table_name,
        entity_id=entity_id,
        action=action,
        payload=payload,
    )
    db.session.add(event)
    return event


def list_changes(
    user_id: int,
    cursor: int = 0,
    table_name: str | None = None,
    limit: int = DEFAULT_FEED_LIMIT,
) -> tuple[list[ChangeEvent], int]:
    limit = max(1, min(limit, MAX_FEED_LIMIT))
    query = ChangeEvent.query.filter(
        ChangeEvent.user_id == user_id, ChangeEvent.id > cursor
    )
    if table_name:
        query = query.filter(ChangeEvent.table_name == table_name)
    events = query.order_by(ChangeEvent.id.asc()).limit(limit).all()
    next_cursor = events[-1].id if events else cursor
    return events, next_cursor


def apply_change(rows: dict, event: dict) -> dict:
    """
    Apply one feed event to a client-side ``{row_id: row}`` view.

    Inserts and updates upsert the payload, deletes drop the row. Replaying an
    event leaves the view unchanged.
    """
    entity_id = event.get("entity_id")
    if entity_id is None:
        return rows
    if event.get("action") == ACTION_DELETE:
        rows.pop(entity_id, None)
    else:
        rows[entity_id] = dict(event.get("payload") or {})
    return rows
