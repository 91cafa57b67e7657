from __future__ import annotations

from datetime import timedelta

from flask import current_app, g, jsonify, request
from sqlalchemy import or_

from shelfmark.api import api_bp
from shelfmark.extensions import db
from shelfmark.models import ApiToken, Bookmark, Collection, Tag, User, utcnow
from shelfmark.services.ai_metadata import generate_metadata
from shelfmark.services.analytics import collect_stats, tag_usage_counts
from shelfmark.services.bookmark_import import detect_format, parse
from shelfmark.services.changes import (
    ACTION_DELETE,
    ACTION_INSERT,
    ACTION_UPDATE,
    CHANGE_TABLES,
    DEFAULT_FEED_LIMIT,
    TABLE_BOOKMARKS,
    TABLE_COLLECTIONS,
    list_changes,
    log_change,
)
from shelfmark.services.common import (
    favicon_url,
    http_hostname,
    palette_color,
    parse_tags,
)
from shelfmark.services.errors import InvalidInput, ShelfmarkError, UpstreamError
from shelfmark.services.import_commit import commit_import
from shelfmark.services.import_normalizer import normalize
from shelfmark.services.metadata import extract
from shelfmark.services.security import api_auth_required

RECENT_DAYS = 7
MANUAL_FAVICON_SIZE = 128


@api_bp.errorhandler(ShelfmarkError)
def handle_shelfmark_error(exc: ShelfmarkError):
    if isinstance(exc, UpstreamError):
        current_app.logger.warning("%s: %s", exc.message, exc.details or "")
    return jsonify(exc.as_dict()), exc.status_code


def _to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _clean_text(value) -> str | None:
    text = (value or "").strip() if isinstance(value, str) else ""
    return text or None


def _require_http_url(value) -> tuple[str, str]:
    url = (value or "").strip() if isinstance(value, str) else ""
    if not url:
        raise InvalidInput("url is required")
    hostname = http_hostname(url)
    if not hostname:
        raise InvalidInput("Invalid URL", details="expected an absolute http(s) URL")
    return url, hostname


def _assign_tags(user_id: int, bookmark: Bookmark, tags_input):
    bookmark.tags.clear()
    for name in parse_tags(tags_input):
        tag = Tag.query.filter_by(user_id=user_id, name=name).first()
        if not tag:
            tag = Tag(user_id=user_id, name=name)
            db.session.add(tag)
        bookmark.tags.append(tag)


def _resolve_collection_id(user_id: int, value) -> int | None:
    if value in (None, ""):
        return None
    try:
        collection_id = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("collection_id must be an integer") from exc
    collection = Collection.query.filter_by(id=collection_id, user_id=user_id).first()
    if not collection:
        raise InvalidInput("collection not found")
    return collection.id


def _url_taken(user_id: int, url: str, exclude_id: int | None = None) -> bool:
    query = Bookmark.query.filter_by(user_id=user_id, url=url)
    if exclude_id is not None:
        query = query.filter(Bookmark.id != exclude_id)
    return db.session.query(query.exists()).scalar()


def _get_user_bookmark_or_404(user_id: int, bookmark_id: int):
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return None, (jsonify({"error": "bookmark not found"}), 404)
    return bookmark, None


def _get_user_collection_or_404(user_id: int, collection_id: int):
    collection = Collection.query.filter_by(id=collection_id, user_id=user_id).first()
    if not collection:
        return None, (jsonify({"error": "collection not found"}), 404)
    return collection, None


def _fetch_metadata_quietly(url: str):
    try:
        return extract(
            url,
            timeout=current_app.config["METADATA_FETCH_TIMEOUT"],
            max_bytes=current_app.config["METADATA_MAX_BYTES"],
        )
    except ShelfmarkError as exc:
        current_app.logger.warning(
            "Metadata lookup for %s skipped: %s %s", url, exc.message, exc.details or ""
        )
        return None


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Shelfmark"})


@api_bp.route("/auth/register", methods=["POST"])
def register_api():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"error": "username already exists"}), 409

    user = User(username=username, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify({"status": "created", "user_id": user.id}), 201


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    token_name = (payload.get("token_name") or "Shelfmark API Token").strip()

    user = User.query.filter_by(username=username).first()
    if not user or not user.is_active or not user.check_password(password):
        return jsonify({"error": "invalid credentials"}), 401

    token, token_hash = ApiToken.issue_token()
    row = ApiToken(user_id=user.id, name=token_name, token_hash=token_hash)
    db.session.add(row)
    db.session.commit()
    return jsonify({"token": token, "token_name": token_name, "user_id": user.id})


@api_bp.route("/metadata/fetch", methods=["POST"])
def fetch_metadata_api():
    payload = request.get_json(silent=True) or {}
    try:
        metadata = extract(
            payload.get("url"),
            timeout=current_app.config["METADATA_FETCH_TIMEOUT"],
            max_bytes=current_app.config["METADATA_MAX_BYTES"],
        )
    except ShelfmarkError:
        raise
    except Exception:
        current_app.logger.exception("Metadata fetch error")
        return jsonify({"error": "Failed to fetch metadata"}), 500
    return jsonify(metadata.as_dict())


@api_bp.route("/ai/metadata", methods=["POST"])
def ai_metadata_api():
    payload = request.get_json(silent=True) or {}
    result = generate_metadata(
        payload.get("url"),
        payload.get("title"),
        api_key=current_app.config["GEMINI_API_KEY"],
        model_name=current_app.config["GEMINI_MODEL"],
    )
    return jsonify(result.as_dict())


@api_bp.route("/import", methods=["POST"])
@api_auth_required
def import_bookmarks_api():
    user = g.api_user
    upload = request.files.get("file")
    if not upload:
        raise InvalidInput("No file provided")

    declared_format = detect_format(upload.filename)
    try:
        tree = parse(upload.read(), declared_format)
        entries, registry = normalize(tree, user.id)
        summary = commit_import(
            user.id,
            entries,
            registry,
            single_transaction=current_app.config["IMPORT_SINGLE_TRANSACTION"],
        )
    except ShelfmarkError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Import error")
        return jsonify({"error": "Failed to import bookmarks"}), 500

    return jsonify({"success": True, **summary.as_dict()})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required
def bookmarks_list_api():
    user = g.api_user
    view = (request.args.get("filter") or "all").strip().lower()
    search = (request.args.get("q") or "").strip()

    query = Bookmark.query.filter_by(user_id=user.id)
    if view == "favorites":
        query = query.filter(Bookmark.is_favorite.is_(True))
    elif view == "recent":
        query = query.filter(
            Bookmark.created_at >= utcnow() - timedelta(days=RECENT_DAYS)
        )
    elif view != "all":
        try:
            collection_id = int(view)
        except ValueError:
            return jsonify({"error": f"unknown filter: {view}"}), 400
        query = query.filter(Bookmark.collection_id == collection_id)

    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Bookmark.title.ilike(pattern), Bookmark.url.ilike(pattern))
        )

    items = query.order_by(Bookmark.created_at.desc(), Bookmark.id.desc()).all()
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    url, hostname = _require_http_url(payload.get("url"))
    if _url_taken(user.id, url):
        return jsonify({"error": "bookmark already exists"}), 409

    metadata = None
    if _to_bool(payload.get("fetch_metadata"), default=False):
        metadata = _fetch_metadata_quietly(url)

    bookmark = Bookmark(
        user_id=user.id,
        url=url,
        title=_clean_text(payload.get("title"))
        or (metadata.title if metadata else None)
        or hostname,
        favicon_url=favicon_url(hostname, size=MANUAL_FAVICON_SIZE),
        collection_id=_resolve_collection_id(user.id, payload.get("collection_id")),
        is_favorite=False,
        description=_clean_text(payload.get("description"))
        or (_clean_text(metadata.description) if metadata else None),
        thumbnail_url=_clean_text(payload.get("thumbnail_url"))
        or (_clean_text(metadata.thumbnail_url) if metadata else None),
        author=_clean_text(metadata.author) if metadata else None,
        published_at=_clean_text(metadata.published_at) if metadata else None,
        domain=hostname,
    )
    db.session.add(bookmark)
    db.session.flush()
    _assign_tags(user.id, bookmark, payload.get("tags") or [])
    log_change(user.id, TABLE_BOOKMARKS, bookmark.id, ACTION_INSERT, bookmark.as_dict())
    db.session.commit()
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["GET"])
@api_auth_required
def bookmarks_get_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["PATCH"])
@api_auth_required
def bookmarks_update_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    if "url" in payload:
        url, hostname = _require_http_url(payload.get("url"))
        if _url_taken(user.id, url, exclude_id=bookmark.id):
            return jsonify({"error": "bookmark already exists"}), 409
        bookmark.url = url
        bookmark.domain = hostname
    if "title" in payload:
        bookmark.title = _clean_text(payload.get("title")) or bookmark.domain or bookmark.url
    for field in ["description", "thumbnail_url"]:
        if field in payload:
            setattr(bookmark, field, _clean_text(payload.get(field)))
    if "is_favorite" in payload:
        bookmark.is_favorite = _to_bool(payload.get("is_favorite"))
    if "collection_id" in payload:
        bookmark.collection_id = _resolve_collection_id(
            user.id, payload.get("collection_id")
        )
    if "tags" in payload:
        _assign_tags(user.id, bookmark, payload.get("tags") or [])

    db.session.flush()
    log_change(user.id, TABLE_BOOKMARKS, bookmark.id, ACTION_UPDATE, bookmark.as_dict())
    db.session.commit()
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required
def bookmarks_delete_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error
    bookmark.tags.clear()
    log_change(user.id, TABLE_BOOKMARKS, bookmark.id, ACTION_DELETE, {"id": bookmark.id})
    db.session.delete(bookmark)
    db.session.commit()
    return jsonify({"status": "deleted"})


@api_bp.route("/bookmarks/<int:bookmark_id>/favorite", methods=["POST"])
@api_auth_required
def bookmarks_toggle_favorite_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error
    bookmark.is_favorite = not bookmark.is_favorite
    db.session.flush()
    log_change(user.id, TABLE_BOOKMARKS, bookmark.id, ACTION_UPDATE, bookmark.as_dict())
    db.session.commit()
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>/tags", methods=["PUT"])
@api_auth_required
def bookmarks_set_tags_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error
    payload = request.get_json(silent=True) or {}
    _assign_tags(user.id, bookmark, payload.get("tags") or [])
    db.session.flush()
    log_change(user.id, TABLE_BOOKMARKS, bookmark.id, ACTION_UPDATE, bookmark.as_dict())
    db.session.commit()
    return jsonify(bookmark.as_dict())


@api_bp.route("/collections", methods=["GET"])
@api_auth_required
def collections_list():
    user = g.api_user
    items = (
        Collection.query.filter_by(user_id=user.id)
        .order_by(Collection.created_at.asc(), Collection.id.asc())
        .all()
    )
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/collections", methods=["POST"])
@api_auth_required
def collections_create():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        return jsonify({"error": "collection name is required"}), 400

    existing = Collection.query.filter_by(user_id=user.id).count()
    collection = Collection(user_id=user.id, name=name, color=palette_color(existing))
    db.session.add(collection)
    db.session.flush()
    log_change(
        user.id, TABLE_COLLECTIONS, collection.id, ACTION_INSERT, collection.as_dict()
    )
    db.session.commit()
    return jsonify(collection.as_dict()), 201


@api_bp.route("/collections/<int:collection_id>", methods=["PATCH"])
@api_auth_required
def collections_update(collection_id: int):
    user = g.api_user
    collection, error = _get_user_collection_or_404(user.id, collection_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    if "name" in payload:
        collection.name = (payload.get("name") or "").strip() or collection.name
    if "color" in payload:
        collection.color = (payload.get("color") or "").strip() or collection.color
    log_change(
        user.id, TABLE_COLLECTIONS, collection.id, ACTION_UPDATE, collection.as_dict()
    )
    db.session.commit()
    return jsonify(collection.as_dict())


@api_bp.route("/collections/<int:collection_id>", methods=["DELETE"])
@api_auth_required
def collections_delete(collection_id: int):
    user = g.api_user
    collection, error = _get_user_collection_or_404(user.id, collection_id)
    if error:
        return error

    for bookmark in list(collection.bookmarks):
        bookmark.collection_id = None
        log_change(
            user.id, TABLE_BOOKMARKS, bookmark.id, ACTION_UPDATE, bookmark.as_dict()
        )
    log_change(
        user.id, TABLE_COLLECTIONS, collection.id, ACTION_DELETE, {"id": collection.id}
    )
    db.session.delete(collection)
    db.session.commit()
    return jsonify({"status": "deleted"})


@api_bp.route("/tags", methods=["GET"])
@api_auth_required
def tags_list():
    user = g.api_user
    tags = Tag.query.filter_by(user_id=user.id).order_by(Tag.name.asc()).all()
    return jsonify({"items": [{"id": tag.id, "name": tag.name} for tag in tags]})


@api_bp.route("/tags/popular", methods=["GET"])
@api_auth_required
def tags_popular():
    user = g.api_user
    limit = request.args.get("limit", type=int) or 15
    items = tag_usage_counts(
        user.id, search=request.args.get("search"), limit=max(1, min(limit, 100))
    )
    return jsonify({"items": items})


@api_bp.route("/analytics", methods=["GET"])
@api_auth_required
def analytics_api():
    user = g.api_user
    return jsonify(collect_stats(user.id))


@api_bp.route("/changes", methods=["GET"])
@api_auth_required
def changes_api():
    user = g.api_user
    cursor = request.args.get("cursor", type=int) or 0
    table_name = (request.args.get("table") or "").strip() or None
    if table_name and table_name not in CHANGE_TABLES:
        return jsonify({"error": f"unknown table: {table_name}"}), 400
    limit = request.args.get("limit", type=int) or DEFAULT_FEED_LIMIT
    events, next_cursor = list_changes(
        user.id, cursor=cursor, table_name=table_name, limit=limit
    )
    return jsonify(
        {"items": [event.as_dict() for event in events], "next_cursor": next_cursor}
    )
