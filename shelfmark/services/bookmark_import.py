from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import cast

from bs4 import BeautifulSoup, Tag

from shelfmark.services.errors import MalformedInput, UnsupportedFormat

FORMAT_HTML = "html"
FORMAT_JSON = "json"
SUPPORTED_FORMATS = {FORMAT_HTML, FORMAT_JSON}

ROOT_FOLDER_NAME = "root"
UNNAMED_FOLDER = "Unnamed"

MOZ_PLACE = "text/x-moz-place"
MOZ_CONTAINER = "text/x-moz-place-container"

UNSUPPORTED_MESSAGE = "Unsupported file format. Please upload HTML or JSON."

_HEADINGS = ["h3", "h2", "h1"]


@dataclass
class RawBookmark:
    title: str
    url: str
    added_at: str | None = None
    icon: str | None = None


@dataclass
class FolderNode:
    name: str
    bookmarks: list[RawBookmark] = field(default_factory=list)
    subfolders: list[FolderNode] = field(default_factory=list)


def detect_format(filename: str | None) -> str:
    name = (filename or "").strip().lower()
    if name.endswith(".html"):
        return FORMAT_HTML
    if name.endswith(".json"):
        return FORMAT_JSON
    raise UnsupportedFormat(UNSUPPORTED_MESSAGE)


def _iter_dt_entries(dl: Tag) -> list[Tag]:
    entries: list[Tag] = []
    for dt in dl.find_all("dt"):
        if not isinstance(dt, Tag):
            continue
        parent_dl = dt.find_parent("dl")
        if parent_dl is dl:
            entries.append(cast(Tag, dt))
    return entries


def _find_nested_dl(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    # lxml may close the <dt> early and hoist the folder's list next to it
    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _find_anchor_in_dt(dt: Tag) -> Tag | None:
    for anchor in dt.find_all("a"):
        if isinstance(anchor, Tag) and anchor.find_parent("dt") is dt:
            return anchor
    return None


def _find_heading_in_dt(dt: Tag) -> Tag | None:
    for heading in dt.find_all(_HEADINGS):
        if isinstance(heading, Tag) and heading.find_parent("dt") is dt:
            return heading
    return None


def _optional_attr(tag: Tag, name: str) -> str | None:
    value = tag.get(name)
    return value if isinstance(value, str) else None


def _leaf_from_anchor(anchor: Tag) -> RawBookmark:
    return RawBookmark(
        title=anchor.get_text().strip(),
        url=_optional_attr(anchor, "href") or "",
        added_at=_optional_attr(anchor, "add_date"),
        icon=_optional_attr(anchor, "icon"),
    )


def parse_html(html: str) -> FolderNode:
    root = FolderNode(name=ROOT_FOLDER_NAME)
    try:
        soup = BeautifulSoup(html, "lxml")
    except Exception as exc:
        raise MalformedInput("Failed to import bookmarks", details=str(exc)) from exc

    first_dl = soup.find("dl")
    if not isinstance(first_dl, Tag):
        return root

    stack: list[tuple[Tag, FolderNode]] = [(first_dl, root)]
    while stack:
        dl, folder = stack.pop()
        for dt in _iter_dt_entries(dl):
            anchor = _find_anchor_in_dt(dt)
            if anchor is not None:
                folder.bookmarks.append(_leaf_from_anchor(anchor))
                continue

            nested_dl = _find_nested_dl(dt)
            if nested_dl is None:
                continue
            heading = _find_heading_in_dt(dt)
            name = heading.get_text().strip() if heading is not None else ""
            child = FolderNode(name=name or UNNAMED_FOLDER)
            folder.subfolders.append(child)
            stack.append((nested_dl, child))
    return root


def _moz_children(node: dict) -> list:
    children = node.get("children")
    return children if isinstance(children, list) else []


def parse_json(text: str) -> FolderNode:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MalformedInput("Failed to import bookmarks", details=str(exc)) from exc
    if not isinstance(data, dict):
        raise MalformedInput(
            "Failed to import bookmarks", details="expected a JSON object at the root"
        )

    root = FolderNode(name=ROOT_FOLDER_NAME)
    stack: list[tuple[list, FolderNode]] = [(_moz_children(data), root)]
    while stack:
        nodes, folder = stack.pop()
        for node in nodes:
            if not isinstance(node, dict):
                continue
            node_type = node.get("type")
            if node_type == MOZ_PLACE:
                added = node.get("dateAdded")
                folder.bookmarks.append(
                    RawBookmark(
                        title=node.get("title") or "",
                        url=node.get("uri") or "",
                        added_at=str(added) if added is not None else None,
                    )
                )
            elif node_type == MOZ_CONTAINER:
                child = FolderNode(name=node.get("title") or UNNAMED_FOLDER)
                folder.subfolders.append(child)
                stack.append((_moz_children(node), child))
    return root


def parse(content: bytes, declared_format: str) -> FolderNode:
    """
    Parse a browser bookmark export into a folder tree rooted at "root".

    HTML exports follow the Netscape bookmark layout; JSON exports follow the
    Firefox places backup layout. Both yield the same tree shape.
    """
    if declared_format not in SUPPORTED_FORMATS:
        raise UnsupportedFormat(UNSUPPORTED_MESSAGE)
    if isinstance(content, bytes):
        text = content.decode("utf-8", errors="ignore")
    else:
        text = content
    if declared_format == FORMAT_HTML:
        return parse_html(text)
    return parse_json(text)
