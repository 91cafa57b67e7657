from __future__ import annotations

from dataclasses import dataclass

from shelfmark.services.bookmark_import import ROOT_FOLDER_NAME, FolderNode
from shelfmark.services.common import favicon_url, http_hostname, palette_color


@dataclass
class CollectionSpec:
    name: str
    color: str


@dataclass
class NormalizedBookmark:
    user_id: int
    url: str
    title: str
    favicon_url: str
    collection: str | None
    domain: str
    is_favorite: bool = False
    added_at: str | None = None


def register_collection(registry: dict[str, CollectionSpec], name: str) -> None:
    if name not in registry:
        registry[name] = CollectionSpec(name=name, color=palette_color(len(registry)))


def normalize(
    tree: FolderNode,
    user_id: int,
    registry: dict[str, CollectionSpec] | None = None,
) -> tuple[list[NormalizedBookmark], dict[str, CollectionSpec]]:
    """
    Flatten a parsed folder tree into bookmark rows plus a collection registry.

    Each bookmark is attributed to its nearest enclosing named folder. Folders
    named "" or "root" inherit their parent's collection. The registry keeps
    first-seen order, which also decides each collection's palette color.
    Leaves without a usable http(s) URL are dropped.
    """
    if registry is None:
        registry = {}
    bookmarks: list[NormalizedBookmark] = []

    # (folder, inherited collection name, is the tree root)
    stack: list[tuple[FolderNode, str | None, bool]] = [(tree, None, True)]
    while stack:
        folder, inherited, is_root = stack.pop()
        current = inherited
        if not is_root and folder.name and folder.name != ROOT_FOLDER_NAME:
            register_collection(registry, folder.name)
            current = folder.name

        for raw in folder.bookmarks:
            hostname = http_hostname(raw.url)
            if not hostname:
                continue
            bookmarks.append(
                NormalizedBookmark(
                    user_id=user_id,
                    url=raw.url,
                    title=raw.title if raw.title.strip() else hostname,
                    favicon_url=raw.icon or favicon_url(hostname),
                    collection=current,
                    domain=hostname,
                    added_at=raw.added_at,
                )
            )

        for child in reversed(folder.subfolders):
            stack.append((child, current, False))

    return bookmarks, registry
