"""Inventory of the playlist documents held in a store directory."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from .errors import StoreAccessError
from .extraction import REMOTE_ITEM, Tag, element_text, scan_tags
from .formats import detect_format
from .models import StoreEntry
from .store import VersionedStore

logger = logging.getLogger(__name__)

_CHANNEL_FIELDS = ("title", "description", "author", "pubdate", "lastbuilddate")
SOURCE_FEED_PURPOSE = "source-feed"


@dataclass
class PlaylistSummary:
    playlist_id: str
    path: str
    title: str
    format: str
    item_count: int
    remote_item_count: int
    description: str = ""
    author: str = ""
    source_url: Optional[str] = None
    public_url: Optional[str] = None
    published: str = ""
    last_build_date: str = ""

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _channel_values(document: str) -> Dict[str, str]:
    """First channel-level value of each simple field, plus the source feed."""
    values: Dict[str, str] = {}
    depth = 0
    start: Optional[Tag] = None
    for tag in scan_tags(document):
        if tag.name in ("item", "image"):
            if not tag.self_closing:
                depth += -1 if tag.closing else 1
            continue
        if depth:
            continue
        if tag.name == "podcast:txt":
            if tag.opening and tag.attr("purpose") == SOURCE_FEED_PURPOSE:
                start = tag
            elif tag.closing and start is not None:
                values.setdefault("source", element_text(document[start.end : tag.start]))
                start = None
        elif tag.name in _CHANNEL_FIELDS:
            if tag.opening:
                start = tag
            elif tag.closing and start is not None and start.name == tag.name:
                values.setdefault(tag.name, element_text(document[start.end : tag.start]))
                start = None
    return values


def summarize_playlist(
    entry: StoreEntry, content: str, public_url: Optional[str] = None
) -> PlaylistSummary:
    playlist_id = entry.name[: -len(".xml")] if entry.name.endswith(".xml") else entry.name
    values = _channel_values(content)
    item_count = 0
    remote_item_count = 0
    for tag in scan_tags(content):
        if tag.name == "item" and tag.opening:
            item_count += 1
        elif tag.name == REMOTE_ITEM and not tag.closing:
            remote_item_count += 1

    return PlaylistSummary(
        playlist_id=playlist_id,
        path=entry.path,
        title=values.get("title") or playlist_id,
        format=detect_format(content).value,
        item_count=item_count,
        remote_item_count=remote_item_count,
        description=values.get("description", ""),
        author=values.get("author", ""),
        source_url=values.get("source") or None,
        public_url=public_url,
        published=values.get("pubdate", ""),
        last_build_date=values.get("lastbuilddate", ""),
    )


class PlaylistDiscovery:
    """Lists the playlists a store holds, with their title, format and size."""

    def __init__(self, store: VersionedStore, directory: str = "docs") -> None:
        self.store = store
        self.directory = directory

    def discover(self) -> List[PlaylistSummary]:
        logger.info("Discovering playlists in %s", self.directory)
        entries = [
            entry for entry in self.store.list_directory(self.directory)
            if entry.name.endswith(".xml")
        ]
        logger.info("Found %d XML playlist files", len(entries))

        playlists: List[PlaylistSummary] = []
        for entry in entries:
            try:
                document = self.store.get_with_version(entry.path)
            except StoreAccessError as exc:
                logger.error("Error reading %s: %s", entry.path, exc)
                continue
            if document.content is None:
                logger.warning("%s disappeared during discovery", entry.path)
                continue
            summary = summarize_playlist(
                entry, document.content, self.store.public_url(entry.path)
            )
            logger.info(
                "Parsed playlist: %s (%d items)",
                summary.title,
                summary.remote_item_count or summary.item_count,
            )
            playlists.append(summary)
        return playlists
