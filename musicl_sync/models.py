"""Shared data models for musicl_sync."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Set

if TYPE_CHECKING:
    from .errors import SyncError


class PlaylistFormat(str, Enum):
    """On-disk shape of a playlist document."""

    FULL_ITEMS = "full-items"
    REMOTE_ITEMS_ONLY = "remote-items-only"


@dataclass
class FeedConfig:
    """Identity, metadata and polling policy for one monitored source feed."""

    playlist_id: str
    source_url: str
    title: str
    description: str = ""
    author: str = ""
    image_url: str = ""
    enabled: bool = True
    poll_interval_minutes: int = 30
    name: Optional[str] = None
    playlist_guid: Optional[str] = None
    feed_guid: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    last_seen_episode_key: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.title or self.playlist_id


@dataclass
class Enclosure:
    url: str
    type: str = "audio/mpeg"
    length: int = 0


@dataclass
class RemoteItem:
    """Pointer to a track hosted in another feed.

    ``raw_form`` holds the exact markup the pointer had in a persisted
    playlist; it is ``None`` for pointers synthesized during this run.
    """

    feed_guid: str
    item_guid: str
    raw_form: Optional[str] = None
    feed_url: Optional[str] = None


@dataclass
class Episode:
    """Simplified upstream feed entry."""

    key: str
    title: str
    link: str = ""
    published_at: Optional[datetime] = None
    description: str = ""
    enclosure: Optional[Enclosure] = None
    remote_item: Optional[RemoteItem] = None


@dataclass
class ChannelMeta:
    """Channel-level metadata of an upstream feed."""

    title: str = ""
    link: str = ""
    guid: Optional[str] = None
    image_url: str = ""


@dataclass
class FetchedFeed:
    """Everything the feed reader returns for one upstream fetch."""

    episodes: List[Episode]
    channel: ChannelMeta
    raw_markup: str

    @property
    def latest_episode_key(self) -> Optional[str]:
        return self.episodes[0].key if self.episodes else None


@dataclass
class PointerCandidate:
    """A pointer found in upstream markup, with its ordering hints."""

    feed_guid: str
    item_guid: str
    position: int
    feed_url: Optional[str] = None
    start_time: Optional[float] = None
    episode_key: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.episode_key is not None


@dataclass
class UpstreamPointers:
    """Pointers extracted from one upstream feed, split by episode association."""

    resolved: List[PointerCandidate] = field(default_factory=list)
    unresolved: List[PointerCandidate] = field(default_factory=list)

    @property
    def all_item_guids(self) -> Set[str]:
        return {pointer.item_guid for pointer in self.resolved + self.unresolved}

    def __len__(self) -> int:
        return len(self.resolved) + len(self.unresolved)

    def ordered(self, include_unresolved: bool = True) -> List[PointerCandidate]:
        """Resolved pointers in document order, then the unresolved ones."""
        if include_unresolved:
            return self.resolved + self.unresolved
        return list(self.resolved)


@dataclass
class ReconciliationResult:
    """Ordered merge output and its disjoint counts."""

    items: List[RemoteItem] = field(default_factory=list)
    added: int = 0
    carried_over: int = 0
    orphaned: int = 0
    episodes: List[Episode] = field(default_factory=list)

    @property
    def total(self) -> int:
        if self.episodes:
            return len(self.episodes)
        return len(self.items)


@dataclass
class PlaylistDocument:
    """A rendered playlist ready to be persisted."""

    format: PlaylistFormat
    content: str
    channel_guid: str
    version: Optional[str] = None


@dataclass
class StoredDocument:
    """Document content and version token as held by a versioned store."""

    content: Optional[str]
    version: Optional[str]

    @property
    def exists(self) -> bool:
        return self.content is not None


@dataclass
class StoreEntry:
    name: str
    path: str


@dataclass
class NotificationResult:
    accepted: bool
    message: str = ""


class SyncStatus(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncOutcome:
    """Structured result of one synchronization pass for one feed."""

    playlist_id: str
    status: SyncStatus
    written: bool = False
    added: int = 0
    total: int = 0
    attempts: int = 0
    public_url: Optional[str] = None
    error: Optional["SyncError"] = None
    latest_episode_key: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not SyncStatus.FAILED

    def as_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "playlist_id": self.playlist_id,
            "status": self.status.value,
            "written": self.written,
            "added": self.added,
            "total": self.total,
            "attempts": self.attempts,
        }
        if self.public_url:
            payload["public_url"] = self.public_url
        if self.error is not None:
            payload["error"] = f"{type(self.error).__name__}: {self.error}"
        return payload


@dataclass
class RunSummary:
    """Per-feed outcomes of one scheduling cycle."""

    outcomes: List[SyncOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)

    def to_json(self) -> str:
        payload = {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "feeds": [outcome.as_dict() for outcome in self.outcomes],
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)
