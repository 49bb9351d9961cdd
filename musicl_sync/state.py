"""Persistence of per-feed check cursors through a versioned store."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, Optional

from .errors import StoreAccessError, VersionConflict
from .models import FeedConfig
from .store import VersionedStore

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "state/feeds-state.json"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Ignoring malformed timestamp in feed state: %r", value)
        return None


class FeedStateStore:
    """Keeps ``last_checked_at`` and ``last_seen_episode_key`` for every feed.

    All cursors live in one JSON document; updates are read-modify-write
    cycles guarded by the store's version token.
    """

    def __init__(
        self,
        store: VersionedStore,
        path: str = DEFAULT_STATE_PATH,
        conflict_retries: int = 3,
    ) -> None:
        self.store = store
        self.path = path
        self.conflict_retries = conflict_retries
        self._lock = threading.Lock()

    def load(self) -> Dict[str, Dict[str, Optional[str]]]:
        document = self.store.get_with_version(self.path)
        return self._decode(document.content)

    def _decode(self, content: Optional[str]) -> Dict[str, Dict[str, Optional[str]]]:
        if not content:
            return {}
        try:
            payload = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("Feed state document %s is not valid JSON; starting fresh", self.path)
            return {}
        if not isinstance(payload, dict):
            return {}
        return {key: value for key, value in payload.items() if isinstance(value, dict)}

    def apply(self, feeds: Iterable[FeedConfig]) -> None:
        """Populate cursor fields of ``feeds`` from the stored state."""
        state = self.load()
        for feed in feeds:
            entry = state.get(feed.playlist_id)
            if not entry:
                continue
            feed.last_checked_at = _parse_timestamp(entry.get("last_checked_at"))
            feed.last_seen_episode_key = entry.get("last_seen_episode_key")
        logger.info("Loaded cursors for %d feeds from %s", len(state), self.path)

    def record(self, feed: FeedConfig) -> None:
        """Persist the cursor of one feed, retrying on concurrent updates."""
        entry = {
            "last_checked_at": feed.last_checked_at.isoformat()
            if feed.last_checked_at
            else None,
            "last_seen_episode_key": feed.last_seen_episode_key,
        }
        with self._lock:
            for attempt in range(self.conflict_retries + 1):
                document = self.store.get_with_version(self.path)
                state = self._decode(document.content)
                if state.get(feed.playlist_id) == entry:
                    return
                state[feed.playlist_id] = entry
                content = json.dumps(state, indent=2, sort_keys=True) + "\n"
                try:
                    self.store.put_if_version(
                        self.path,
                        content,
                        document.version,
                        f"Update check state for {feed.playlist_id}",
                    )
                    return
                except VersionConflict:
                    logger.info(
                        "Feed state changed concurrently (attempt %d); retrying",
                        attempt + 1,
                    )
            raise StoreAccessError(
                f"Could not persist state for {feed.playlist_id} after "
                f"{self.conflict_retries + 1} attempts"
            )
