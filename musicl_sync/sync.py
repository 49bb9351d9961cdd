"""One synchronization pass per feed: fetch, merge, render and write."""

from __future__ import annotations

import concurrent.futures
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from .errors import NoContentError, SyncError, VersionConflict
from .feeds import FeedReader
from .models import (
    FeedConfig,
    FetchedFeed,
    PlaylistDocument,
    StoredDocument,
    SyncOutcome,
    SyncStatus,
)
from .notifier import ChangeNotifier
from .reconcile import MergePlan, merge_playlist
from .renderers import (
    newest_publication,
    playlist_channel_guid,
    render_playlist,
    strip_build_date,
)
from .store import LocalPlaylistCache, VersionedStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def commit_message(feed: FeedConfig, added: int) -> str:
    return f"Auto-update playlist from {feed.display_name} - Added {added} new item(s)"


class SyncCoordinator:
    """Runs synchronization passes and turns every failure into an outcome."""

    def __init__(
        self,
        reader: FeedReader,
        store: VersionedStore,
        cache: Optional[LocalPlaylistCache] = None,
        notifier: Optional[ChangeNotifier] = None,
        directory: str = "docs",
        conflict_retries: int = 3,
        include_unresolved: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.reader = reader
        self.store = store
        self.cache = cache
        self.notifier = notifier
        self.directory = directory.strip("/")
        self.conflict_retries = conflict_retries
        self.include_unresolved = include_unresolved
        self.clock = clock or _utcnow
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="notify"
        )

    def playlist_path(self, playlist_id: str) -> str:
        if not self.directory:
            return f"{playlist_id}.xml"
        return f"{self.directory}/{playlist_id}.xml"

    def build_document(
        self, feed: FeedConfig, fetched: FetchedFeed, stored: StoredDocument
    ) -> Tuple[PlaylistDocument, MergePlan]:
        """Merge and render without touching the store."""
        plan = merge_playlist(
            feed,
            fetched,
            stored.content,
            include_unresolved=self.include_unresolved,
        )
        channel_guid = playlist_channel_guid(feed, stored.content)
        content = render_playlist(
            plan.format,
            feed,
            fetched.channel,
            plan.result,
            built_at=self.clock(),
            channel_guid=channel_guid,
            published_at=newest_publication(fetched.episodes),
        )
        document = PlaylistDocument(
            format=plan.format,
            content=content,
            channel_guid=channel_guid,
            version=stored.version,
        )
        return document, plan

    def sync_one(self, feed: FeedConfig, force: bool = False) -> SyncOutcome:
        try:
            return self._sync(feed, force)
        except NoContentError as exc:
            logger.error(
                "No content for %s; the upstream format may have changed: %s",
                feed.display_name,
                exc,
            )
            return SyncOutcome(feed.playlist_id, SyncStatus.FAILED, error=exc)
        except SyncError as exc:
            logger.warning("Sync failed for %s: %s", feed.display_name, exc)
            return SyncOutcome(feed.playlist_id, SyncStatus.FAILED, error=exc)
        except Exception as exc:
            logger.exception("Unexpected error while syncing %s", feed.display_name)
            return SyncOutcome(feed.playlist_id, SyncStatus.FAILED, error=exc)

    def _sync(self, feed: FeedConfig, force: bool) -> SyncOutcome:
        fetched = self.reader.fetch(feed.source_url)
        latest_key = fetched.latest_episode_key

        if not force and latest_key and latest_key == feed.last_seen_episode_key:
            logger.info(
                "No new episodes for %s since %s", feed.display_name, latest_key
            )
            return SyncOutcome(
                feed.playlist_id,
                SyncStatus.SKIPPED,
                latest_episode_key=latest_key,
            )

        path = self.playlist_path(feed.playlist_id)
        attempts = 0
        while True:
            attempts += 1
            stored = self.store.get_with_version(path)
            document, plan = self.build_document(feed, fetched, stored)
            result = plan.result

            if stored.exists and strip_build_date(stored.content) == strip_build_date(
                document.content
            ):
                logger.info("Playlist %s is already up to date", path)
                return SyncOutcome(
                    feed.playlist_id,
                    SyncStatus.UNCHANGED,
                    total=result.total,
                    attempts=attempts,
                    latest_episode_key=latest_key,
                )

            if self.cache is not None:
                self.cache.write(feed.playlist_id, document.content)

            try:
                self.store.put_if_version(
                    path,
                    document.content,
                    stored.version,
                    commit_message(feed, result.added),
                )
            except VersionConflict:
                if attempts > self.conflict_retries:
                    logger.warning(
                        "Giving up on %s after %d conflicting writes", path, attempts
                    )
                    raise
                logger.info(
                    "%s changed since it was read (attempt %d); re-reading", path, attempts
                )
                continue
            break

        public_url = self.store.public_url(path)
        logger.info(
            "Wrote %s (%s): %d new, %d total",
            path,
            document.format.value,
            result.added,
            result.total,
        )
        if public_url:
            self._announce(public_url)
        return SyncOutcome(
            feed.playlist_id,
            SyncStatus.UPDATED,
            written=True,
            added=result.added,
            total=result.total,
            attempts=attempts,
            public_url=public_url,
            latest_episode_key=latest_key,
        )

    def _announce(self, public_url: str) -> None:
        if self.notifier is None:
            return
        self._executor.submit(self._notify, public_url)

    def _notify(self, public_url: str) -> None:
        try:
            result = self.notifier.announce(public_url)
        except Exception as exc:
            logger.warning("Notification for %s failed: %s", public_url, exc)
            return
        if not result.accepted:
            logger.info("Notification for %s not accepted: %s", public_url, result.message)

    def close(self) -> None:
        """Wait for pending notifications and release the worker threads."""
        self._executor.shutdown(wait=True)
