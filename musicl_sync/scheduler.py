"""Periodic checking of feeds, one worker thread per feed."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .errors import ConfigError, SyncError
from .models import FeedConfig, RunSummary, SyncOutcome, SyncStatus
from .state import FeedStateStore
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)


class FeedState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"


class FeedScheduler:
    """Schedules synchronization passes and keeps per-feed cursors current.

    A feed is never checked twice at the same time: ``check`` refuses to
    start while a previous pass for the same feed is in flight.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        feeds: Iterable[FeedConfig],
        state_store: Optional[FeedStateStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.coordinator = coordinator
        self.state_store = state_store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._feeds: Dict[str, FeedConfig] = {}
        self._states: Dict[str, FeedState] = {}
        for feed in feeds:
            self._feeds[feed.playlist_id] = feed
            self._states[feed.playlist_id] = FeedState.IDLE
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: Dict[str, threading.Thread] = {}
        self._cancels: Dict[str, threading.Event] = {}
        self._started = False

    @property
    def feeds(self) -> List[FeedConfig]:
        with self._lock:
            return list(self._feeds.values())

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def state_of(self, playlist_id: str) -> Optional[FeedState]:
        with self._lock:
            return self._states.get(playlist_id)

    def check(self, playlist_id: str, force: bool = False) -> Optional[SyncOutcome]:
        """Run one pass for a feed, or return ``None`` if it cannot start now."""
        with self._lock:
            feed = self._feeds.get(playlist_id)
            if feed is None:
                logger.warning("Feed %s is not configured", playlist_id)
                return None
            if self._states.get(playlist_id) is FeedState.CHECKING:
                logger.info("Feed %s is already being checked; skipping", playlist_id)
                return None
            self._states[playlist_id] = FeedState.CHECKING

        try:
            outcome = self.coordinator.sync_one(feed, force=force)
            self._record(feed, outcome)
            return outcome
        finally:
            with self._lock:
                if playlist_id in self._states:
                    self._states[playlist_id] = FeedState.IDLE

    def _record(self, feed: FeedConfig, outcome: SyncOutcome) -> None:
        feed.last_checked_at = self.clock()
        if outcome.ok and outcome.latest_episode_key:
            feed.last_seen_episode_key = outcome.latest_episode_key
        if self.state_store is None:
            return
        try:
            self.state_store.record(feed)
        except SyncError as exc:
            logger.warning("Could not persist check state for %s: %s", feed.playlist_id, exc)
        except Exception:
            logger.exception("Unexpected error while saving check state for %s", feed.playlist_id)

    def run_once(
        self,
        force: bool = False,
        playlist_ids: Optional[Iterable[str]] = None,
        max_workers: int = 4,
    ) -> RunSummary:
        """Check the selected feeds in parallel and summarize the outcomes.

        Without ``playlist_ids`` every enabled feed is checked. Outcomes keep
        the configured feed order.
        """
        if playlist_ids is None:
            selected = [feed.playlist_id for feed in self.feeds if feed.enabled]
        else:
            selected = list(playlist_ids)
            with self._lock:
                unknown = [playlist_id for playlist_id in selected if playlist_id not in self._feeds]
            if unknown:
                raise ConfigError(f"Unknown feed(s): {', '.join(unknown)}")

        if not selected:
            logger.info("No enabled feeds to check")
            return RunSummary()

        logger.info("Checking %d feeds", len(selected))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, max_workers)
        ) as executor:
            results = list(
                executor.map(lambda playlist_id: self.check(playlist_id, force), selected)
            )

        summary = RunSummary()
        for playlist_id, outcome in zip(selected, results):
            if outcome is None:
                outcome = SyncOutcome(playlist_id, SyncStatus.SKIPPED)
            summary.outcomes.append(outcome)
        logger.info(
            "Run complete: %d succeeded, %d failed", summary.succeeded, summary.failed
        )
        return summary

    @staticmethod
    def _interval(feed: FeedConfig) -> float:
        return max(1, feed.poll_interval_minutes) * 60.0

    def start(self) -> None:
        """Launch one worker per enabled feed; each checks immediately."""
        with self._lock:
            if self.running:
                logger.debug("Scheduler already running")
                return
            self._stop.clear()
            self._started = True
            feeds = [feed for feed in self._feeds.values() if feed.enabled]
            for feed in feeds:
                self._schedule(feed)
        logger.info("Scheduler started for %d feeds", len(feeds))

    def _schedule(self, feed: FeedConfig) -> None:
        cancel = threading.Event()
        thread = threading.Thread(
            target=self._loop,
            args=(feed.playlist_id, cancel),
            name=f"feed-{feed.playlist_id}",
            daemon=True,
        )
        self._cancels[feed.playlist_id] = cancel
        self._threads[feed.playlist_id] = thread
        thread.start()
        logger.info(
            "Scheduled %s every %d minute(s)",
            feed.display_name,
            max(1, feed.poll_interval_minutes),
        )

    def _loop(self, playlist_id: str, cancel: threading.Event) -> None:
        while not (self._stop.is_set() or cancel.is_set()):
            try:
                self.check(playlist_id)
            except Exception:
                logger.exception("Check of %s failed; retrying next interval", playlist_id)
            with self._lock:
                feed = self._feeds.get(playlist_id)
            if feed is None or cancel.wait(self._interval(feed)):
                break
        logger.debug("Worker for %s finished", playlist_id)

    def stop(self, wait: bool = True) -> None:
        """Prevent further checks; in-flight passes run to completion."""
        self._stop.set()
        with self._lock:
            for cancel in self._cancels.values():
                cancel.set()
            threads = list(self._threads.values())
            self._cancels.clear()
            self._threads.clear()
        if wait:
            for thread in threads:
                if thread is not threading.current_thread():
                    thread.join()
        logger.info("Scheduler stopped")

    def add_feed(self, feed: FeedConfig) -> None:
        with self._lock:
            if feed.playlist_id in self._feeds:
                raise ConfigError(f"Duplicate playlist id: {feed.playlist_id}")
            self._feeds[feed.playlist_id] = feed
            self._states[feed.playlist_id] = FeedState.IDLE
            if self.running and feed.enabled:
                self._schedule(feed)

    def remove_feed(self, playlist_id: str) -> bool:
        with self._lock:
            feed = self._feeds.pop(playlist_id, None)
            self._states.pop(playlist_id, None)
            self._threads.pop(playlist_id, None)
            cancel = self._cancels.pop(playlist_id, None)
        if cancel is not None:
            cancel.set()
        if feed is None:
            return False
        logger.info("Removed feed %s", playlist_id)
        return True

    def status(self) -> Dict[str, object]:
        with self._lock:
            feeds = [
                {
                    "playlist_id": feed.playlist_id,
                    "title": feed.title,
                    "enabled": feed.enabled,
                    "state": self._states[feed.playlist_id].value,
                    "interval_minutes": feed.poll_interval_minutes,
                    "last_checked_at": feed.last_checked_at.isoformat()
                    if feed.last_checked_at
                    else None,
                    "last_seen_episode_key": feed.last_seen_episode_key,
                }
                for feed in self._feeds.values()
            ]
        return {"running": self.running, "feeds": feeds}
