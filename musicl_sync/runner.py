"""High-level orchestration for the musicl_sync application."""

from __future__ import annotations

import json
import logging
import signal
import threading
from dataclasses import dataclass
from typing import List, Optional

from . import db
from .config import AppConfig, StoreConfig, parse_feeds_config
from .discovery import PlaylistDiscovery
from .errors import SyncError
from .feeds import FeedReader
from .models import FeedConfig, RunSummary
from .notifier import ChangeNotifier, NullNotifier, PodpingNotifier
from .scheduler import FeedScheduler
from .state import FeedStateStore
from .store import GitHubContentsStore, LocalPlaylistCache, VersionedStore
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired components for one process."""

    store: VersionedStore
    coordinator: SyncCoordinator
    scheduler: FeedScheduler
    state_store: FeedStateStore

    def close(self) -> None:
        self.coordinator.close()


@dataclass
class RunResult:
    """Returned data after a one-shot run."""

    summary: RunSummary
    output_text: str


def build_store(config: AppConfig) -> VersionedStore:
    store_config: StoreConfig = config.store
    if store_config.type == "database":
        engine = db.init_engine(store_config.connection_string)
        return db.DatabaseStore(
            db.get_session_factory(engine),
            public_base_url=store_config.public_base_url,
        )

    if not store_config.token:
        logger.warning("GITHUB_TOKEN is not set; writes to the store will be rejected")
    return GitHubContentsStore(
        owner=store_config.owner,
        repo=store_config.repo,
        branch=store_config.branch,
        token=store_config.token,
        timeout=config.timeout_seconds,
        retries=config.network_retries,
        backoff_factor=config.backoff_factor,
    )


def build_notifier(config: AppConfig) -> ChangeNotifier:
    if not config.podping.enabled:
        return NullNotifier()
    return PodpingNotifier(
        auth_token=config.podping.token,
        endpoint=config.podping.endpoint,
        retries=config.network_retries,
    )


def load_feeds(config: AppConfig) -> List[FeedConfig]:
    feeds = parse_feeds_config(config.feeds_file, config.default_interval_minutes)
    if not feeds:
        raise RuntimeError("No feeds found in the configuration.")
    return feeds


def build_services(
    config: AppConfig,
    feeds: Optional[List[FeedConfig]] = None,
    store: Optional[VersionedStore] = None,
    reader: Optional[FeedReader] = None,
    notifier: Optional[ChangeNotifier] = None,
) -> Services:
    """Wire store, reader, coordinator and scheduler from configuration."""
    if feeds is None:
        feeds = load_feeds(config)
    store = store or build_store(config)
    reader = reader or FeedReader(
        timeout=config.timeout_seconds,
        retries=config.network_retries,
        backoff_factor=config.backoff_factor,
    )
    coordinator = SyncCoordinator(
        reader=reader,
        store=store,
        cache=LocalPlaylistCache(config.playlists_dir),
        notifier=notifier or build_notifier(config),
        directory=config.store.directory,
        conflict_retries=config.conflict_retries,
        include_unresolved=config.unresolved_pointers == "append",
    )
    state_store = FeedStateStore(
        store, path=config.state_path, conflict_retries=config.conflict_retries
    )
    try:
        state_store.apply(feeds)
    except SyncError as exc:
        logger.warning(
            "Could not load feed state from %s; starting without cursors: %s",
            config.state_path,
            exc,
        )
    scheduler = FeedScheduler(coordinator, feeds, state_store=state_store)
    return Services(
        store=store,
        coordinator=coordinator,
        scheduler=scheduler,
        state_store=state_store,
    )


def execute(
    config: AppConfig,
    feed_id: Optional[str] = None,
    force: bool = False,
    services: Optional[Services] = None,
) -> RunResult:
    """Run one pass over all enabled feeds, or over ``feed_id`` only."""
    services = services or build_services(config)
    try:
        summary = services.scheduler.run_once(
            force=force,
            playlist_ids=[feed_id] if feed_id else None,
            max_workers=config.concurrency,
        )
    finally:
        services.close()
    return RunResult(summary=summary, output_text=summary.to_json())


def discover(config: AppConfig, store: Optional[VersionedStore] = None) -> str:
    store = store or build_store(config)
    playlists = PlaylistDiscovery(store, config.store.directory).discover()
    return json.dumps(
        [playlist.to_dict() for playlist in playlists], indent=2, ensure_ascii=False
    )


def status(config: AppConfig, services: Optional[Services] = None) -> str:
    services = services or build_services(config)
    try:
        return json.dumps(services.scheduler.status(), indent=2, ensure_ascii=False)
    finally:
        services.close()


def serve(
    config: AppConfig,
    services: Optional[Services] = None,
    stop_event: Optional[threading.Event] = None,
) -> int:
    """Run the scheduler until SIGINT/SIGTERM or ``stop_event`` is set."""
    services = services or build_services(config)
    stop_event = stop_event or threading.Event()

    def handle_signal(signum, _frame) -> None:
        logger.info("Received signal %s; shutting down", signum)
        stop_event.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    services.scheduler.start()
    try:
        while not stop_event.wait(1.0):
            pass
    finally:
        services.scheduler.stop(wait=True)
        services.close()
    logger.info("Scheduler shut down cleanly")
    return 0
