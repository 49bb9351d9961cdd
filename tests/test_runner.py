import json
import threading

import pytest

from musicl_sync import runner
from musicl_sync.config import AppConfig, PodpingConfig, StoreConfig
from musicl_sync.db import DatabaseStore
from musicl_sync.errors import ConfigError, StoreAccessError
from musicl_sync.models import FeedConfig
from musicl_sync.notifier import NullNotifier, PodpingNotifier
from musicl_sync.store import GitHubContentsStore


def _config(tmp_path, **kwargs):
    kwargs.setdefault(
        "store",
        StoreConfig(
            type="database",
            connection_string="sqlite:///:memory:",
            public_base_url="https://cdn.example.com",
        ),
    )
    return AppConfig(
        feeds_file=str(tmp_path / "feeds.xml"),
        playlists_dir=str(tmp_path / "playlists"),
        **kwargs,
    )


def _feeds():
    return [
        FeedConfig(
            playlist_id="example-show",
            source_url="https://example.com/show/feed.xml",
            title="Example Music Show Playlist",
        )
    ]


def _services(config, store, reader):
    return runner.build_services(
        config, feeds=_feeds(), store=store, reader=reader, notifier=NullNotifier()
    )


def test_build_store_selects_backend(tmp_path):
    assert isinstance(runner.build_store(_config(tmp_path)), DatabaseStore)

    github = runner.build_store(
        _config(tmp_path, store=StoreConfig(type="github", owner="o", repo="r", token="t"))
    )
    assert isinstance(github, GitHubContentsStore)
    assert github.headers["Authorization"] == "Bearer t"


def test_build_notifier_follows_podping_setting(tmp_path):
    assert isinstance(runner.build_notifier(_config(tmp_path)), NullNotifier)

    enabled = _config(tmp_path, podping=PodpingConfig(enabled=True, token="tok"))
    assert isinstance(runner.build_notifier(enabled), PodpingNotifier)


def test_execute_writes_playlist_and_persists_cursor(tmp_path, fetched, reader_factory):
    config = _config(tmp_path)
    store = runner.build_store(config)

    first = runner.execute(config, services=_services(config, store, reader_factory(fetched)))
    second = runner.execute(config, services=_services(config, store, reader_factory(fetched)))

    payload = json.loads(first.output_text)
    assert payload["succeeded"] == 1
    assert payload["feeds"][0]["status"] == "updated"
    assert payload["feeds"][0]["public_url"] == "https://cdn.example.com/docs/example-show.xml"
    assert store.get_with_version("docs/example-show.xml").exists
    assert (tmp_path / "playlists" / "example-show.xml").exists()
    assert second.summary.outcomes[0].status.value == "skipped"


def test_execute_single_unknown_feed_is_rejected(tmp_path, fetched, reader_factory):
    config = _config(tmp_path)
    services = _services(config, runner.build_store(config), reader_factory(fetched))

    with pytest.raises(ConfigError):
        runner.execute(config, feed_id="missing", services=services)


def test_load_feeds_requires_at_least_one_feed(tmp_path):
    (tmp_path / "feeds.xml").write_text("<opml><body/></opml>", encoding="utf-8")

    with pytest.raises(RuntimeError):
        runner.load_feeds(_config(tmp_path))


def test_discover_and_status(tmp_path, fetched, reader_factory):
    config = _config(tmp_path)
    store = runner.build_store(config)
    runner.execute(config, services=_services(config, store, reader_factory(fetched)))

    playlists = json.loads(runner.discover(config, store=store))
    status = json.loads(runner.status(config, services=_services(config, store, reader_factory(fetched))))

    assert [playlist["playlist_id"] for playlist in playlists] == ["example-show"]
    assert playlists[0]["remote_item_count"] == 4
    assert status["feeds"][0]["last_seen_episode_key"] == "ep-2"


def test_serve_runs_until_stopped(tmp_path, fetched, reader_factory, monkeypatch):
    monkeypatch.setattr(runner.signal, "signal", lambda *args: None)
    config = _config(tmp_path)
    store = runner.build_store(config)
    reader = reader_factory(fetched)
    services = _services(config, store, reader)
    stop = threading.Event()
    stop.set()

    assert runner.serve(config, services=services, stop_event=stop) == 0
    assert not services.scheduler.running


def test_unreadable_state_document_starts_without_cursors(
    tmp_path, memory_store, fetched, reader_factory, monkeypatch, caplog
):
    def denied(path):
        raise StoreAccessError(f"Access denied to {path} (HTTP 403)", status_code=403)

    monkeypatch.setattr(memory_store, "get_with_version", denied)
    feeds = _feeds()
    config = _config(tmp_path)

    with caplog.at_level("WARNING"):
        services = runner.build_services(
            config, feeds=feeds, store=memory_store, reader=reader_factory(fetched), notifier=NullNotifier()
        )
    services.close()

    assert services.scheduler.feeds[0].last_seen_episode_key is None
    assert "Could not load feed state from state/feeds-state.json" in caplog.text
