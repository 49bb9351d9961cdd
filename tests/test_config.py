import os
import textwrap

import pytest

from musicl_sync.config import parse_app_config, parse_env_config, parse_feeds_config
from musicl_sync.errors import ConfigError


def _write(path, content):
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


def test_parse_feeds_config_walks_nested_outlines(tmp_path):
    opml = _write(
        tmp_path / "feeds.xml",
        """\
        <opml version="2.0">
          <body>
            <outline text="Music">
              <outline type="rss" text="Show" title="Show Playlist" xmlUrl="https://example.com/show.xml"
                       playlistId="show" description="All tracks" author="Host"
                       image="https://example.com/art.jpg" interval="15"
                       playlistGuid="pl-guid" feedGuid="feed-guid" />
            </outline>
            <outline type="rss" text="Mix" xmlUrl="https://example.com/mix.xml" playlistId="mix" enabled="false" />
          </body>
        </opml>
        """,
    )

    feeds = parse_feeds_config(str(opml), default_interval=45)

    assert [feed.playlist_id for feed in feeds] == ["show", "mix"]
    show, mix = feeds
    assert show.title == "Show Playlist"
    assert show.name == "Show"
    assert show.source_url == "https://example.com/show.xml"
    assert show.poll_interval_minutes == 15
    assert (show.playlist_guid, show.feed_guid) == ("pl-guid", "feed-guid")
    assert show.image_url == "https://example.com/art.jpg"
    assert mix.title == "Mix"
    assert not mix.enabled
    assert mix.poll_interval_minutes == 45


def test_parse_feeds_config_missing_body_raises(tmp_path):
    opml = _write(tmp_path / "feeds.xml", "<opml version='2.0'></opml>")

    with pytest.raises(ConfigError):
        parse_feeds_config(str(opml))


def test_parse_feeds_config_requires_unique_playlist_ids(tmp_path):
    missing = _write(
        tmp_path / "missing.xml",
        '<opml><body><outline type="rss" xmlUrl="https://x/a.xml"/></body></opml>',
    )
    duplicate = _write(
        tmp_path / "duplicate.xml",
        """\
        <opml><body>
          <outline type="rss" xmlUrl="https://x/a.xml" playlistId="same"/>
          <outline type="rss" xmlUrl="https://x/b.xml" playlistId="same"/>
        </body></opml>
        """,
    )

    with pytest.raises(ConfigError, match="no playlistId"):
        parse_feeds_config(str(missing))
    with pytest.raises(ConfigError, match="Duplicate"):
        parse_feeds_config(str(duplicate))


def test_parse_env_config(tmp_path):
    env = _write(
        tmp_path / "env.xml",
        '<env><variable name="A">  one </variable><variable name="EMPTY"></variable></env>',
    )

    assert parse_env_config(str(env)) == {"A": "one"}
    assert parse_env_config("") == {}


def test_parse_app_config_github_store(tmp_path, monkeypatch):
    monkeypatch.delenv("PODPING_AUTH_TOKEN", raising=False)
    _write(tmp_path / "feeds.xml", "<opml><body/></opml>")
    _write(
        tmp_path / "env.xml",
        '<env><variable name="GITHUB_TOKEN">gh-token</variable></env>',
    )
    config_file = _write(
        tmp_path / "config.xml",
        """\
        <config>
          <feeds>feeds.xml</feeds>
          <env>env.xml</env>
          <playlists-dir>out</playlists-dir>
          <conflict-retries>5</conflict-retries>
          <backoff-factor>0.5</backoff-factor>
          <unresolved-pointers>drop</unresolved-pointers>
          <store type="github">
            <owner>org</owner>
            <repo>playlists</repo>
          </store>
          <podping><enabled>true</enabled></podping>
          <logging><level>DEBUG</level><file>logs/run.log</file></logging>
        </config>
        """,
    )
    monkeypatch.setitem(os.environ, "GITHUB_TOKEN", "placeholder")

    config = parse_app_config(str(config_file))

    assert config.feeds_file == str((tmp_path / "feeds.xml").resolve())
    assert config.playlists_dir == str((tmp_path / "out").resolve())
    assert config.conflict_retries == 5
    assert config.backoff_factor == 0.5
    assert config.network_retries == 3
    assert config.unresolved_pointers == "drop"
    assert config.store.type == "github"
    assert (config.store.owner, config.store.repo, config.store.branch) == ("org", "playlists", "main")
    assert config.store.directory == "docs"
    assert config.store.token == "gh-token"
    assert config.podping.enabled
    assert config.podping.token is None
    assert config.logging.level == "DEBUG"
    assert config.logging.file == str((tmp_path / "logs/run.log").resolve())
    assert config.state_path == "state/feeds-state.json"


def test_parse_app_config_database_store(tmp_path):
    config_file = _write(
        tmp_path / "config.xml",
        """\
        <config>
          <feeds>feeds.xml</feeds>
          <store type="database">
            <connection-string>sqlite:///:memory:</connection-string>
            <public-base-url>https://cdn.example.com</public-base-url>
            <directory>/feeds/</directory>
          </store>
        </config>
        """,
    )

    config = parse_app_config(str(config_file))

    assert config.store.type == "database"
    assert config.store.connection_string == "sqlite:///:memory:"
    assert config.store.public_base_url == "https://cdn.example.com"
    assert config.store.directory == "feeds"
    assert not config.podping.enabled


@pytest.mark.parametrize(
    "body, message",
    [
        ("<store type='github'><owner>o</owner></store>", "owner"),
        ("<store type='ftp'/>", "Unsupported store type"),
        ("", "<store>"),
        (
            "<store type='database'><connection-string>sqlite://</connection-string></store>"
            "<unresolved-pointers>keep</unresolved-pointers>",
            "unresolved-pointers",
        ),
        (
            "<store type='database'><connection-string>sqlite://</connection-string></store>"
            "<concurrency>many</concurrency>",
            "concurrency",
        ),
    ],
)
def test_parse_app_config_rejects_invalid_settings(tmp_path, body, message):
    config_file = _write(tmp_path / "config.xml", f"<config><feeds>feeds.xml</feeds>{body}</config>")

    with pytest.raises(ConfigError, match=message):
        parse_app_config(str(config_file))


def test_parse_app_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_app_config(str(tmp_path / "absent.xml"))
