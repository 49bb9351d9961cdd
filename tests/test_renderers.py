import uuid
from datetime import datetime, timezone

from musicl_sync import renderers
from musicl_sync.extraction import PODCAST_GUID_NAMESPACE, extract_existing_items
from musicl_sync.formats import detect_format
from musicl_sync.models import (
    ChannelMeta,
    Enclosure,
    Episode,
    PlaylistFormat,
    ReconciliationResult,
    RemoteItem,
)

BUILT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
CHANNEL = ChannelMeta(title="Upstream", link="https://example.com/show", guid="show-guid")


def _remote_result():
    return ReconciliationResult(
        items=[
            RemoteItem(feed_guid="f2", item_guid="new"),
            RemoteItem(
                feed_guid="f1",
                item_guid="kept",
                raw_form='<podcast:remoteItem itemGuid="kept" feedGuid="f1" />',
            ),
        ],
        added=1,
        carried_over=1,
    )


def test_render_remote_items_playlist(feed):
    feed.title = "Rock & Roll"
    content = renderers.render_playlist(
        PlaylistFormat.REMOTE_ITEMS_ONLY, feed, CHANNEL, _remote_result(), BUILT, "pl-guid"
    )

    assert "<title>Rock &amp; Roll</title>" in content
    assert "<podcast:medium>musicL</podcast:medium>" in content
    assert "<podcast:guid>pl-guid</podcast:guid>" in content
    assert '<podcast:txt purpose="source-feed">https://example.com/show/feed.xml</podcast:txt>' in content
    assert "<lastBuildDate>Fri, 01 Mar 2024 12:00:00 GMT</lastBuildDate>" in content
    assert '<podcast:remoteItem feedGuid="f2" itemGuid="new"/>' in content
    assert '<podcast:remoteItem itemGuid="kept" feedGuid="f1" />' in content
    assert content.index('itemGuid="new"') < content.index('itemGuid="kept"')
    assert detect_format(content) is PlaylistFormat.REMOTE_ITEMS_ONLY
    assert list(extract_existing_items(content)) == ["new", "kept"]


def test_render_is_deterministic_and_build_date_insensitive(feed):
    args = (PlaylistFormat.REMOTE_ITEMS_ONLY, feed, CHANNEL, _remote_result())

    first = renderers.render_playlist(*args, BUILT, "pl-guid")
    second = renderers.render_playlist(*args, BUILT, "pl-guid")
    later = renderers.render_playlist(*args, datetime(2025, 1, 1, tzinfo=timezone.utc), "pl-guid")

    assert first == second
    assert first != later
    assert renderers.strip_build_date(first) == renderers.strip_build_date(later)
    assert "lastBuildDate" not in renderers.strip_build_date(first)


def test_render_full_items_playlist(feed):
    episodes = [
        Episode(
            key="ep-1",
            title="Episode <1>",
            link="https://example.com/ep-1",
            published_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
            description="Tracks",
            enclosure=Enclosure(url="https://example.com/ep-1.mp3", length=123),
            remote_item=RemoteItem(feed_guid="f", item_guid="t"),
        )
    ]
    result = ReconciliationResult(episodes=episodes, added=1)

    content = renderers.render_playlist(
        PlaylistFormat.FULL_ITEMS,
        feed,
        CHANNEL,
        result,
        BUILT,
        "pl-guid",
        published_at=renderers.newest_publication(episodes),
    )

    assert "<title>Episode &lt;1&gt;</title>" in content
    assert '<guid isPermaLink="false">ep-1</guid>' in content
    assert 'url="https://example.com/ep-1.mp3" type="audio/mpeg" length="123"' in content
    assert '<podcast:remoteItem feedGuid="f" itemGuid="t"/>' in content
    assert "<pubDate>Thu, 01 Feb 2024 00:00:00 GMT</pubDate>" in content
    assert detect_format(content) is PlaylistFormat.FULL_ITEMS


def test_playlist_channel_guid_is_stable(feed):
    derived = str(uuid.uuid5(PODCAST_GUID_NAMESPACE, feed.playlist_id))
    assert renderers.playlist_channel_guid(feed, None) == derived

    feed.playlist_guid = "configured"
    assert renderers.playlist_channel_guid(feed, None) == "configured"

    document = "<rss><channel><podcast:guid>persisted</podcast:guid></channel></rss>"
    assert renderers.playlist_channel_guid(feed, document) == "persisted"


def test_newest_publication_ignores_undated_episodes():
    older = datetime(2024, 1, 1, tzinfo=timezone.utc)
    newer = datetime(2024, 2, 1, tzinfo=timezone.utc)
    episodes = [
        Episode(key="a", title="a", published_at=older),
        Episode(key="b", title="b"),
        Episode(key="c", title="c", published_at=newer),
    ]

    assert renderers.newest_publication(episodes) == newer
    assert renderers.newest_publication([Episode(key="d", title="d")]) is None
