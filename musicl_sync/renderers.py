"""Rendering of reconciled playlists back into XML documents."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Iterable, Optional

from .extraction import PODCAST_GUID_NAMESPACE, extract_channel_guid
from .models import (
    ChannelMeta,
    Episode,
    FeedConfig,
    PlaylistFormat,
    ReconciliationResult,
)
from .templating import get_environment

TEMPLATES = {
    PlaylistFormat.REMOTE_ITEMS_ONLY: "remote_items.xml.j2",
    PlaylistFormat.FULL_ITEMS: "full_items.xml.j2",
}

_BUILD_DATE_RE = re.compile(r"[ \t]*<lastBuildDate>[^<]*</lastBuildDate>\r?\n?")


def playlist_channel_guid(feed: FeedConfig, existing_content: Optional[str]) -> str:
    """The playlist's podcast:guid, stable across runs."""
    return (
        extract_channel_guid(existing_content)
        or feed.playlist_guid
        or str(uuid.uuid5(PODCAST_GUID_NAMESPACE, feed.playlist_id))
    )


def newest_publication(episodes: Iterable[Episode]) -> Optional[datetime]:
    dates = [episode.published_at for episode in episodes if episode.published_at]
    return max(dates) if dates else None


def render_playlist(
    playlist_format: PlaylistFormat,
    feed: FeedConfig,
    channel: ChannelMeta,
    result: ReconciliationResult,
    built_at: datetime,
    channel_guid: str,
    published_at: Optional[datetime] = None,
) -> str:
    """Serialize a reconciliation result in the given playlist format."""
    template = get_environment().get_template(TEMPLATES[playlist_format])
    link = channel.link or feed.source_url
    return template.render(
        title=feed.title,
        description=feed.description,
        author=feed.author,
        link=link,
        source_url=feed.source_url,
        image_url=feed.image_url or channel.image_url,
        channel_guid=channel_guid,
        published_at=published_at,
        built_at=built_at,
        items=result.items,
        episodes=result.episodes,
    )


def strip_build_date(content: Optional[str]) -> Optional[str]:
    """Remove the build timestamp so two renders can be compared."""
    if content is None:
        return None
    return _BUILD_DATE_RE.sub("", content)
