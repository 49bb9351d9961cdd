"""Upstream feed retrieval and parsing."""

from __future__ import annotations

import calendar
import logging
import re
import time
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
import requests
from bs4 import BeautifulSoup

from .errors import EmptyFeedError, FetchError
from .extraction import extract_channel_guid
from .models import ChannelMeta, Enclosure, Episode, FetchedFeed
from .sessions import build_session

logger = logging.getLogger(__name__)


def to_datetime(value: Optional[time.struct_time]) -> Optional[datetime]:
    """Convert feedparser UTC timestamps to timezone-aware datetimes."""
    if value is None:
        return None
    return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)


def _strip_html(raw_value: str) -> str:
    """Return text content extracted from HTML fragments."""
    soup = BeautifulSoup(raw_value, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def decode_body(response: requests.Response) -> str:
    """Decode a feed body, trusting only an explicit charset (XML defaults to UTF-8)."""
    content_type = response.headers.get("Content-Type", "").lower()
    encoding = response.encoding if "charset" in content_type else None
    return response.content.decode(encoding or "utf-8", errors="replace")


def _enclosure(entry) -> Optional[Enclosure]:
    enclosures = getattr(entry, "enclosures", None) or []
    for candidate in enclosures:
        url = candidate.get("href") or candidate.get("url")
        if not url:
            continue
        try:
            length = int(candidate.get("length") or 0)
        except (TypeError, ValueError):
            length = 0
        return Enclosure(
            url=url, type=candidate.get("type") or "audio/mpeg", length=length
        )
    return None


def parse_episodes(entries) -> List[Episode]:
    """Map feedparser entries to episodes, newest-first as the feed lists them."""
    episodes: List[Episode] = []
    for entry in entries:
        link = getattr(entry, "link", None) or ""
        key = (getattr(entry, "id", None) or link).strip()
        if not key:
            logger.debug("Skipping entry without guid or link")
            continue

        summary = getattr(entry, "summary", None)
        if not summary:
            content = getattr(entry, "content", None)
            if content:
                try:
                    summary = content[0].get("value")
                except (TypeError, KeyError, IndexError, AttributeError):
                    summary = None

        published = None
        for attr in ("published_parsed", "updated_parsed", "created_parsed"):
            published = getattr(entry, attr, None)
            if published:
                break

        episodes.append(
            Episode(
                key=key,
                title=getattr(entry, "title", None) or "",
                link=link,
                published_at=to_datetime(published),
                description=_strip_html(summary) if summary else "",
                enclosure=_enclosure(entry),
            )
        )
    return episodes


class FeedReader:
    """Fetches an upstream feed and keeps its raw markup for pointer extraction."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        retries: int = 3,
        backoff_factor: float = 1.0,
    ) -> None:
        self.session = session or build_session(retries, backoff_factor)
        self.timeout = timeout

    def fetch(self, url: str) -> FetchedFeed:
        logger.info("Fetching feed %s", url)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"Failed to fetch feed {url}: {exc}") from exc

        raw_markup = decode_body(response)
        parsed = feedparser.parse(response.content)
        if getattr(parsed, "bozo", False) and not parsed.entries:
            reason = getattr(parsed, "bozo_exception", "unknown error")
            raise FetchError(f"Could not parse feed {url}: {reason}")

        episodes = parse_episodes(parsed.entries)
        if not episodes:
            raise EmptyFeedError(f"No episodes found in feed {url}")

        feed_info = parsed.feed
        image = getattr(feed_info, "image", None) or {}
        channel = ChannelMeta(
            title=getattr(feed_info, "title", None) or "",
            link=getattr(feed_info, "link", None) or "",
            guid=extract_channel_guid(raw_markup),
            image_url=image.get("href") or image.get("url") or "",
        )

        logger.info("Collected %d episodes from feed %s", len(episodes), url)
        return FetchedFeed(episodes=episodes, channel=channel, raw_markup=raw_markup)
