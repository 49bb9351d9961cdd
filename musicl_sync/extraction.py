"""Pointer extraction from persisted playlists and raw upstream feed markup.

Both surfaces are driven by :func:`scan_tags`, a small tokenizer that walks
the markup in document order and yields every element tag with its
attributes. Attribute order, quoting style and line breaks inside a tag do
not matter. CDATA sections, comments and processing instructions are
skipped so that markup embedded in descriptions is never mistaken for
pointers.
"""

from __future__ import annotations

import html
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .models import (
    ChannelMeta,
    Episode,
    FeedConfig,
    PointerCandidate,
    RemoteItem,
    UpstreamPointers,
)

logger = logging.getLogger(__name__)

REMOTE_ITEM = "podcast:remoteitem"
VALUE_TIME_SPLIT = "podcast:valuetimesplit"

# Namespace used by the podcast namespace to derive podcast:guid from a feed URL.
PODCAST_GUID_NAMESPACE = uuid.UUID("ead4c236-bf58-58c6-a2c6-a6b28d128cb6")

_TOKEN_RE = re.compile(
    r"""
    (?P<cdata><!\[CDATA\[.*?\]\]>)
    |(?P<comment><!--.*?-->)
    |(?P<pi><\?.*?\?>)
    |(?P<decl><![^>]*>)
    |<(?P<closing>/)?(?P<name>[A-Za-z_][\w:.\-]*)
      (?P<attrs>(?:[^<>"']|"[^"]*"|'[^']*')*)>
    """,
    re.DOTALL | re.VERBOSE,
)

_ATTR_RE = re.compile(
    r"""(?P<key>[A-Za-z_][\w:.\-]*)\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)')""",
    re.DOTALL,
)

_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)


@dataclass
class Tag:
    """One element tag found by :func:`scan_tags`."""

    name: str
    attrs: Dict[str, str]
    start: int
    end: int
    raw: str
    closing: bool = False
    self_closing: bool = False

    @property
    def opening(self) -> bool:
        return not self.closing and not self.self_closing

    def attr(self, key: str) -> Optional[str]:
        value = self.attrs.get(key.lower())
        if value is None:
            return None
        value = value.strip()
        return value or None


def parse_attributes(fragment: str) -> Dict[str, str]:
    """Return attributes of a tag body keyed by lower-cased name."""
    attributes: Dict[str, str] = {}
    for match in _ATTR_RE.finditer(fragment):
        value = match.group("dq")
        if value is None:
            value = match.group("sq")
        attributes.setdefault(match.group("key").lower(), html.unescape(value))
    return attributes


def scan_tags(markup: str) -> Iterator[Tag]:
    """Yield element tags from ``markup`` in document order."""
    for match in _TOKEN_RE.finditer(markup):
        name = match.group("name")
        if name is None:
            continue
        attrs = match.group("attrs") or ""
        closing = bool(match.group("closing"))
        yield Tag(
            name=name.lower(),
            attrs={} if closing else parse_attributes(attrs),
            start=match.start(),
            end=match.end(),
            raw=match.group(0),
            closing=closing,
            self_closing=not closing and attrs.rstrip().endswith("/"),
        )


def element_text(fragment: str) -> str:
    """Text content of a simple element body, unwrapping CDATA."""
    parts = []
    last = 0
    for match in _CDATA_RE.finditer(fragment):
        parts.append(html.unescape(fragment[last : match.start()]))
        parts.append(match.group(1))
        last = match.end()
    parts.append(html.unescape(fragment[last:]))
    return "".join(parts).strip()


def _remote_item_markers(markup: str) -> Iterator[tuple[Tag, str]]:
    """Yield each remoteItem opening tag with its full raw markup."""
    pending: Optional[Tag] = None
    for tag in scan_tags(markup):
        if tag.name != REMOTE_ITEM:
            continue
        if tag.self_closing:
            yield tag, tag.raw
        elif tag.opening:
            if pending is not None:
                yield pending, pending.raw
            pending = tag
        elif pending is not None:
            yield pending, markup[pending.start : tag.end]
            pending = None
    if pending is not None:
        yield pending, pending.raw


def extract_existing_items(document: Optional[str]) -> Dict[str, RemoteItem]:
    """Return pointers of a persisted playlist keyed by item guid.

    The mapping preserves document order. Markers missing either guid are
    skipped; a repeated item guid keeps its first occurrence.
    """
    items: Dict[str, RemoteItem] = {}
    if not document:
        return items

    skipped = 0
    for tag, raw in _remote_item_markers(document):
        item_guid = tag.attr("itemGuid")
        feed_guid = tag.attr("feedGuid")
        if not item_guid or not feed_guid:
            skipped += 1
            logger.debug("Skipping malformed remoteItem marker: %s", raw.strip())
            continue
        if item_guid in items:
            continue
        items[item_guid] = RemoteItem(
            feed_guid=feed_guid,
            item_guid=item_guid,
            raw_form=raw.strip(),
            feed_url=tag.attr("feedURL"),
        )

    logger.debug(
        "Found %d existing remoteItems in playlist (%d malformed skipped)",
        len(items),
        skipped,
    )
    return items


def _parse_start_time(value: Optional[str]) -> float:
    try:
        return float(value) if value else 0.0
    except ValueError:
        return 0.0


def extract_upstream_pointers(
    raw_markup: str, episode_keys: Optional[Iterable[str]] = None
) -> UpstreamPointers:
    """Extract pointers from raw upstream feed markup in document order.

    A pointer belongs to the episode named by the nearest preceding
    ``<guid>`` (or ``<link>`` when no guid precedes it) inside the enclosing
    ``<item>``. Pointers with no such marker, or whose marker is not one of
    ``episode_keys`` when given, are returned as unresolved.
    """
    known_keys: Optional[Set[str]] = (
        {key.strip() for key in episode_keys} if episode_keys is not None else None
    )
    pointers = UpstreamPointers()
    if not raw_markup:
        return pointers

    in_item = False
    item_guid: Optional[str] = None
    item_link: Optional[str] = None
    text_tag: Optional[Tag] = None
    split_start: Optional[float] = None
    malformed = 0

    for tag, raw in _walk_upstream(raw_markup):
        if tag.name == "item":
            if tag.closing:
                in_item = False
            elif tag.opening:
                in_item = True
            item_guid = item_link = None
            split_start = None
            continue

        if tag.name in ("guid", "link") and in_item:
            if tag.opening:
                text_tag = tag
            elif tag.closing and text_tag is not None and text_tag.name == tag.name:
                value = element_text(raw_markup[text_tag.end : tag.start])
                if tag.name == "guid":
                    item_guid = value or item_guid
                else:
                    item_link = value or item_link
                text_tag = None
            continue

        if tag.name == VALUE_TIME_SPLIT:
            if tag.closing:
                split_start = None
            elif tag.opening:
                split_start = _parse_start_time(tag.attr("startTime"))
            continue

        if tag.name != REMOTE_ITEM:
            continue

        feed_guid = tag.attr("feedGuid")
        pointer_guid = tag.attr("itemGuid")
        if not feed_guid or not pointer_guid:
            malformed += 1
            logger.debug("Skipping upstream remoteItem without guids: %s", raw.strip())
            continue

        episode_key = (item_guid or item_link) if in_item else None
        if episode_key is not None and known_keys is not None:
            if episode_key not in known_keys:
                logger.debug(
                    "Could not match episode %s for pointer %s", episode_key, pointer_guid
                )
                episode_key = None

        candidate = PointerCandidate(
            feed_guid=feed_guid,
            item_guid=pointer_guid,
            position=tag.start,
            feed_url=tag.attr("feedURL"),
            start_time=split_start,
            episode_key=episode_key,
        )
        if candidate.resolved:
            pointers.resolved.append(candidate)
        else:
            pointers.unresolved.append(candidate)

    logger.info(
        "Extracted %d upstream pointers (%d resolved, %d unresolved, %d malformed)",
        len(pointers),
        len(pointers.resolved),
        len(pointers.unresolved),
        malformed,
    )
    return pointers


def _walk_upstream(raw_markup: str) -> Iterator[tuple[Tag, str]]:
    """Yield all tags, substituting full remoteItem markup where it has a body."""
    remote_raw = {tag.start: raw for tag, raw in _remote_item_markers(raw_markup)}
    for tag in scan_tags(raw_markup):
        if tag.name == REMOTE_ITEM and tag.closing:
            continue
        yield tag, remote_raw.get(tag.start, tag.raw)


def synthesize_pointers(episodes: List[Episode], feed_guid: str) -> List[PointerCandidate]:
    """One pointer per episode for feeds that carry no pointers of their own."""
    candidates = []
    for index, episode in enumerate(episodes):
        if episode.remote_item is not None:
            candidates.append(
                PointerCandidate(
                    feed_guid=episode.remote_item.feed_guid,
                    item_guid=episode.remote_item.item_guid,
                    position=index,
                    feed_url=episode.remote_item.feed_url,
                    episode_key=episode.key,
                )
            )
            continue
        candidates.append(
            PointerCandidate(
                feed_guid=feed_guid,
                item_guid=episode.key,
                position=index,
                episode_key=episode.key,
            )
        )
    return candidates


def podcast_guid_for_url(url: str) -> str:
    """Derive a podcast:guid from a feed URL as the podcast namespace does."""
    stripped = re.sub(r"^[A-Za-z][A-Za-z0-9+.\-]*://", "", url.strip()).rstrip("/")
    return str(uuid.uuid5(PODCAST_GUID_NAMESPACE, stripped))


def resolve_feed_guid(channel: ChannelMeta, feed: FeedConfig) -> str:
    """Guid of the upstream feed itself, used when synthesizing pointers."""
    return channel.guid or feed.feed_guid or podcast_guid_for_url(feed.source_url)


def extract_channel_guid(document: Optional[str]) -> Optional[str]:
    """Return the channel-level podcast:guid of a document, if any."""
    if not document:
        return None
    depth = 0
    start: Optional[Tag] = None
    for tag in scan_tags(document):
        if tag.name == "item":
            depth += -1 if tag.closing else (0 if tag.self_closing else 1)
            continue
        if depth or tag.name != "podcast:guid":
            continue
        if tag.opening:
            start = tag
        elif tag.closing and start is not None:
            return element_text(document[start.end : tag.start]) or None
    return None


def extract_item_guids(document: Optional[str]) -> List[str]:
    """Return the ``<guid>`` values of every ``<item>`` in document order."""
    guids: List[str] = []
    if not document:
        return guids
    in_item = False
    start: Optional[Tag] = None
    for tag in scan_tags(document):
        if tag.name == "item":
            in_item = tag.opening
            continue
        if not in_item or tag.name != "guid":
            continue
        if tag.opening:
            start = tag
        elif tag.closing and start is not None:
            value = element_text(document[start.end : tag.start])
            if value:
                guids.append(value)
            start = None
    return guids
