"""Merge existing playlist pointers with freshly fetched upstream pointers."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .errors import NoContentError
from .extraction import (
    extract_existing_items,
    extract_item_guids,
    extract_upstream_pointers,
    resolve_feed_guid,
    synthesize_pointers,
)
from .formats import detect_format
from .models import (
    Episode,
    FeedConfig,
    FetchedFeed,
    PlaylistFormat,
    PointerCandidate,
    ReconciliationResult,
    RemoteItem,
    UpstreamPointers,
)

logger = logging.getLogger(__name__)


def reconcile(
    existing_by_guid: Mapping[str, RemoteItem],
    upstream_ordered: Iterable[PointerCandidate],
    upstream_item_guids: Optional[Set[str]] = None,
) -> ReconciliationResult:
    """Re-sequence a playlist to follow the current upstream pointer order.

    Existing entries that recur upstream keep their exact ``raw_form``; new
    pointers are synthesized from the upstream pair. Existing entries that
    appear nowhere in ``upstream_item_guids`` (the full upstream pointer set,
    defaulting to the guids of ``upstream_ordered``) are kept at the end in
    their original relative order.
    """
    upstream_ordered = list(upstream_ordered)
    if upstream_item_guids is None:
        upstream_item_guids = {pointer.item_guid for pointer in upstream_ordered}

    result = ReconciliationResult()
    consumed: Set[str] = set()

    for pointer in upstream_ordered:
        if pointer.item_guid in consumed:
            continue
        consumed.add(pointer.item_guid)
        existing = existing_by_guid.get(pointer.item_guid)
        if existing is not None:
            result.items.append(existing)
            result.carried_over += 1
        else:
            result.items.append(
                RemoteItem(
                    feed_guid=pointer.feed_guid,
                    item_guid=pointer.item_guid,
                    feed_url=pointer.feed_url,
                )
            )
            result.added += 1

    for item_guid, existing in existing_by_guid.items():
        if item_guid in consumed or item_guid in upstream_item_guids:
            continue
        result.items.append(existing)
        result.orphaned += 1

    if not result.items:
        raise NoContentError("Reconciliation produced no items")

    logger.info(
        "Reconciled playlist: %d new + %d existing from upstream + %d preserved orphans = %d total",
        result.added,
        result.carried_over,
        result.orphaned,
        len(result.items),
    )
    return result


def reconcile_episodes(
    existing_document: Optional[str], episodes: List[Episode]
) -> ReconciliationResult:
    """Full-item playlists take the upstream episode list as authoritative."""
    if not episodes:
        raise NoContentError("Upstream feed has no episodes to render")

    known = set(extract_item_guids(existing_document))
    added = sum(1 for episode in episodes if episode.key not in known)
    logger.info(
        "Full-item playlist: %d episodes (%d new)", len(episodes), added
    )
    return ReconciliationResult(
        added=added, carried_over=len(episodes) - added, episodes=list(episodes)
    )


@dataclass
class MergePlan:
    """Outcome of the pure part of one synchronization pass."""

    format: PlaylistFormat
    result: ReconciliationResult
    upstream: UpstreamPointers = field(default_factory=UpstreamPointers)
    synthesized: bool = False


def _attach_embedded_pointers(
    episodes: List[Episode], upstream: UpstreamPointers
) -> List[Episode]:
    """Copy episodes, giving each its first standalone pointer."""
    embedded: Dict[str, PointerCandidate] = {}
    for pointer in upstream.resolved:
        if pointer.start_time is None:
            embedded.setdefault(pointer.episode_key, pointer)

    attached = []
    for episode in episodes:
        pointer = embedded.get(episode.key)
        if pointer is not None and episode.remote_item is None:
            episode = dataclasses.replace(
                episode,
                remote_item=RemoteItem(
                    feed_guid=pointer.feed_guid,
                    item_guid=pointer.item_guid,
                    feed_url=pointer.feed_url,
                ),
            )
        attached.append(episode)
    return attached


def merge_playlist(
    feed: FeedConfig,
    fetched: FetchedFeed,
    existing_content: Optional[str],
    include_unresolved: bool = True,
) -> MergePlan:
    """Detect, extract and reconcile for one pass; performs no I/O."""
    playlist_format = detect_format(existing_content)
    episode_keys = [episode.key for episode in fetched.episodes]
    upstream = extract_upstream_pointers(fetched.raw_markup, episode_keys)

    if playlist_format is PlaylistFormat.FULL_ITEMS:
        episodes = _attach_embedded_pointers(fetched.episodes, upstream)
        return MergePlan(
            format=playlist_format,
            result=reconcile_episodes(existing_content, episodes),
            upstream=upstream,
        )

    synthesized = False
    if not len(upstream):
        if not fetched.episodes:
            raise NoContentError(
                f"No pointers and no episodes upstream for {feed.playlist_id}"
            )
        logger.warning(
            "No remoteItem pointers found upstream for %s; synthesizing one per episode",
            feed.display_name,
        )
        feed_guid = resolve_feed_guid(fetched.channel, feed)
        upstream = UpstreamPointers(
            resolved=synthesize_pointers(fetched.episodes, feed_guid)
        )
        synthesized = True

    if upstream.unresolved:
        logger.info(
            "%d pointers for %s could not be matched to an episode (%s)",
            len(upstream.unresolved),
            feed.display_name,
            "appended" if include_unresolved else "dropped",
        )

    existing = extract_existing_items(existing_content)
    result = reconcile(
        existing,
        upstream.ordered(include_unresolved=include_unresolved),
        upstream.all_item_guids,
    )
    return MergePlan(
        format=playlist_format,
        result=result,
        upstream=upstream,
        synthesized=synthesized,
    )
