"""Playlist format detection."""

from __future__ import annotations

import logging
from typing import Optional

from .extraction import scan_tags
from .models import PlaylistFormat

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = PlaylistFormat.REMOTE_ITEMS_ONLY

_FULL_ENTRY_MARKERS = ("title", "enclosure")


def detect_format(
    document: Optional[str], default: PlaylistFormat = DEFAULT_FORMAT
) -> PlaylistFormat:
    """Classify a playlist document by its on-disk shape.

    A document holding at least one ``<item>`` with its own title or
    enclosure is ``FULL_ITEMS``; anything else, including a document with
    pointers only, is ``REMOTE_ITEMS_ONLY``. A missing document gets
    ``default``.
    """
    if not document or not document.strip():
        logger.debug("No existing document; using default format %s", default.value)
        return default

    in_item = False
    for tag in scan_tags(document):
        if tag.name == "item":
            in_item = tag.opening
        elif in_item and tag.name in _FULL_ENTRY_MARKERS and not tag.closing:
            return PlaylistFormat.FULL_ITEMS
    return PlaylistFormat.REMOTE_ITEMS_ONLY
