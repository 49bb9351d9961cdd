import json
from typing import Callable, Dict, List, Optional, Tuple

import pytest
import requests

from musicl_sync.errors import VersionConflict
from musicl_sync.models import (
    ChannelMeta,
    Episode,
    FeedConfig,
    FetchedFeed,
    StoredDocument,
    StoreEntry,
)


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        content: bytes = b"",
        payload=None,
        headers: Optional[Dict[str, str]] = None,
        encoding: Optional[str] = None,
    ):
        self.status_code = status_code
        self.content = content
        self._payload = payload
        self.headers = headers or {}
        self.encoding = encoding

    def json(self):
        if self._payload is not None:
            return self._payload
        return json.loads(self.content.decode("utf-8"))

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """Records requests and answers them through ``handler``."""

    def __init__(self, handler: Callable[[str, str, dict], FakeResponse]):
        self.handler = handler
        self.calls: List[Tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)


class MemoryStore:
    """In-memory versioned store; versions count writes per path."""

    def __init__(self, base_url: Optional[str] = "https://cdn.example.com"):
        self.documents: Dict[str, Tuple[str, int]] = {}
        self.writes: List[Tuple[str, str, Optional[str], str]] = []
        self.base_url = base_url
        self.before_put: Optional[Callable[[str], None]] = None

    def seed(self, path: str, content: str) -> str:
        _, version = self.documents.get(path, ("", 0))
        self.documents[path] = (content, version + 1)
        return str(version + 1)

    def content(self, path: str) -> Optional[str]:
        stored = self.documents.get(path)
        return stored[0] if stored else None

    def get_with_version(self, path: str) -> StoredDocument:
        stored = self.documents.get(path)
        if stored is None:
            return StoredDocument(content=None, version=None)
        return StoredDocument(content=stored[0], version=str(stored[1]))

    def put_if_version(self, path, content, expected_version, message):
        if self.before_put is not None:
            hook, self.before_put = self.before_put, None
            hook(path)
        current = self.documents.get(path)
        current_version = str(current[1]) if current else None
        if current_version != expected_version:
            raise VersionConflict(path, expected_version)
        new_version = (current[1] if current else 0) + 1
        self.documents[path] = (content, new_version)
        self.writes.append((path, content, expected_version, message))
        return str(new_version)

    def list_directory(self, path: str) -> List[StoreEntry]:
        prefix = path.strip("/") + "/"
        return [
            StoreEntry(name=stored[len(prefix) :], path=stored)
            for stored in sorted(self.documents)
            if stored.startswith(prefix) and "/" not in stored[len(prefix) :]
        ]

    def public_url(self, path: str) -> Optional[str]:
        if not self.base_url:
            return None
        return f"{self.base_url}/{path}"


class StaticReader:
    def __init__(self, fetched: Optional[FetchedFeed] = None, error: Optional[Exception] = None):
        self.fetched = fetched
        self.error = error
        self.urls: List[str] = []

    def fetch(self, url: str) -> FetchedFeed:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.fetched


UPSTREAM_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:podcast="https://podcastindex.org/namespace/1.0">
  <channel>
    <title>Example Music Show</title>
    <link>https://example.com/show</link>
    <podcast:guid>show-guid</podcast:guid>
    <item>
      <title>Episode 2</title>
      <guid isPermaLink="false">ep-2</guid>
      <podcast:valueTimeSplit startTime="30" duration="180" remotePercentage="90">
        <podcast:remoteItem itemGuid="track-c" feedGuid="artist-2"/>
      </podcast:valueTimeSplit>
      <podcast:valueTimeSplit startTime="300" duration="200" remotePercentage="90">
        <podcast:remoteItem feedGuid="artist-3" itemGuid="track-d"/>
      </podcast:valueTimeSplit>
    </item>
    <item>
      <title>Episode 1</title>
      <guid isPermaLink="false">ep-1</guid>
      <description><![CDATA[<podcast:remoteItem feedGuid="x" itemGuid="not-a-pointer"/>]]></description>
      <podcast:valueTimeSplit startTime="10" duration="120" remotePercentage="90">
        <podcast:remoteItem feedGuid="artist-1" itemGuid="track-a"/>
      </podcast:valueTimeSplit>
      <podcast:valueTimeSplit startTime="200" duration="120" remotePercentage="90">
        <podcast:remoteItem feedGuid="artist-1" itemGuid="track-b"/>
      </podcast:valueTimeSplit>
    </item>
  </channel>
</rss>
"""


def make_fetched(raw_markup: str = UPSTREAM_FEED, keys=("ep-2", "ep-1")) -> FetchedFeed:
    episodes = [Episode(key=key, title=f"Episode {key}") for key in keys]
    return FetchedFeed(
        episodes=episodes,
        channel=ChannelMeta(title="Example Music Show", link="https://example.com/show", guid="show-guid"),
        raw_markup=raw_markup,
    )


@pytest.fixture
def feed():
    return FeedConfig(
        playlist_id="example-show",
        source_url="https://example.com/show/feed.xml",
        title="Example Music Show Playlist",
        description="Every track from the show",
        author="Example Host",
        image_url="https://example.com/art.jpg",
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def upstream_feed():
    return UPSTREAM_FEED


@pytest.fixture
def fetched():
    return make_fetched()


@pytest.fixture
def fetched_factory():
    return make_fetched


@pytest.fixture
def reader_factory():
    return StaticReader


@pytest.fixture
def session_factory():
    return FakeSession


@pytest.fixture
def response_factory():
    return FakeResponse
