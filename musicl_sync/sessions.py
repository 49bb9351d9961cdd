"""HTTP session construction with bounded exponential backoff."""

from __future__ import annotations

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

USER_AGENT = "musicl-sync/0.1 (+https://podcastindex.org/namespace/1.0)"

RETRY_STATUSES = (429, 500, 502, 503, 504)


def build_session(
    retries: int = 3,
    backoff_factor: float = 1.0,
    methods: tuple[str, ...] = ("GET", "HEAD"),
) -> requests.Session:
    """Return a session that retries transient failures on ``methods``."""
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset(methods),
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers["User-Agent"] = USER_AGENT
    return session
