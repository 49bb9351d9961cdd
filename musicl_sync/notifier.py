"""Feed-changed notifications via Podping."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import requests

from .models import NotificationResult
from .sessions import build_session

logger = logging.getLogger(__name__)


class ChangeNotifier(Protocol):
    def announce(self, public_url: str) -> NotificationResult:
        """Announce that the document at ``public_url`` changed. Never raises."""


class NullNotifier:
    """Notifier used when notifications are disabled."""

    def announce(self, public_url: str) -> NotificationResult:
        logger.debug("Notifications disabled; not announcing %s", public_url)
        return NotificationResult(accepted=False, message="disabled")


class PodpingNotifier:
    """Sends a podping for an updated feed through a podping.cloud style endpoint."""

    def __init__(
        self,
        auth_token: Optional[str],
        endpoint: str = "https://podping.cloud/",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        retries: int = 2,
        backoff_factor: float = 0.5,
    ) -> None:
        self.auth_token = auth_token
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or build_session(retries, backoff_factor)

    def announce(self, public_url: str) -> NotificationResult:
        if not public_url:
            logger.warning("Podping: cannot send notification, feed URL is empty")
            return NotificationResult(accepted=False, message="Feed URL is empty")
        if not self.auth_token:
            logger.warning(
                "Podping: no auth token configured (set PODPING_AUTH_TOKEN); skipping %s",
                public_url,
            )
            return NotificationResult(accepted=False, message="Auth token not configured")

        logger.info("Sending podping for %s", public_url)
        try:
            response = self.session.get(
                self.endpoint,
                params={"url": public_url, "reason": "update", "medium": "musicL"},
                headers={"Authorization": self.auth_token},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Failed to send podping for %s: %s", public_url, exc)
            return NotificationResult(accepted=False, message=str(exc))

        if 200 <= response.status_code < 300:
            logger.info("Podping accepted for %s", public_url)
            return NotificationResult(accepted=True, message="Notification sent")

        if response.status_code == 401:
            logger.warning("Podping: authentication failed; check PODPING_AUTH_TOKEN")
        else:
            logger.warning(
                "Podping returned status %d for %s", response.status_code, public_url
            )
        return NotificationResult(
            accepted=False, message=f"Status {response.status_code}"
        )
