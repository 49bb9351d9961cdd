"""Exception taxonomy for synchronization failures."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for per-feed failures handled at the sync boundary."""


class FetchError(SyncError):
    """The upstream feed was unreachable or could not be parsed."""


class EmptyFeedError(SyncError):
    """The upstream feed contains no episodes."""


class NoContentError(SyncError):
    """Reconciliation produced nothing to write."""


class VersionConflict(SyncError):
    """The store rejected a write because the expected version is stale."""

    def __init__(self, path: str, expected_version: str | None = None) -> None:
        super().__init__(
            f"Version conflict writing {path} (expected version {expected_version!r})"
        )
        self.path = path
        self.expected_version = expected_version


class StoreAccessError(SyncError):
    """The remote store refused access or failed outright."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(ValueError):
    """Configuration could not be loaded; fatal at startup."""
