"""Versioned remote document stores and the local playlist cache."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import List, Optional, Protocol

import requests

from .errors import StoreAccessError, VersionConflict
from .models import StoredDocument, StoreEntry
from .sessions import build_session

logger = logging.getLogger(__name__)


class VersionedStore(Protocol):
    """Document store with optimistic concurrency on writes."""

    def get_with_version(self, path: str) -> StoredDocument:
        """Return the document at ``path``; content is ``None`` when absent."""

    def put_if_version(
        self,
        path: str,
        content: str,
        expected_version: Optional[str],
        message: str,
    ) -> str:
        """Write ``content`` if the stored version still matches; return the new version."""

    def list_directory(self, path: str) -> List[StoreEntry]:
        """Return the files directly under ``path``."""

    def public_url(self, path: str) -> Optional[str]:
        """Public location of ``path`` for subscribers, if there is one."""


class GitHubContentsStore:
    """Store backed by the GitHub contents API; the version token is the blob sha."""

    API_URL = "https://api.github.com"
    RAW_URL = "https://raw.githubusercontent.com"

    def __init__(
        self,
        owner: str,
        repo: str,
        branch: str = "main",
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        retries: int = 3,
        backoff_factor: float = 1.0,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.timeout = timeout
        self.session = session or build_session(
            retries, backoff_factor, methods=("GET", "HEAD", "PUT")
        )
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _contents_url(self, path: str) -> str:
        return f"{self.API_URL}/repos/{self.owner}/{self.repo}/contents/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            return self.session.request(
                method,
                self._contents_url(path),
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise StoreAccessError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_access(response: requests.Response, path: str) -> None:
        if response.status_code in (401, 403):
            raise StoreAccessError(
                f"Access denied to {path} (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise StoreAccessError(
                f"Store request for {path} failed (HTTP {response.status_code})",
                status_code=response.status_code,
            )

    @staticmethod
    def _json(response: requests.Response, path: str):
        try:
            return response.json()
        except ValueError as exc:
            raise StoreAccessError(
                f"Unexpected response for {path} (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc

    def get_with_version(self, path: str) -> StoredDocument:
        response = self._request("GET", path, params={"ref": self.branch})
        if response.status_code == 404:
            logger.debug("%s does not exist on %s/%s", path, self.owner, self.repo)
            return StoredDocument(content=None, version=None)
        self._raise_for_access(response, path)

        payload = self._json(response, path)
        if isinstance(payload, list):
            raise StoreAccessError(f"{path} is a directory, not a document")
        if not isinstance(payload, dict):
            raise StoreAccessError(f"Unexpected response for {path}")
        sha = payload.get("sha")
        if payload.get("encoding") == "base64" and payload.get("content") is not None:
            content = base64.b64decode(payload["content"]).decode("utf-8")
        else:
            # Files above the API's inline size limit must be fetched raw.
            raw = self._request(
                "GET",
                path,
                params={"ref": self.branch},
                headers={"Accept": "application/vnd.github.raw"},
            )
            self._raise_for_access(raw, path)
            content = raw.content.decode("utf-8")
        return StoredDocument(content=content, version=sha)

    def put_if_version(
        self,
        path: str,
        content: str,
        expected_version: Optional[str],
        message: str,
    ) -> str:
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if expected_version:
            body["sha"] = expected_version

        response = self._request("PUT", path, json=body)
        if response.status_code == 409:
            raise VersionConflict(path, expected_version)
        if response.status_code == 422 and not expected_version:
            # The document appeared after we read it as missing.
            raise VersionConflict(path, expected_version)
        self._raise_for_access(response, path)

        payload = self._json(response, path)
        if not isinstance(payload, dict):
            raise StoreAccessError(f"Unexpected response for {path}")
        new_version = (payload.get("content") or {}).get("sha", "")
        logger.info("Updated %s on %s/%s (%s)", path, self.owner, self.repo, new_version)
        return new_version

    def list_directory(self, path: str) -> List[StoreEntry]:
        response = self._request("GET", path, params={"ref": self.branch})
        if response.status_code == 404:
            raise StoreAccessError(f"Directory {path} not found", status_code=404)
        self._raise_for_access(response, path)
        payload = self._json(response, path)
        if not isinstance(payload, list):
            raise StoreAccessError(f"{path} is not a directory")
        return [
            StoreEntry(name=item["name"], path=item["path"])
            for item in payload
            if item.get("type") == "file"
        ]

    def public_url(self, path: str) -> Optional[str]:
        return f"{self.RAW_URL}/{self.owner}/{self.repo}/{self.branch}/{path.lstrip('/')}"


class LocalPlaylistCache:
    """On-disk copy of the most recently rendered playlists."""

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)

    def path_for(self, playlist_id: str) -> Path:
        return self.directory / f"{playlist_id}.xml"

    def write(self, playlist_id: str, content: str) -> Path:
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info("Created output directory: %s", self.directory)
        location = self.path_for(playlist_id)
        location.write_text(content, encoding="utf-8")
        logger.debug("Wrote local playlist copy %s", location)
        return location
