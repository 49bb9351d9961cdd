"""Configuration loading for playlist synchronization."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET

from .errors import ConfigError
from .models import FeedConfig

logger = logging.getLogger(__name__)

UNRESOLVED_POLICIES = ("append", "drop")


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class StoreConfig:
    type: str = "github"
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch: str = "main"
    directory: str = "docs"
    token: Optional[str] = None
    connection_string: Optional[str] = None
    public_base_url: Optional[str] = None


@dataclass
class PodpingConfig:
    enabled: bool = False
    endpoint: str = "https://podping.cloud/"
    token: Optional[str] = None


@dataclass
class AppConfig:
    feeds_file: str
    env_file: Optional[str] = None
    playlists_dir: str = "playlists"
    default_interval_minutes: int = 30
    network_retries: int = 3
    backoff_factor: float = 1.0
    conflict_retries: int = 3
    timeout_seconds: float = 10.0
    concurrency: int = 4
    unresolved_pointers: str = "append"
    state_path: str = "state/feeds-state.json"
    store: StoreConfig = field(default_factory=StoreConfig)
    podping: PodpingConfig = field(default_factory=PodpingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _flag(value: Optional[str], default: bool = True) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "yes", "1", "on")


def _int(value: Optional[str], default: int, name: str) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _float(value: Optional[str], default: float, name: str) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def parse_feeds_config(path: str, default_interval: int = 30) -> List[FeedConfig]:
    """Parse the OPML feeds file and return one definition per playlist."""
    logger.info("Loading feed configuration from %s", path)
    try:
        tree = ET.parse(path)
    except ET.ParseError as exc:
        raise ConfigError(f"Feeds file {path} is not valid XML: {exc}") from exc
    body = tree.getroot().find("body")
    if body is None:
        raise ConfigError("feeds.xml is missing the <body> section.")

    feeds: List[FeedConfig] = []
    seen = set()

    def walk(outline: ET.Element) -> None:
        attrs = outline.attrib
        feed_url = attrs.get("xmlUrl")
        if attrs.get("type") == "rss" and feed_url:
            playlist_id = (attrs.get("playlistId") or "").strip()
            if not playlist_id:
                raise ConfigError(f"Feed {feed_url} has no playlistId")
            if playlist_id in seen:
                raise ConfigError(f"Duplicate playlistId: {playlist_id}")
            seen.add(playlist_id)
            title = attrs.get("title") or attrs.get("text") or playlist_id
            feeds.append(
                FeedConfig(
                    playlist_id=playlist_id,
                    source_url=feed_url,
                    title=title,
                    description=attrs.get("description", ""),
                    author=attrs.get("author", ""),
                    image_url=attrs.get("image", ""),
                    enabled=_flag(attrs.get("enabled")),
                    poll_interval_minutes=_int(
                        attrs.get("interval"), default_interval, f"interval of {playlist_id}"
                    ),
                    name=attrs.get("text") or None,
                    playlist_guid=attrs.get("playlistGuid") or None,
                    feed_guid=attrs.get("feedGuid") or None,
                )
            )
            logger.debug("Registered feed '%s' -> %s", feed_url, playlist_id)
            return

        for child in outline.findall("outline"):
            walk(child)

    for outline in body.findall("outline"):
        walk(outline)

    logger.info("Loaded %d feeds from configuration", len(feeds))
    return feeds


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def parse_env_config(path: str) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars: Dict[str, str] = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    try:
        tree = ET.parse(path)
    except (OSError, ET.ParseError) as exc:
        logger.warning("Failed to load environment config: %s", exc)
        raise
    for var in tree.getroot().findall("variable"):
        name = var.attrib.get("name")
        value = var.text
        if name and value:
            env_vars[name] = value.strip()
    return env_vars


def _parse_store(node: Optional[ET.Element]) -> StoreConfig:
    store = StoreConfig()
    if node is None:
        raise ConfigError("Config missing <store> section")

    store.type = node.attrib.get("type", "github").strip().lower()
    store.directory = (node.findtext("directory") or "docs").strip().strip("/")
    if store.type == "github":
        store.owner = node.findtext("owner")
        store.repo = node.findtext("repo")
        store.branch = node.findtext("branch", "main").strip() or "main"
        if not store.owner or not store.repo:
            raise ConfigError("GitHub store requires <owner> and <repo>")
        store.owner = store.owner.strip()
        store.repo = store.repo.strip()
        store.token = os.environ.get("GITHUB_TOKEN")
    elif store.type == "database":
        store.connection_string = node.findtext("connection-string")
        if not store.connection_string:
            raise ConfigError("Database store requires <connection-string>")
        store.connection_string = store.connection_string.strip()
        store.public_base_url = node.findtext("public-base-url") or None
    else:
        raise ConfigError(f"Unsupported store type: {store.type}")
    return store


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML.

    Tokens are read from the environment (``GITHUB_TOKEN``,
    ``PODPING_AUTH_TOKEN``); variables from the ``<env>`` file are merged
    into ``os.environ`` first so they are visible here.
    """
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    try:
        root = ET.parse(config_path).getroot()
    except ET.ParseError as exc:
        raise ConfigError(f"Config file {path} is not valid XML: {exc}") from exc

    feeds_node = root.find("feeds")
    if feeds_node is None or not feeds_node.text:
        raise ConfigError("Config missing <feeds> path")
    feeds_file = _resolve_path(config_path, feeds_node.text.strip())

    env_node = root.find("env")
    env_file = (
        _resolve_path(config_path, env_node.text.strip())
        if env_node is not None and env_node.text
        else None
    )
    if env_file:
        os.environ.update(parse_env_config(env_file))

    unresolved = root.findtext("unresolved-pointers", "append").strip().lower()
    if unresolved not in UNRESOLVED_POLICIES:
        raise ConfigError(
            f"<unresolved-pointers> must be one of {', '.join(UNRESOLVED_POLICIES)}"
        )

    podping = PodpingConfig()
    podping_node = root.find("podping")
    if podping_node is not None:
        podping.enabled = _flag(podping_node.findtext("enabled"), default=False)
        endpoint = podping_node.findtext("endpoint")
        if endpoint and endpoint.strip():
            podping.endpoint = endpoint.strip()
    podping.token = os.environ.get("PODPING_AUTH_TOKEN")

    logging_config = LoggingConfig()
    log_node = root.find("logging")
    if log_node is not None:
        logging_config.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            logging_config.file = _resolve_path(config_path, log_file)

    return AppConfig(
        feeds_file=feeds_file,
        env_file=env_file,
        playlists_dir=_resolve_path(
            config_path, root.findtext("playlists-dir", "playlists").strip()
        ),
        default_interval_minutes=_int(
            root.findtext("default-interval-minutes"), 30, "default-interval-minutes"
        ),
        network_retries=_int(root.findtext("network-retries"), 3, "network-retries"),
        backoff_factor=_float(root.findtext("backoff-factor"), 1.0, "backoff-factor"),
        conflict_retries=_int(root.findtext("conflict-retries"), 3, "conflict-retries"),
        timeout_seconds=_float(root.findtext("timeout-seconds"), 10.0, "timeout-seconds"),
        concurrency=_int(root.findtext("concurrency"), 4, "concurrency"),
        unresolved_pointers=unresolved,
        state_path=(root.findtext("state-path") or "state/feeds-state.json").strip(),
        store=_parse_store(root.find("store")),
        podping=podping,
        logging=logging_config,
    )
