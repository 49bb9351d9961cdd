"""Jinja2 environment for musicl_sync playlist templates."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from markupsafe import Markup, escape

from .models import RemoteItem

_ENV: Environment | None = None

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _rfc822(value: datetime | None) -> str:
    """Format a datetime the way RSS expects, in UTC."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _remote_item(item: RemoteItem) -> Markup:
    """Render a pointer, reusing its persisted markup when it has one."""
    if item.raw_form:
        return Markup(item.raw_form.strip())
    parts = [f'feedGuid="{escape(item.feed_guid)}"']
    if item.feed_url:
        parts.append(f'feedURL="{escape(item.feed_url)}"')
    parts.append(f'itemGuid="{escape(item.item_guid)}"')
    return Markup("<podcast:remoteItem " + " ".join(parts) + "/>")


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        _ENV = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["xml.j2", "xml", "html"]),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        _ENV.filters["rfc822"] = _rfc822
        _ENV.filters["remote_item"] = _remote_item
    return _ENV
