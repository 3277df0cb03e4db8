"""Chromium bookmarks provider: one entry per bookmarked URL.

Reads the browser's ``Bookmarks`` JSON file (``roots`` → nested folders of
``{"type": "url" | "folder"}`` nodes). Item content is the URL; the
bookmark title becomes the item name. Pages are not fetched.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from perceive.db.models import Source
from perceive.errors import ConfigError, SourceError
from perceive.sources.base import ContentProvider, EntryMetadata, SourceEntry

logger = logging.getLogger(__name__)

# Chromium timestamps count microseconds since 1601-01-01 UTC.
_WEBKIT_EPOCH_OFFSET = 11_644_473_600
_ALLOWED_SCHEMES = {"http", "https"}


class ChromiumBookmarksProvider(ContentProvider):
    """Config keys:
      skip  domains whose bookmarks are ignored (subdomains included)
    """

    source_type = "chromium_bookmarks"

    def validate_config(self, config: dict[str, Any]) -> None:
        skip = config.get("skip", [])
        if not isinstance(skip, list) or not all(isinstance(d, str) for d in skip):
            raise ConfigError("chromium_bookmarks config 'skip' must be a list of domains")

    def enumerate(self, source: Source) -> Iterator[SourceEntry]:
        path = Path(source.location).expanduser()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise SourceError(f"Cannot read bookmarks file '{path}': {exc}") from exc
        except json.JSONDecodeError as exc:
            raise SourceError(f"Bookmarks file '{path}' is not valid JSON: {exc}") from exc

        roots = data.get("roots") if isinstance(data, dict) else None
        if not isinstance(roots, dict):
            raise SourceError(f"Bookmarks file '{path}' has no 'roots' object")

        skip = [d.lower().lstrip(".") for d in source.config_dict.get("skip", [])]
        seen: set[str] = set()
        for root in roots.values():
            if not isinstance(root, dict):
                continue
            for node in _walk(root):
                entry = _entry_for(node, skip)
                if entry is None or entry.external_id in seen:
                    continue
                seen.add(entry.external_id)
                yield entry


def _walk(node: dict[str, Any]) -> Iterator[dict[str, Any]]:
    if node.get("type") == "url":
        yield node
    elif node.get("type") == "folder":
        for child in node.get("children", []):
            if isinstance(child, dict):
                yield from _walk(child)


def _entry_for(node: dict[str, Any], skip: list[str]) -> SourceEntry | None:
    url = node.get("url") or ""
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES or not parsed.hostname:
        logger.debug("Ignoring bookmark with unsupported URL %r", url)
        return None
    host = parsed.hostname.lower()
    if any(host == d or host.endswith("." + d) for d in skip):
        return None

    added = webkit_to_unix(node.get("date_added"))
    last_used = webkit_to_unix(node.get("date_last_used"))
    modified = webkit_to_unix(node.get("date_modified")) or added
    return SourceEntry(
        external_id=url,
        metadata=EntryMetadata(
            name=node.get("name") or None,
            modified=modified,
            last_accessed=last_used or added,
        ),
        content_type="text/plain",
        raw=url.encode("utf-8"),
    )


def webkit_to_unix(value: Any) -> int | None:
    """Convert a Chromium timestamp string to unix seconds; '0' and junk give None."""
    try:
        micros = int(value)
    except (TypeError, ValueError):
        return None
    if micros <= 0:
        return None
    return micros // 1_000_000 - _WEBKIT_EPOCH_OFFSET
