"""Collaborator interfaces for content acquisition and text extraction.

A ContentProvider enumerates the entries of one kind of source (a
filesystem tree, a bookmarks file). A TextExtractor turns an entry's raw
bytes into the text that gets embedded. Providers register by
``source_type`` so new kinds of sources plug in without touching the sync
engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from perceive.db.models import Source
from perceive.errors import ConfigError


@dataclass
class EntryMetadata:
    """Descriptive fields a provider knows about an entry without reading it."""

    name: str | None = None
    author: str | None = None
    description: str | None = None
    modified: int | None = None  # unix seconds
    last_accessed: int | None = None  # unix seconds


@dataclass
class SourceEntry:
    """One enumerated entry. Raw content is either given or loaded on demand.

    Attributes:
        external_id: Stable id of the entry within its source (path, URL).
        metadata: Name, timestamps, etc.
        content_type: MIME type hint for the extractor.
        raw: Raw content, when the provider already has it.
        loader: Callable returning raw content; raises ExtractionError on failure.
    """

    external_id: str
    metadata: EntryMetadata = field(default_factory=EntryMetadata)
    content_type: str | None = None
    raw: bytes | None = None
    loader: Callable[[], bytes] | None = None

    def load(self) -> bytes:
        """Return the raw content, calling the loader at most once."""
        if self.raw is None:
            self.raw = self.loader() if self.loader is not None else b""
        return self.raw


class ContentProvider(ABC):
    """Enumerates the entries of sources of one ``source_type``."""

    source_type: str = ""

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> None:
        """Raise ConfigError if *config* is not usable for this provider."""

    @abstractmethod
    def enumerate(self, source: Source) -> Iterator[SourceEntry]:
        """Yield the source's entries lazily.

        Raises:
            SourceError: If the source as a whole cannot be read.
        """


class TextExtractor(ABC):
    """Converts raw entry content into embeddable text.

    ``process_version`` is stored on every item; bumping it makes the next
    sync re-extract items processed by an older version.
    """

    process_version: int = 1

    @abstractmethod
    def extract(self, raw: bytes, content_type: str | None) -> str:
        """Return plain text for *raw*.

        Raises:
            ExtractionError: If the content cannot be converted.
        """


# ------------------------------------------------------------------
# Provider registry
# ------------------------------------------------------------------

_PROVIDERS: dict[str, ContentProvider] = {}


def register_provider(provider: ContentProvider) -> None:
    _PROVIDERS[provider.source_type] = provider


def get_provider(source_type: str) -> ContentProvider:
    """Return the provider for *source_type*.

    Raises:
        ConfigError: If no provider handles the type.
    """
    provider = _PROVIDERS.get(source_type)
    if provider is None:
        raise ConfigError(
            f"Unknown source type '{source_type}' (available: {', '.join(provider_types())})"
        )
    return provider


def provider_types() -> list[str]:
    return sorted(_PROVIDERS)
