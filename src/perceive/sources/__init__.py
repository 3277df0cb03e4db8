"""Content providers and text extraction for perceive sources."""

from perceive.sources.base import (
    ContentProvider,
    EntryMetadata,
    SourceEntry,
    TextExtractor,
    get_provider,
    provider_types,
    register_provider,
)
from perceive.sources.bookmarks import ChromiumBookmarksProvider
from perceive.sources.extract import DefaultExtractor
from perceive.sources.fs import FilesystemProvider

register_provider(FilesystemProvider())
register_provider(ChromiumBookmarksProvider())

__all__ = [
    "ChromiumBookmarksProvider",
    "ContentProvider",
    "DefaultExtractor",
    "EntryMetadata",
    "FilesystemProvider",
    "SourceEntry",
    "TextExtractor",
    "get_provider",
    "provider_types",
    "register_provider",
]
