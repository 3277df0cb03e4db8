"""Filesystem content provider: every matching file under a directory."""

from __future__ import annotations

import fnmatch
import logging
import mimetypes
import os
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from perceive.db.models import Source
from perceive.errors import ConfigError, ExtractionError, SourceError
from perceive.sources.base import ContentProvider, EntryMetadata, SourceEntry

logger = logging.getLogger(__name__)

_DEFAULT_GLOBS = ["*"]


class FilesystemProvider(ContentProvider):
    """Walks ``source.location`` and yields files matching the configured globs.

    Config keys:
      globs           patterns a file's relative path must match (default ["*"])
      exclude         patterns that drop a file or a whole directory
      include_hidden  walk dot-files and dot-directories (default false)
    """

    source_type = "fs"

    def validate_config(self, config: dict[str, Any]) -> None:
        for key in ("globs", "exclude"):
            value = config.get(key, [])
            if not isinstance(value, list) or not all(isinstance(g, str) for g in value):
                raise ConfigError(f"fs source config '{key}' must be a list of glob strings")
        if not isinstance(config.get("include_hidden", False), bool):
            raise ConfigError("fs source config 'include_hidden' must be true or false")

    def enumerate(self, source: Source) -> Iterator[SourceEntry]:
        root = Path(source.location).expanduser()
        if not root.is_dir():
            raise SourceError(f"Source location '{root}' is not a readable directory")

        config = source.config_dict
        globs = config.get("globs") or _DEFAULT_GLOBS
        exclude = config.get("exclude") or []
        include_hidden = bool(config.get("include_hidden", False))

        for dirpath, dirnames, filenames in os.walk(root, onerror=_log_walk_error):
            rel_dir = Path(dirpath).relative_to(root)
            # Prune in place so os.walk does not descend; sorted for stable order.
            dirnames[:] = sorted(
                d
                for d in dirnames
                if (include_hidden or not d.startswith("."))
                and not _matches((rel_dir / d).as_posix(), exclude)
            )
            for filename in sorted(filenames):
                if not include_hidden and filename.startswith("."):
                    continue
                rel = (rel_dir / filename).as_posix()
                if not _matches(rel, globs) or _matches(rel, exclude):
                    continue
                path = Path(dirpath) / filename
                entry = _entry_for(path)
                if entry is not None:
                    yield entry


def _matches(rel_path: str, patterns: list[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(rel_path, p) or fnmatch.fnmatch(name, p) for p in patterns)


def _entry_for(path: Path) -> SourceEntry | None:
    try:
        st = path.stat()
    except OSError as exc:
        logger.warning("Skipping %s: %s", path, exc)
        return None
    if not path.is_file():
        return None
    content_type, _ = mimetypes.guess_type(path.name)
    return SourceEntry(
        external_id=str(path),
        metadata=EntryMetadata(
            name=path.name,
            modified=int(st.st_mtime),
            last_accessed=int(st.st_atime),
        ),
        content_type=content_type,
        loader=lambda: _read(path),
    )


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ExtractionError(f"Could not read '{path}': {exc}") from exc


def _log_walk_error(exc: OSError) -> None:
    logger.warning("Cannot list %s: %s", exc.filename, exc.strerror)
