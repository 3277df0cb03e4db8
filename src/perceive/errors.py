"""Error taxonomy shared by every perceive component.

Per-item failures (ExtractionError, InferenceError after retry) are recorded
on the item and never abort a pass. Per-source failures (ConfigError,
SourceError) mark that source only. StoreError is raised to the caller of the
operation that triggered it.
"""

from __future__ import annotations


class PerceiveError(Exception):
    """Base class for all perceive errors."""


class ConfigError(PerceiveError, ValueError):
    """Raised when a config file or a source configuration is invalid."""


class SourceError(PerceiveError):
    """Raised when a whole source cannot be read (missing location, bad file)."""


class ExtractionError(PerceiveError):
    """Raised by a text extractor when one item's content cannot be converted."""


class ModelLoadError(PerceiveError):
    """Raised when a model version cannot be loaded (weights missing, bad format)."""


class ModelNotReadyError(PerceiveError):
    """Raised when no ready model version is active for embedding or search."""


class InferenceError(PerceiveError):
    """Raised when a model handle fails to embed a batch."""


class IndexConsistencyError(PerceiveError):
    """Raised when a vector index disagrees with the item store.

    Attributes:
        model_id: Model whose index is inconsistent.
        model_version: Version whose index is inconsistent.
    """

    def __init__(self, message: str, model_id: int, model_version: int) -> None:
        super().__init__(message)
        self.model_id = model_id
        self.model_version = model_version


class StoreError(PerceiveError):
    """Raised when a store transaction fails after retries."""
