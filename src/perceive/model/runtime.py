"""Model runtime: load embedding models and run inference through exclusive handles.

A backend wraps one inference library. ``ModelRuntime.load`` resolves the
backend for a model's ``model_type``, loads the version's weights once, and
caches the resulting ``ModelHandle`` per (model_id, version).

Backends:
  sentence_transformers  local weights directory, via sentence-transformers
  litellm                locally served embedding model, via litellm.embedding()
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from pathlib import Path

import litellm
import numpy as np

from perceive.db.models import Model, ModelVersion
from perceive.errors import InferenceError, ModelLoadError

logger = logging.getLogger(__name__)

# Rough characters-per-token ratio for backends without a tokenizer on hand.
_CHARS_PER_TOKEN = 4
_PROBE_TEXT = "dimension probe"


class EmbeddingBackend(ABC):
    """One loaded model. Implementations need not be thread-safe."""

    max_tokens: int = 512

    @abstractmethod
    def encode(self, texts: list[str]) -> np.ndarray:
        """Return an (n, dim) array for *texts*, truncating over-long input."""


BackendFactory = Callable[[Model, ModelVersion, Path], EmbeddingBackend]

_BACKENDS: dict[str, BackendFactory] = {}


def register_backend(model_type: str, factory: BackendFactory) -> None:
    """Register *factory* to build backends for models of *model_type*.

    The factory receives the model, the version and the resolved weights
    path, and raises ModelLoadError when the weights cannot be loaded.
    """
    _BACKENDS[model_type] = factory


def backend_types() -> list[str]:
    return sorted(_BACKENDS)


# ------------------------------------------------------------------
# Built-in backends
# ------------------------------------------------------------------


class SentenceTransformerBackend(EmbeddingBackend):
    """Local transformer weights loaded with sentence-transformers."""

    def __init__(self, weights_path: Path) -> None:
        if not weights_path.exists():
            raise ModelLoadError(f"Model weights not found at '{weights_path}'")
        # Imported here so torch is only loaded when this backend is used.
        from sentence_transformers import SentenceTransformer

        try:
            self._model = SentenceTransformer(str(weights_path), device="cpu")
        except (OSError, ValueError, RuntimeError) as exc:
            raise ModelLoadError(f"Could not load weights from '{weights_path}': {exc}") from exc
        self.max_tokens = int(self._model.max_seq_length or self.max_tokens)

    def encode(self, texts: list[str]) -> np.ndarray:
        # sentence-transformers truncates to max_seq_length itself.
        return self._model.encode(
            texts,
            batch_size=len(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
        )


class LiteLLMBackend(EmbeddingBackend):
    """Embedding model served locally (e.g. ``ollama/nomic-embed-text``).

    ``weights_filename`` holds the LiteLLM model string.
    """

    def __init__(self, model_name: str, max_tokens: int = 8_192) -> None:
        if not model_name:
            raise ModelLoadError("LiteLLM backend needs a model string, e.g. 'ollama/nomic-embed-text'")
        self.model_name = model_name
        self.max_tokens = max_tokens

    def encode(self, texts: list[str]) -> np.ndarray:
        limit = self.max_tokens * _CHARS_PER_TOKEN
        response = litellm.embedding(model=self.model_name, input=[t[:limit] for t in texts])
        return np.array([d["embedding"] for d in response.data], dtype=np.float32)


def _sentence_transformers_factory(model: Model, version: ModelVersion, weights: Path) -> EmbeddingBackend:
    return SentenceTransformerBackend(weights)


def _litellm_factory(model: Model, version: ModelVersion, weights: Path) -> EmbeddingBackend:
    return LiteLLMBackend(version.weights_filename)


register_backend("sentence_transformers", _sentence_transformers_factory)
register_backend("litellm", _litellm_factory)


# ------------------------------------------------------------------
# Handles
# ------------------------------------------------------------------


class ModelHandle:
    """Exclusive inference handle for one loaded (model, version).

    ``embed`` holds a per-handle lock, so at most one inference call runs
    on a handle at a time.
    """

    def __init__(
        self,
        model: Model,
        version: ModelVersion,
        backend: EmbeddingBackend,
        normalize: bool = True,
    ) -> None:
        self.model = model
        self.version = version
        self._backend = backend
        self._normalize = normalize
        self._lock = threading.Lock()
        self.dim = 0
        self.dim = int(self.embed([_PROBE_TEXT]).shape[1])

    @property
    def key(self) -> tuple[int, int]:
        return (self.model.id, self.version.version)

    @property
    def max_tokens(self) -> int:
        return self._backend.max_tokens

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Embed *texts*; returns a float32 array of shape (len(texts), dim).

        Raises:
            InferenceError: On an empty batch, non-string input, or backend failure.
        """
        batch = list(texts)
        if not batch:
            raise InferenceError("Cannot embed an empty batch")
        if not all(isinstance(t, str) for t in batch):
            raise InferenceError("Embedding input must be a list of strings")

        with self._lock:
            try:
                raw = self._backend.encode(batch)
            except InferenceError:
                raise
            except Exception as exc:
                raise InferenceError(
                    f"{self.model.name} v{self.version.version} failed on a batch of "
                    f"{len(batch)}: {exc}"
                ) from exc

        vectors = np.asarray(raw, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[0] != len(batch):
            raise InferenceError(f"Backend returned shape {vectors.shape} for {len(batch)} inputs")
        if self.dim and vectors.shape[1] != self.dim:
            raise InferenceError(f"Backend returned {vectors.shape[1]} dims, expected {self.dim}")
        if not np.all(np.isfinite(vectors)):
            raise InferenceError("Backend returned non-finite values")
        if self._normalize:
            norms = np.linalg.norm(vectors, axis=1, keepdims=True)
            vectors = vectors / np.where(norms == 0, 1.0, norms)
        return vectors


class ModelRuntime:
    """Loads model versions into handles and caches them per (model_id, version)."""

    def __init__(self, models_dir: Path | str | None = None, metric: str = "cosine") -> None:
        self.models_dir = Path(models_dir) if models_dir is not None else None
        self._normalize = metric == "cosine"
        self._handles: dict[tuple[int, int], ModelHandle] = {}
        self._lock = threading.Lock()

    def weights_path(self, version: ModelVersion) -> Path:
        path = Path(version.weights_filename).expanduser()
        if not path.is_absolute() and self.models_dir is not None:
            path = self.models_dir / path
        return path

    def load(self, model: Model, version: ModelVersion) -> ModelHandle:
        """Return the cached handle for the version, loading it if needed.

        Raises:
            ModelLoadError: Unknown model type, missing weights, or a failed
                dimension probe.
        """
        key = (model.id, version.version)
        with self._lock:
            handle = self._handles.get(key)
            if handle is not None:
                return handle

            factory = _BACKENDS.get(model.model_type)
            if factory is None:
                raise ModelLoadError(
                    f"Unknown model type '{model.model_type}' "
                    f"(available: {', '.join(backend_types())})"
                )
            logger.info("Loading model %s version %d", model.name, version.version)
            backend = factory(model, version, self.weights_path(version))
            try:
                handle = ModelHandle(model, version, backend, normalize=self._normalize)
            except InferenceError as exc:
                raise ModelLoadError(
                    f"Model {model.name} v{version.version} loaded but could not embed: {exc}"
                ) from exc
            self._handles[key] = handle
            logger.info("Model %s version %d ready (%d dimensions)", model.name, version.version, handle.dim)
            return handle

    def get(self, model_id: int, version: int) -> ModelHandle | None:
        with self._lock:
            return self._handles.get((model_id, version))

    def unload(self, model_id: int, version: int) -> None:
        with self._lock:
            self._handles.pop((model_id, version), None)
