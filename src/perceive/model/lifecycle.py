"""Model and model-version lifecycle: register, validate, activate, delete.

Version states:
  pending  registered, not yet loaded
  ready    a validating load succeeded (dimensions recorded)
  failed   the validating load raised ModelLoadError

Only a ready version can be active. The active selection lives in the
store's config table and is read as an ``ActiveModel`` snapshot.
"""

from __future__ import annotations

import logging

from perceive.db.models import ActiveModel, Model, ModelStatus, ModelVersion
from perceive.db.repository import Repository
from perceive.errors import ConfigError, ModelLoadError, ModelNotReadyError
from perceive.index.registry import IndexRegistry
from perceive.model.runtime import ModelHandle, ModelRuntime, backend_types

logger = logging.getLogger(__name__)


class ModelManager:
    """Coordinates model records, loaded handles and per-version indexes."""

    def __init__(self, repo: Repository, runtime: ModelRuntime, registry: IndexRegistry) -> None:
        self._repo = repo
        self._runtime = runtime
        self._registry = registry

    def register_model(self, name: str, model_type: str) -> Model:
        """Create a model record.

        Raises:
            ConfigError: If the type has no backend or the name is taken.
        """
        if model_type not in backend_types():
            raise ConfigError(
                f"Unknown model type '{model_type}' (available: {', '.join(backend_types())})"
            )
        if self._repo.get_model_by_name(name) is not None:
            raise ConfigError(f"A model named '{name}' already exists")
        return self._repo.add_model(name, model_type)

    def add_version(self, model_id: int, weights_filename: str) -> ModelVersion:
        """Register a new pending version of *model_id*."""
        if self._repo.get_model(model_id) is None:
            raise ConfigError(f"Model {model_id} does not exist")
        version = self._repo.add_model_version(model_id, weights_filename)
        logger.info("Registered model %d version %d (%s)", model_id, version.version, weights_filename)
        return version

    def validate(self, model_id: int, version: int) -> ModelVersion:
        """Load the version once; mark it ready or failed.

        Raises:
            ModelLoadError: If loading fails (the version is marked failed first).
        """
        model, model_version = self._lookup(model_id, version)
        try:
            handle = self._runtime.load(model, model_version)
        except ModelLoadError as exc:
            logger.error("Model %s version %d failed to load: %s", model.name, version, exc)
            self._repo.set_model_version_status(model_id, version, ModelStatus.FAILED)
            raise
        self._repo.set_model_version_status(
            model_id, version, ModelStatus.READY, dimensions=handle.dim
        )
        return self._repo.get_model_version(model_id, version)

    def activate(self, model_id: int, version: int) -> ActiveModel:
        """Make a ready version the active one.

        Raises:
            ModelNotReadyError: If the version is not ready.
        """
        model, model_version = self._lookup(model_id, version)
        if not model_version.ready:
            raise ModelNotReadyError(
                f"{model.name} version {version} is {model_version.status.value}, not ready"
            )
        self._repo.set_active_model(model_id, version)
        logger.info("Activated model %s version %d", model.name, version)
        return ActiveModel(model=model, version=model_version)

    def delete_version(self, model_id: int, version: int) -> None:
        """Delete a version, its embeddings and its in-memory index.

        Raises:
            ConfigError: If the version is the active one.
        """
        active = self.get_active()
        if active is not None and active.key == (model_id, version):
            raise ConfigError("Cannot delete the active model version; activate another first")
        self._repo.delete_model_version(model_id, version)
        self._registry.drop(model_id, version)
        self._runtime.unload(model_id, version)

    def get_active(self) -> ActiveModel | None:
        return self._repo.get_active_model()

    def require_active(self) -> ActiveModel:
        active = self._repo.get_active_model()
        if active is None:
            raise ModelNotReadyError("No ready model version is active. Run: perceive model activate")
        return active

    def handle_for(self, active: ActiveModel) -> ModelHandle:
        """Return the loaded handle for the active snapshot."""
        return self._runtime.load(active.model, active.version)

    def _lookup(self, model_id: int, version: int) -> tuple[Model, ModelVersion]:
        model = self._repo.get_model(model_id)
        model_version = self._repo.get_model_version(model_id, version) if model else None
        if model is None or model_version is None:
            raise ConfigError(f"Model {model_id} version {version} does not exist")
        return model, model_version
