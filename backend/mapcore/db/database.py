"""Repository for layer records."""

from __future__ import annotations

import functools
import logging
import threading
from typing import TYPE_CHECKING, Protocol

from mapcore.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class LayerRepositoryProtocol(Protocol):
    """Protocol interface for storing and retrieving layer records."""

    def add(
        self,
        layer: db_models.LayerMetadata,
    ) -> db_models.LayerMetadata: ...

    def get(self, layer_id: str) -> db_models.LayerMetadata | None: ...

    def all(self) -> Iterable[db_models.LayerMetadata]: ...

    def remove(self, layer_id: str) -> db_models.LayerMetadata | None: ...


class InMemoryLayerRepository(LayerRepositoryProtocol):
    """Lock-guarded in-memory store of the layers shown on the map.

    Layers are kept in registration order. Data is lost when the process
    exits; the files themselves are the durable state.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory repository."""
        self._store: dict[str, db_models.LayerMetadata] = {}
        self._lock = threading.Lock()

    def add(self, layer: db_models.LayerMetadata) -> db_models.LayerMetadata:
        """Add or replace a layer in the repository.

        Args:
            layer: Layer record to store.

        Returns:
            The stored layer record.
        """
        with self._lock:
            self._store[layer.id] = layer
        logger.info("Registered layer %s (%s)", layer.id, layer.layer_type)
        return layer

    def get(self, layer_id: str) -> db_models.LayerMetadata | None:
        """Retrieve a layer by ID.

        Args:
            layer_id: Unique identifier for the layer.

        Returns:
            LayerMetadata if found, None otherwise.
        """
        with self._lock:
            return self._store.get(layer_id)

    def all(self) -> Iterable[db_models.LayerMetadata]:
        """Snapshot of all stored layers in registration order."""
        with self._lock:
            return list(self._store.values())

    def remove(self, layer_id: str) -> db_models.LayerMetadata | None:
        """Remove a layer. Returns the removed record, or None if unknown."""
        with self._lock:
            removed = self._store.pop(layer_id, None)
        if removed is not None:
            logger.info("Removed layer %s", layer_id)
        return removed


@functools.lru_cache
def get_layer_repository() -> LayerRepositoryProtocol:
    """Return the process-wide layer repository.

    Returns:
        The cached InMemoryLayerRepository instance.
    """
    return InMemoryLayerRepository()
