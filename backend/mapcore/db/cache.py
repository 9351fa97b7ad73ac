"""Thread-safe metadata cache keyed by layer identifier.

Parsing a raster header or scanning an MBTiles index is far more expensive
than a single point read, so readers keep the parsed RasterMetadata or
TileArchiveMetadata per layer. Entries are immutable; the lock only guards
the dictionary itself. There is no expiry: entries live until the layer is
removed (invalidate) or the whole cache is cleared.

A cache instance is created by the application and handed to the services
that need it, so tests can build isolated caches.

Example:
    Lazily load and reuse metadata:
        >>> from mapcore.db import cache
        >>> from mapcore.services import raster_reader
        >>> metadata_cache = cache.MetadataCache()
        >>> meta = metadata_cache.get_or_load(
        ...     "layer-1", lambda: raster_reader.read_metadata(path)
        ... )
        >>> metadata_cache.invalidate("layer-1")
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclasses.dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache usage."""

    entries: int
    hits: int
    misses: int

    def __str__(self) -> str:
        return f"Cache: {self.entries} entries ({self.hits} hits, {self.misses} misses)"


class MetadataCache(Generic[V]):
    """Mutex-guarded mapping of layer id to immutable metadata."""

    def __init__(self) -> None:
        self._entries: dict[str, V] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> V | None:
        with self._lock:
            value = self._entries.get(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def put(self, key: str, value: V) -> V:
        with self._lock:
            self._entries[key] = value
        return value

    def get_or_load(self, key: str, loader: Callable[[], V]) -> V:
        """Return the cached entry, loading and storing it on a miss.

        The loader runs outside the lock so a slow file parse never blocks
        other layers. If two threads load the same key concurrently, the
        first stored value wins and both callers receive it.

        Args:
            key: Layer identifier.
            loader: Zero-argument callable producing the metadata. Its
                exceptions propagate and nothing is cached.

        Returns:
            The cached metadata.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug("Metadata for %s served from cache", key)
            return cached

        logger.debug("Loading metadata for %s", key)
        value = loader()
        with self._lock:
            return self._entries.setdefault(key, value)

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug("Cache cleared for layer %s", key)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.debug("Metadata cache fully cleared")

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
            )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
