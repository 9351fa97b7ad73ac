"""Multi-layer point query over raster layers.

A click on the map asks every visible raster layer for its values at the
clicked position. Layers are queried concurrently on a thread pool and each
one is isolated: a missing file, a corrupt header or a point outside one
raster never prevents the other layers from answering.

Outcomes are aggregated as follows:

- at least one layer returned a sample: QuerySuccess with the samples in the
  order the layers were given;
- otherwise QueryNoData, also when every layer failed: per-layer failures
  are logged and leave no valid data;
- QueryError only when the fan-out itself breaks, for example when the
  thread pool cannot run the queries.

Raster metadata is parsed once per layer and kept in a MetadataCache keyed
by layer id; remove the entry with invalidate() when a layer goes away.

Example:
    >>> from mapcore.db import cache
    >>> from mapcore.services import raster_query
    >>> service = raster_query.RasterQueryService(cache.MetadataCache())
    >>> outcome = service.query_point(repo.all(), 41.65, -4.72)
    >>> outcome.status
    'success'
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import logging
from typing import TYPE_CHECKING

import rasterio.errors

from mapcore.core import errors, models
from mapcore.services import raster_reader

if TYPE_CHECKING:
    from collections.abc import Iterable

    from mapcore.db import cache
    from mapcore.db import models as db_models

logger = logging.getLogger(__name__)


class RasterQueryService:
    """Fan a point query out over raster layers.

    Args:
        metadata_cache: Cache shared with the rest of the application.
        max_workers: Size of the thread pool used per query.
    """

    def __init__(
        self,
        metadata_cache: cache.MetadataCache,
        max_workers: int = 4,
    ) -> None:
        self._cache = metadata_cache
        self._max_workers = max_workers

    def metadata_for(self, layer: db_models.LayerMetadata) -> models.RasterMetadata:
        """Return the cached metadata of a raster layer, loading it on a miss.

        Raises:
            FileAccessError: If the layer has no local file or it is missing.
            FileFormatError: If the file is not a georeferenced raster.
        """
        if layer.local_path is None:
            raise errors.FileAccessError(f"Layer {layer.id} has no local file")
        path = layer.local_path
        return self._cache.get_or_load(
            layer.id, lambda: raster_reader.read_metadata(path)
        )

    def query_layer(
        self,
        layer: db_models.LayerMetadata,
        lat: float,
        lon: float,
    ) -> models.QueryOutcome:
        """Query a single raster layer at a WGS84 point.

        Errors are logged and returned as QueryError rather than raised.
        """
        try:
            metadata = self.metadata_for(layer)
            if layer.nodata_value is not None:
                metadata = dataclasses.replace(
                    metadata, nodata_value=layer.nodata_value
                )
            values = raster_reader.sample_all_bands(
                layer.local_path, lat, lon, metadata
            )
        except (
            errors.MapCoreError,
            rasterio.errors.RasterioError,
            OSError,
        ) as exc:
            logger.warning("Query of layer %s failed: %s", layer.id, exc)
            return models.QueryError(f"{layer.name}: {exc}")

        if values is None:
            return models.QueryNoData()

        sample = models.RasterSample(
            layer_id=layer.id,
            layer_name=layer.name,
            latitude=lat,
            longitude=lon,
            values=tuple(values),
            band_names=layer.band_names or metadata.band_names,
            unit=layer.unit,
            nodata_value=metadata.nodata_value,
        )
        return models.QuerySuccess((sample,))

    def query_point(
        self,
        layers: Iterable[db_models.LayerMetadata],
        lat: float,
        lon: float,
    ) -> models.QueryOutcome:
        """Query every raster layer at a WGS84 point.

        Args:
            layers: Layer records; non-raster layers are ignored.
            lat: Latitude (WGS84).
            lon: Longitude (WGS84).

        Returns:
            The aggregated QueryOutcome.
        """
        raster_layers = [layer for layer in layers if layer.is_raster]
        if not raster_layers:
            return models.QueryNoData()

        workers = min(self._max_workers, len(raster_layers))
        try:
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(
                    pool.map(
                        lambda layer: self.query_layer(layer, lat, lon),
                        raster_layers,
                    )
                )
        except RuntimeError as exc:
            logger.exception("Point query at (%s, %s) failed", lat, lon)
            return models.QueryError(f"Query failed: {exc}")

        samples: list[models.RasterSample] = []
        failures: list[str] = []
        for outcome in outcomes:
            match outcome:
                case models.QuerySuccess(values=values):
                    samples.extend(values)
                case models.QueryError(message=message):
                    failures.append(message)
                case models.QueryNoData():
                    pass

        logger.debug(
            "Point (%s, %s): %d samples, %d failures over %d layers",
            lat,
            lon,
            len(samples),
            len(failures),
            len(raster_layers),
        )
        if samples:
            return models.QuerySuccess(tuple(samples))
        return models.QueryNoData()

    def invalidate(self, layer_id: str) -> bool:
        return self._cache.invalidate(layer_id)

    def clear(self) -> None:
        self._cache.clear()

    def preload_metadata(self, layers: Iterable[db_models.LayerMetadata]) -> int:
        """Load metadata for all raster layers ahead of the first click.

        Returns:
            Number of layers whose metadata is now cached.
        """
        loaded = 0
        for layer in layers:
            if not layer.is_raster:
                continue
            try:
                self.metadata_for(layer)
            except errors.MapCoreError as exc:
                logger.warning("Could not preload layer %s: %s", layer.id, exc)
                continue
            loaded += 1
        logger.info("Preloaded metadata for %d layers", loaded)
        return loaded

    def cache_stats(self) -> str:
        return str(self._cache.stats())
