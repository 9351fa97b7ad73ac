"""Shared FastAPI dependencies.

Routers resolve the layer repository, the metadata cache and the query
service through these functions so tests can swap them with
``app.dependency_overrides``.
"""

import functools

import fastapi

from mapcore.core import config
from mapcore.db import cache, database
from mapcore.services import raster_query


def get_repo() -> database.LayerRepositoryProtocol:
    """Resolve the layer repository dependency."""
    return database.get_layer_repository()


@functools.lru_cache
def get_metadata_cache() -> cache.MetadataCache:
    """Return the metadata cache shared by the query and tile endpoints."""
    return cache.MetadataCache()


def get_query_service(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    metadata_cache: cache.MetadataCache = fastapi.Depends(get_metadata_cache),  # noqa: B008
) -> raster_query.RasterQueryService:
    """Build the point query service over the shared metadata cache.

    Args:
        settings: Application settings (injected via FastAPI Depends).
        metadata_cache: Shared metadata cache (injected via FastAPI Depends).

    Returns:
        RasterQueryService sized by ``settings.query_workers``.
    """
    return raster_query.RasterQueryService(
        metadata_cache, max_workers=settings.query_workers
    )
