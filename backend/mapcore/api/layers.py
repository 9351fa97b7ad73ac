"""Layer registration and metadata API endpoints.

This module provides REST API endpoints for registering raster (GeoTIFF) and
MBTiles layers that already live on disk, listing and describing them,
removing them and discovering candidate files in the data directory. Files
are validated when registered: a raster must open as a georeferenced raster
and an archive must pass the tile index check. Bounding boxes are returned
in WGS84 as [min_lon, min_lat, max_lon, max_lat].

Example:
    Register a raster layer:
        >>> response = client.post(
        ...     "/api/layers",
        ...     json={"name": "Canopy", "layer_type": "raster",
        ...           "path": "/data/canopy.tif", "unit": "m"},
        ... )
        >>> layer_id = response.json()["id"]

    Get bounding box for a specific layer:
        >>> response = client.get(f"/api/layers/{layer_id}/bbox")
        >>> bbox = response.json()["bbox"]
        >>> # Returns: {"bbox": [-4.8, 41.6, -4.7, 41.7]}
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import fastapi
import pydantic

from mapcore.api import deps
from mapcore.core import config
from mapcore.db import cache, database
from mapcore.db import models as db_models
from mapcore.services import raster_query, raster_reader, tile_archive

logger = logging.getLogger(__name__)

BBox = tuple[float, float, float, float]

router = fastapi.APIRouter(prefix="/api/layers", tags=["layers"])


class LayerCreate(pydantic.BaseModel):
    """Request body for registering a layer."""

    name: str = pydantic.Field(min_length=1)
    layer_type: db_models.LayerType
    path: str | None = None
    url: str | None = None
    visible: bool = True
    opacity: float = pydantic.Field(default=1.0, ge=0.0, le=1.0)
    z_index: int = 0
    band_names: list[str] | None = None
    unit: str | None = None
    nodata_value: float | None = None


def _raster_layer(
    layer_id: str,
    body: LayerCreate,
    path: str,
    metadata_cache: cache.MetadataCache,
) -> db_models.LayerMetadata:
    metadata = metadata_cache.get_or_load(
        layer_id, lambda: raster_reader.read_metadata(path)
    )
    return db_models.LayerMetadata(
        id=layer_id,
        name=body.name,
        layer_type="raster",
        source=path,
        local_path=path,
        bbox=raster_reader.wgs84_bounds(metadata).as_tuple(),
        visible=body.visible,
        opacity=body.opacity,
        z_index=body.z_index,
        band_names=tuple(body.band_names) if body.band_names else None,
        unit=body.unit,
        nodata_value=body.nodata_value,
    )


def _archive_layer(
    layer_id: str,
    body: LayerCreate,
    path: str,
    metadata_cache: cache.MetadataCache,
) -> db_models.LayerMetadata:
    metadata = metadata_cache.get_or_load(
        layer_id, lambda: tile_archive.read_archive_metadata(path)
    )
    return db_models.LayerMetadata(
        id=layer_id,
        name=body.name,
        layer_type="mbtiles",
        source=path,
        local_path=path,
        bbox=metadata.bounds.as_tuple() if metadata.bounds else None,
        visible=body.visible,
        opacity=body.opacity,
        z_index=body.z_index,
        min_zoom=metadata.min_zoom,
        max_zoom=metadata.max_zoom,
    )


@router.post("", status_code=201)
def register_layer(
    body: LayerCreate,
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
    metadata_cache: cache.MetadataCache = fastapi.Depends(deps.get_metadata_cache),  # noqa: B008
) -> dict[str, Any]:
    """Register a layer backed by a local file or a URL template.

    Raster and MBTiles files are opened and validated before the layer is
    stored; their metadata is cached under the new layer id.

    Args:
        body: Layer definition.
        repo: Layer repository (injected via FastAPI Depends).
        metadata_cache: Shared metadata cache (injected via FastAPI Depends).

    Returns:
        The stored layer record.

    Raises:
        HTTPException: 400 when the required path or URL is missing.
        FileAccessError: When the file is missing (mapped to 404).
        FileFormatError: When the file is not valid (mapped to 422).
        CorruptArchiveError: When the archive index is broken (mapped to 409).
    """
    layer_id = str(uuid.uuid4())

    if body.layer_type in ("raster", "mbtiles"):
        if not body.path:
            raise fastapi.HTTPException(
                status_code=400,
                detail=f"'path' is required for {body.layer_type} layers",
            )
        if body.layer_type == "raster":
            layer = _raster_layer(layer_id, body, body.path, metadata_cache)
        else:
            layer = _archive_layer(layer_id, body, body.path, metadata_cache)
    else:
        if not body.url:
            raise fastapi.HTTPException(
                status_code=400,
                detail=f"'url' is required for {body.layer_type} layers",
            )
        layer = db_models.LayerMetadata(
            id=layer_id,
            name=body.name,
            layer_type=body.layer_type,
            source=body.url,
            visible=body.visible,
            opacity=body.opacity,
            z_index=body.z_index,
        )

    return repo.add(layer).to_dict()


@router.get("")
def list_layers(
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
) -> list[dict[str, Any]]:
    """List all registered layers, ordered by z-index (bottom first)."""
    return [
        layer.to_dict()
        for layer in sorted(repo.all(), key=lambda layer: layer.z_index)
    ]


@router.get("/discover")
def discover_files(
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, list[dict[str, Any]]]:
    """List raster and MBTiles files found in the data directory.

    Rasters larger than ``max_raster_size_bytes`` are skipped. Each raster
    entry reports whether it opened as a valid georeferenced raster.
    """
    rasters = raster_reader.find_raster_files(
        settings.data_dir, settings.max_raster_size_bytes
    )
    archives = tile_archive.find_archives(settings.data_dir)
    return {
        "rasters": [
            {
                "name": info.name,
                "path": str(info.path),
                "size": info.display_size,
                "is_valid": info.is_valid,
                "error": info.error,
            }
            for info in rasters
        ],
        "archives": [
            {
                "name": info.name,
                "path": str(info.path),
                "size": info.display_size,
            }
            for info in archives
        ],
    }


@router.post("/cache/clear")
def clear_cache(
    query_service: raster_query.RasterQueryService = fastapi.Depends(  # noqa: B008
        deps.get_query_service
    ),
) -> dict[str, str]:
    """Drop every cached raster and archive metadata entry."""
    query_service.clear()
    return {"status": "cleared"}


def _require_layer(
    repo: database.LayerRepositoryProtocol, layer_id: str
) -> db_models.LayerMetadata:
    layer = repo.get(layer_id)
    if layer is None:
        raise fastapi.HTTPException(status_code=404, detail="Layer not found")
    return layer


@router.get("/{layer_id}")
def get_layer(
    layer_id: str,
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
) -> dict[str, Any]:
    """Return one layer record.

    Raises:
        HTTPException: If the layer is not found (404 status code).
    """
    return _require_layer(repo, layer_id).to_dict()


@router.get("/{layer_id}/bbox")
def get_layer_bbox(
    layer_id: str,
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
) -> dict[str, BBox | None]:
    """Get the WGS84 bounding box for a registered layer.

    Args:
        layer_id: Unique identifier for the layer.
        repo: Layer repository (injected via FastAPI Depends).

    Returns:
        Dictionary containing the bounding box as
        [min_lon, min_lat, max_lon, max_lat], or None if the layer has none.

    Raises:
        HTTPException: If the layer is not found (404 status code).

    Example:
        Use bbox to set map viewport (MapLibre GL JS):
            >>> const bbox = response.bbox;
            >>> map.fitBounds([[bbox[0], bbox[1]], [bbox[2], bbox[3]]]);
    """
    return {"bbox": _require_layer(repo, layer_id).bbox}


@router.delete("/{layer_id}", status_code=204)
def delete_layer(
    layer_id: str,
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
    query_service: raster_query.RasterQueryService = fastapi.Depends(  # noqa: B008
        deps.get_query_service
    ),
) -> None:
    """Remove a layer and forget its cached metadata.

    Raises:
        HTTPException: If the layer is not found (404 status code).
    """
    if repo.remove(layer_id) is None:
        raise fastapi.HTTPException(status_code=404, detail="Layer not found")
    query_service.invalidate(layer_id)
