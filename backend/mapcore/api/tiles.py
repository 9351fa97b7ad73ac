"""XYZ tile serving endpoint.

Tiles of MBTiles layers are read from the archive and, beyond the deepest
stored zoom, synthesized by the upscaler. Layers backed by a remote URL
template are redirected to the remote server. Rows follow the XYZ scheme
(row 0 at the top).

Status codes:
    - 200 with the tile bytes and the archive's media type,
    - 307 redirect for remote sources,
    - 404 for unknown layers, missing archives and absent tiles,
    - 422 when the file is not an MBTiles archive,
    - 409 when the archive's tile index is corrupt.

Example:
    Use in MapLibre GL JS:
        >>> map.addSource('ortho', {
        ...     type: 'raster',
        ...     tiles: ['http://api/tiles/<layer_id>/{z}/{x}/{y}'],
        ...     tileSize: 256
        ... });
"""

import fastapi
from fastapi import responses

from mapcore.api import deps
from mapcore.core import config
from mapcore.db import cache, database
from mapcore.services import tile_sources

router = fastapi.APIRouter(prefix="/tiles", tags=["tiles"])


@router.get("/{layer_id}/{z}/{x}/{y}")
def get_tile(
    layer_id: str,
    z: int,
    x: int,
    y: int,
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
    metadata_cache: cache.MetadataCache = fastapi.Depends(deps.get_metadata_cache),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> responses.Response:
    """Serve one XYZ tile of a layer.

    Args:
        layer_id: Unique identifier of the layer.
        z: Zoom level.
        x: Tile column.
        y: Tile row (XYZ, counted from the top).
        repo: Layer repository (injected via FastAPI Depends).
        metadata_cache: Shared metadata cache (injected via FastAPI Depends).
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        The tile bytes, or a redirect for remote sources.

    Raises:
        HTTPException: 404 if the layer has no tiles or the tile is absent.
    """
    layer = repo.get(layer_id)
    if layer is None:
        raise fastapi.HTTPException(status_code=404, detail="Layer not found")

    source = tile_sources.source_for_layer(
        layer.layer_type,
        layer.source,
        layer.id,
        local_path=layer.local_path,
        tile_size=settings.tile_size,
        max_virtual_zoom=settings.max_virtual_zoom,
    )
    if source is None:
        raise fastapi.HTTPException(status_code=404, detail="Layer has no tiles")

    result = tile_sources.resolve_tile(source, z, x, y, metadata_cache)
    match result:
        case tile_sources.TileBytes(data=data, media_type=media_type):
            return responses.Response(content=data, media_type=media_type)
        case tile_sources.TileRedirect(url=url):
            return responses.RedirectResponse(url)
        case None:
            raise fastapi.HTTPException(status_code=404, detail="Tile not found")
