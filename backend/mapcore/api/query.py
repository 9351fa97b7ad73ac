"""Point query and coordinate display endpoints.

``GET /api/query`` answers a map click with the values of every raster
layer under the clicked point; ``GET /api/coordinates`` returns the cursor
position formatted for display (DMS, UTM, map scale).

Example:
    Query all raster layers at a point:
        >>> response = client.get("/api/query", params={"lat": 41.65, "lon": -4.72})
        >>> response.json()["status"]
        'success'

    Query a single layer:
        >>> client.get(
        ...     "/api/query",
        ...     params={"lat": 41.65, "lon": -4.72, "layer_id": "abc-123"},
        ... )
"""

import dataclasses
from typing import Any

import fastapi

from mapcore.api import deps
from mapcore.core import config
from mapcore.db import database
from mapcore.services import raster_query
from mapcore.utils import coordinates

router = fastapi.APIRouter(prefix="/api", tags=["query"])


@router.get("/query")
def query_point(
    lat: float = fastapi.Query(ge=-90.0, le=90.0),
    lon: float = fastapi.Query(ge=-180.0, le=180.0),
    layer_id: list[str] | None = fastapi.Query(default=None),  # noqa: B008
    repo: database.LayerRepositoryProtocol = fastapi.Depends(deps.get_repo),  # noqa: B008
    query_service: raster_query.RasterQueryService = fastapi.Depends(  # noqa: B008
        deps.get_query_service
    ),
) -> dict[str, Any]:
    """Query raster layers at a WGS84 point.

    Without ``layer_id`` every visible raster layer is queried. Repeat
    ``layer_id`` to restrict the query to specific layers.

    Args:
        lat: Latitude in decimal degrees.
        lon: Longitude in decimal degrees.
        layer_id: Optional layer ids to query.
        repo: Layer repository (injected via FastAPI Depends).
        query_service: Point query service (injected via FastAPI Depends).

    Returns:
        The serialized QueryOutcome: ``{"status": "success", "values": [...]}``,
        ``{"status": "no_data"}`` or ``{"status": "error", "message": ...}``.

    Raises:
        HTTPException: If a requested layer is not found (404 status code).
    """
    if layer_id:
        layers = []
        for requested in layer_id:
            layer = repo.get(requested)
            if layer is None:
                raise fastapi.HTTPException(
                    status_code=404, detail=f"Layer not found: {requested}"
                )
            layers.append(layer)
    else:
        layers = [layer for layer in repo.all() if layer.visible]

    return query_service.query_point(layers, lat, lon).to_dict()


@router.get("/coordinates")
def describe_coordinates(
    lat: float = fastapi.Query(ge=-90.0, le=90.0),
    lon: float = fastapi.Query(ge=-180.0, le=180.0),
    zoom: int = fastapi.Query(default=15, ge=0, le=30),
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Format a cursor position for display.

    Returns:
        Degrees-minutes-seconds, UTM in the configured zone and the map
        scale at ``zoom``, e.g. ``"1:20.000 | zoom: 15"``.
    """
    info = coordinates.coordinate_info(
        lat, lon, zoom, zone=settings.utm_zone, dpi=settings.screen_dpi
    )
    return dataclasses.asdict(info)
