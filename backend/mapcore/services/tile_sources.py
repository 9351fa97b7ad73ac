"""Tile sources for map layers.

A tile source says where a layer's tiles come from. Local archives are
served from disk through the TileUpscaler; remote sources are never fetched
here, resolve_tile() only builds the URL for the client to follow, the way
vector tiles used to be redirected to the tile server.

Example:
    >>> source = TemplateSource("https://tile.openstreetmap.org/{z}/{x}/{y}.png")
    >>> resolve_tile(source, 3, 4, 2, metadata_cache)
    TileRedirect(url='https://tile.openstreetmap.org/3/4/2.png')
"""

from __future__ import annotations

import dataclasses
import math
import urllib.parse
from typing import TYPE_CHECKING

from mapcore.services import tile_upscaler

if TYPE_CHECKING:
    from mapcore.db import cache

WEB_MERCATOR_HALF_WORLD = math.pi * 6378137.0


@dataclasses.dataclass(frozen=True)
class LocalArchiveSource:
    """MBTiles archive on disk, served through the upscaler."""

    key: str
    path: str
    tile_size: int = 256
    max_virtual_zoom: int = tile_upscaler.DEFAULT_MAX_VIRTUAL_ZOOM


@dataclasses.dataclass(frozen=True)
class TemplateSource:
    """XYZ URL template with ``{z}``, ``{x}``, ``{y}`` (or ``{-y}`` for TMS)."""

    template: str


@dataclasses.dataclass(frozen=True)
class WmtsSource:
    """OGC WMTS server queried with KVP GetTile requests."""

    base_url: str
    layer: str
    tile_matrix_set: str = "GoogleMapsCompatible"
    style: str = "default"
    format: str = "image/png"


@dataclasses.dataclass(frozen=True)
class WmsSource:
    """OGC WMS server queried with GetMap over Web Mercator tile extents."""

    base_url: str
    layers: str
    format: str = "image/png"
    version: str = "1.3.0"
    tile_size: int = 256


TileSource = LocalArchiveSource | TemplateSource | WmtsSource | WmsSource


@dataclasses.dataclass(frozen=True)
class TileBytes:
    data: bytes
    media_type: str


@dataclasses.dataclass(frozen=True)
class TileRedirect:
    url: str


TileResult = TileBytes | TileRedirect


def web_mercator_bounds(
    zoom: int, column: int, row: int
) -> tuple[float, float, float, float]:
    """Return the EPSG:3857 extent (minx, miny, maxx, maxy) of an XYZ tile."""
    span = 2 * WEB_MERCATOR_HALF_WORLD / (1 << zoom)
    minx = -WEB_MERCATOR_HALF_WORLD + column * span
    maxy = WEB_MERCATOR_HALF_WORLD - row * span
    return minx, maxy - span, minx + span, maxy


def _template_url(template: str, zoom: int, column: int, row: int) -> str:
    tms_row = (1 << zoom) - 1 - row
    return (
        template.replace("{z}", str(zoom))
        .replace("{x}", str(column))
        .replace("{-y}", str(tms_row))
        .replace("{y}", str(row))
    )


def _wmts_url(source: WmtsSource, zoom: int, column: int, row: int) -> str:
    query = urllib.parse.urlencode(
        {
            "SERVICE": "WMTS",
            "REQUEST": "GetTile",
            "VERSION": "1.0.0",
            "LAYER": source.layer,
            "STYLE": source.style,
            "TILEMATRIXSET": source.tile_matrix_set,
            "TILEMATRIX": zoom,
            "TILEROW": row,
            "TILECOL": column,
            "FORMAT": source.format,
        }
    )
    return f"{source.base_url}?{query}"


def _wms_url(source: WmsSource, zoom: int, column: int, row: int) -> str:
    bbox = ",".join(f"{v:.6f}" for v in web_mercator_bounds(zoom, column, row))
    crs_key = "CRS" if source.version == "1.3.0" else "SRS"
    query = urllib.parse.urlencode(
        {
            "SERVICE": "WMS",
            "REQUEST": "GetMap",
            "VERSION": source.version,
            "LAYERS": source.layers,
            "STYLES": "",
            crs_key: "EPSG:3857",
            "BBOX": bbox,
            "WIDTH": source.tile_size,
            "HEIGHT": source.tile_size,
            "FORMAT": source.format,
        }
    )
    return f"{source.base_url}?{query}"


def resolve_tile(
    source: TileSource,
    zoom: int,
    column: int,
    row: int,
    metadata_cache: cache.MetadataCache,
) -> TileResult | None:
    """Resolve an XYZ tile request against a tile source.

    Args:
        source: Where the layer's tiles come from.
        zoom: Zoom level.
        column: Tile column.
        row: Tile row counted from the top (XYZ).
        metadata_cache: Cache holding archive metadata by source key.

    Returns:
        TileBytes for local archives (None when the tile does not exist) or
        a TileRedirect to the remote URL.

    Raises:
        FileAccessError: If a local archive is missing.
        FileFormatError: If a local archive is not an MBTiles file.
        CorruptArchiveError: If a local archive's tile index is unreadable.
    """
    match source:
        case LocalArchiveSource(key=key, path=path):
            upscaler = tile_upscaler.TileUpscaler.for_archive(
                path,
                metadata_cache,
                key,
                tile_size=source.tile_size,
                max_virtual_zoom=source.max_virtual_zoom,
            )
            data = upscaler.get_tile(zoom, column, row)
            if data is None:
                return None
            return TileBytes(data, upscaler.tile_format.media_type)
        case TemplateSource(template=template):
            return TileRedirect(_template_url(template, zoom, column, row))
        case WmtsSource():
            return TileRedirect(_wmts_url(source, zoom, column, row))
        case WmsSource():
            return TileRedirect(_wms_url(source, zoom, column, row))


def _ogc_source(url: str, tile_size: int) -> WmtsSource | WmsSource | None:
    """Build a WMTS or WMS source from a service URL with KVP parameters.

    ``SERVICE`` selects the protocol; ``LAYER`` (WMTS) or ``LAYERS`` (WMS)
    is required. Other parameters fall back to the source defaults.
    """
    base_url, _, query = url.partition("?")
    params = {
        key.upper(): value
        for key, value in urllib.parse.parse_qsl(query, keep_blank_values=True)
    }
    match params.get("SERVICE", "").upper():
        case "WMTS" if params.get("LAYER"):
            return WmtsSource(
                base_url,
                params["LAYER"],
                tile_matrix_set=params.get("TILEMATRIXSET", "GoogleMapsCompatible"),
                style=params.get("STYLE") or "default",
                format=params.get("FORMAT", "image/png"),
            )
        case "WMS" if params.get("LAYERS"):
            return WmsSource(
                base_url,
                params["LAYERS"],
                format=params.get("FORMAT", "image/png"),
                version=params.get("VERSION", "1.3.0"),
                tile_size=tile_size,
            )
    return None


def source_for_layer(
    layer_type: str,
    source: str,
    key: str,
    local_path: str | None = None,
    tile_size: int = 256,
    max_virtual_zoom: int = tile_upscaler.DEFAULT_MAX_VIRTUAL_ZOOM,
) -> TileSource | None:
    """Pick the tile source for a layer record's type and source string.

    MBTiles layers with a local file are served from disk. Remote base maps
    and vector layers are either an XYZ template (``{z}``/``{x}``/``{y}``)
    or an OGC service URL carrying ``SERVICE=WMTS&LAYER=...`` or
    ``SERVICE=WMS&LAYERS=...``. Raster query layers have no tiles and yield
    None.
    """
    if layer_type == "mbtiles" and local_path:
        return LocalArchiveSource(key, local_path, tile_size, max_virtual_zoom)
    if layer_type not in ("base_map", "vector"):
        return None
    if "{z}" in source:
        return TemplateSource(source)
    return _ogc_source(source, tile_size)
