"""Virtual zoom levels for raster tile archives.

Tile archives usually stop at some zoom level, but users zoom further. For a
request beyond the deepest stored zoom the upscaler takes the ancestor tile
at that zoom, crops the part of it covered by the requested tile and scales
the crop back up to full tile size with nearest-neighbour sampling. The
pixels are the stored pixels, only larger, so categorical imagery keeps its
exact colours.

For zoom difference ``d`` the ancestor is ``(col >> d, row >> d)`` and the
requested tile is cell ``(col % 2**d, row % 2**d)`` of a ``2**d x 2**d`` grid
laid over the ancestor.

Tiles are decoded and re-encoded with rio-tiler's ImageData. Vector (pbf)
archives are never upscaled.

Example:
    >>> from mapcore.services import tile_upscaler
    >>> upscaler = tile_upscaler.TileUpscaler("ortho.mbtiles", 16)
    >>> upscaler.get_tile(18, 40000, 30000)  # cropped from tile 16/10000/7500
    b'\\x89PNG...'
"""

from __future__ import annotations

import logging
import pathlib
from typing import TYPE_CHECKING

import numpy
import rasterio.errors
from rio_tiler.models import ImageData

from mapcore.core import errors, models
from mapcore.services import tile_archive

if TYPE_CHECKING:
    import os

    from mapcore.db import cache

logger = logging.getLogger(__name__)

DEFAULT_MAX_VIRTUAL_ZOOM = 28

_RENDER_FORMATS = {
    models.TileFormat.PNG: "PNG",
    models.TileFormat.JPG: "JPEG",
    models.TileFormat.WEBP: "WEBP",
}


def sub_tile_window(
    column: int,
    row: int,
    zoom_difference: int,
    tile_size: int,
) -> tuple[int, int, int, int]:
    """Pixel window of the ancestor tile covered by a descendant tile.

    Args:
        column: Column of the requested tile.
        row: Row of the requested tile (XYZ).
        zoom_difference: Levels between the request and the ancestor.
        tile_size: Edge length of the ancestor tile in pixels.

    Returns:
        ``(x0, y0, x1, y1)`` with exclusive upper bounds. The window is at
        least one pixel wide and high, even when ``2**zoom_difference``
        exceeds ``tile_size``.

    Example:
        >>> sub_tile_window(40, 56, 2, 256)
        (0, 0, 64, 64)
    """
    cells = 1 << zoom_difference
    cell_x = column % cells
    cell_y = row % cells

    x0 = cell_x * tile_size // cells
    y0 = cell_y * tile_size // cells
    x1 = max((cell_x + 1) * tile_size // cells, x0 + 1)
    y1 = max((cell_y + 1) * tile_size // cells, y0 + 1)
    return x0, y0, x1, y1


def _scale_nearest(array: numpy.ma.MaskedArray, size: int) -> numpy.ma.MaskedArray:
    """Resize a (bands, h, w) array to (bands, size, size), nearest neighbour."""
    _, height, width = array.shape
    rows = (numpy.arange(size) * height) // size
    cols = (numpy.arange(size) * width) // size
    return array[:, rows[:, None], cols[None, :]]


def upscale_tile(
    data: bytes,
    column: int,
    row: int,
    zoom_difference: int,
    tile_size: int,
    tile_format: models.TileFormat,
) -> bytes:
    """Crop and enlarge the part of an ancestor tile covering a descendant.

    Args:
        data: Encoded ancestor tile.
        column: Column of the requested tile.
        row: Row of the requested tile (XYZ).
        zoom_difference: Levels between the request and the ancestor.
        tile_size: Edge length of the produced tile.
        tile_format: Encoding of the produced tile.

    Returns:
        The encoded tile.

    Raises:
        CorruptArchiveError: If the ancestor tile cannot be decoded or the
            result cannot be encoded.
    """
    try:
        image = ImageData.from_bytes(data)
    except rasterio.errors.RasterioError as exc:
        raise errors.CorruptArchiveError(
            f"Cannot decode ancestor tile: {exc}"
        ) from exc
    _, height, width = image.array.shape

    x0, y0, x1, y1 = sub_tile_window(column, row, zoom_difference, width)
    if height != width:
        _, y0, _, y1 = sub_tile_window(column, row, zoom_difference, height)

    cropped = image.array[:, y0:y1, x0:x1]
    scaled = _scale_nearest(cropped, tile_size)

    # Transparent ancestor pixels stay transparent; JPEG has no alpha band.
    add_mask = (
        tile_format is not models.TileFormat.JPG
        and bool(numpy.ma.getmaskarray(scaled).any())
    )
    try:
        return ImageData(scaled).render(
            img_format=_RENDER_FORMATS[tile_format], add_mask=add_mask
        )
    except rasterio.errors.RasterioError as exc:
        raise errors.CorruptArchiveError(
            f"Cannot encode upscaled tile: {exc}"
        ) from exc


class TileUpscaler:
    """Serve an archive's tiles, synthesizing zooms beyond its deepest level.

    Args:
        archive_path: Path of the MBTiles archive.
        max_zoom_with_data: Deepest zoom stored in the archive.
        tile_size: Edge length of produced tiles in pixels.
        tile_format: Encoding of the archive's tiles.
        min_zoom: Shallowest zoom stored in the archive.
        max_virtual_zoom: Deepest zoom that will be synthesized.
    """

    def __init__(
        self,
        archive_path: str | os.PathLike[str],
        max_zoom_with_data: int,
        tile_size: int = 256,
        tile_format: models.TileFormat = models.TileFormat.PNG,
        min_zoom: int = 0,
        max_virtual_zoom: int = DEFAULT_MAX_VIRTUAL_ZOOM,
    ) -> None:
        self.archive_path = pathlib.Path(archive_path)
        self.max_zoom_with_data = max_zoom_with_data
        self.tile_size = tile_size
        self.tile_format = tile_format
        self.min_zoom = min_zoom
        self.max_virtual_zoom = max_virtual_zoom

    @classmethod
    def for_archive(
        cls,
        archive_path: str | os.PathLike[str],
        metadata_cache: cache.MetadataCache,
        key: str,
        tile_size: int = 256,
        max_virtual_zoom: int = DEFAULT_MAX_VIRTUAL_ZOOM,
    ) -> TileUpscaler:
        """Build an upscaler from the archive's (cached) metadata.

        Raises:
            FileAccessError: If the archive is missing.
            FileFormatError: If it is not an MBTiles archive.
            CorruptArchiveError: If its tile index is unreadable.
        """
        metadata: models.TileArchiveMetadata = metadata_cache.get_or_load(
            key, lambda: tile_archive.read_archive_metadata(archive_path)
        )
        return cls(
            archive_path,
            metadata.max_zoom,
            tile_size=tile_size,
            tile_format=metadata.format,
            min_zoom=metadata.min_zoom,
            max_virtual_zoom=max_virtual_zoom,
        )

    def get_tile(self, zoom: int, column: int, row: int) -> bytes | None:
        """Return the tile at an XYZ address, stored or synthesized.

        Returns:
            Tile bytes, or None when neither the tile nor its ancestor at
            ``max_zoom_with_data`` exists, or the zoom is outside
            ``[min_zoom, max_virtual_zoom]``.
        """
        if zoom < self.min_zoom or zoom > self.max_virtual_zoom:
            return None
        try:
            models.TileIndex(zoom, column, row)
        except ValueError:
            return None

        with tile_archive.open_archive(self.archive_path) as archive:
            if zoom <= self.max_zoom_with_data:
                return archive.get_tile(zoom, column, row)

            if not self.tile_format.is_raster:
                return None

            zoom_difference = zoom - self.max_zoom_with_data
            ancestor = archive.get_tile(
                self.max_zoom_with_data,
                column >> zoom_difference,
                row >> zoom_difference,
            )

        if ancestor is None:
            logger.debug(
                "No ancestor for %d/%d/%d in %s",
                zoom,
                column,
                row,
                self.archive_path.name,
            )
            return None

        logger.debug(
            "Upscaling %d/%d/%d from zoom %d",
            zoom,
            column,
            row,
            self.max_zoom_with_data,
        )
        return upscale_tile(
            ancestor,
            column,
            row,
            zoom_difference,
            self.tile_size,
            self.tile_format,
        )
