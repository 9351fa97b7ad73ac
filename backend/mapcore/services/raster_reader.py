"""GeoTIFF metadata extraction and point sampling using rasterio.

This module opens georeferenced rasters, turns their header into a
RasterMetadata value and answers point queries by reading exactly one pixel
per band through a 1x1 window. Every call opens the file, uses it and closes
it again, so functions here are safe to call concurrently from worker threads
and tolerate the file being replaced between calls.

Sampling is nearest-neighbour: the value returned is the stored value of the
cell that contains the point, never an interpolation.

Example:
    Read metadata once, then sample several points with it:
        >>> from mapcore.services import raster_reader
        >>> meta = raster_reader.read_metadata("dem.tif")
        >>> raster_reader.sample_all_bands("dem.tif", 41.65, -4.72, meta)
        [845.3]
        >>> raster_reader.sample_all_bands("dem.tif", 0.0, 0.0, meta)  # outside
        None
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import pathlib
from typing import TYPE_CHECKING, Any

import rasterio
import rasterio.crs
import rasterio.errors
import rasterio.warp
from rasterio import windows
from rasterio._err import CPLE_BaseError

from mapcore.core import errors, models

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

RASTER_EXTENSIONS = frozenset({".tif", ".tiff", ".gtif", ".geotiff"})
WGS84 = "EPSG:4326"

PathLike = str | os.PathLike[str]

_REPROJECTION_ERRORS = (
    rasterio.errors.RasterioError,
    rasterio.errors.CRSError,
    CPLE_BaseError,
)


def _check_access(path: pathlib.Path) -> None:
    """Raise FileAccessError unless ``path`` is a readable regular file."""
    if not path.exists():
        raise errors.FileAccessError(f"File not found: {path}")
    if not path.is_file():
        raise errors.FileAccessError(f"Not a regular file: {path}")
    if not os.access(path, os.R_OK):
        raise errors.FileAccessError(f"File is not readable: {path}")


@contextlib.contextmanager
def _open_dataset(path: pathlib.Path) -> Iterator[Any]:
    """Open ``path`` with rasterio for the duration of a single operation."""
    _check_access(path)
    try:
        dataset = rasterio.open(path)
    except rasterio.errors.RasterioIOError as exc:
        raise errors.FileFormatError(
            f"{path.name} is not a recognized raster: {exc}"
        ) from exc

    with dataset:
        yield dataset


def _crs_string(dataset: Any) -> str:
    crs = dataset.crs
    if crs is None:
        return "UNKNOWN"
    epsg = crs.to_epsg()
    if epsg is not None:
        return f"EPSG:{epsg}"
    return crs.to_string()


def _band_names(dataset: Any) -> tuple[str, ...]:
    return tuple(
        description or f"Band {index}"
        for index, description in enumerate(dataset.descriptions, start=1)
    )


def metadata_from_dataset(dataset: Any) -> models.RasterMetadata:
    """Build RasterMetadata from an open rasterio dataset.

    Args:
        dataset: Open ``rasterio.DatasetReader``.

    Returns:
        Immutable metadata describing the raster.

    Raises:
        FileFormatError: If the raster carries no georeferencing or its
            header violates the metadata invariants.
        DegenerateTransformError: If the geotransform is singular.
    """
    if dataset.crs is None and dataset.transform.is_identity:
        raise errors.FileFormatError(f"{dataset.name} has no georeferencing")

    transform = models.AffineTransform.from_rasterio(dataset.transform)
    try:
        return models.RasterMetadata(
            width=dataset.width,
            height=dataset.height,
            band_count=dataset.count,
            band_names=_band_names(dataset),
            bounds=models.bounds_from_transform(
                dataset.width, dataset.height, transform
            ),
            transform=transform,
            nodata_value=(
                float(dataset.nodata) if dataset.nodata is not None else None
            ),
            data_type=models.DataType.from_dtype(dataset.dtypes[0]),
            crs=_crs_string(dataset),
            compression=dataset.profile.get("compress"),
        )
    except ValueError as exc:
        raise errors.FileFormatError(
            f"{dataset.name} has invalid georeferencing: {exc}"
        ) from exc


def read_metadata(path: PathLike) -> models.RasterMetadata:
    """Parse a raster header into RasterMetadata.

    Args:
        path: Path of the raster file (GeoTIFF or any GDAL raster).

    Returns:
        RasterMetadata with dimensions, bands, transform, CRS, nodata value
        and data type.

    Raises:
        FileAccessError: If the file is missing or cannot be read.
        FileFormatError: If the file is not a georeferenced raster.
        DegenerateTransformError: If the geotransform is singular.

    Example:
        >>> meta = read_metadata("canopy_height.tif")
        >>> meta.width, meta.height, meta.crs
        (2048, 2048, 'EPSG:4326')
    """
    path = pathlib.Path(path)
    logger.debug("Reading raster metadata from %s", path.name)
    with _open_dataset(path) as dataset:
        metadata = metadata_from_dataset(dataset)
    logger.debug(
        "%s: %dx%d px, %d bands, %s",
        path.name,
        metadata.width,
        metadata.height,
        metadata.band_count,
        metadata.crs,
    )
    return metadata


def _to_raster_crs(
    lon: float,
    lat: float,
    metadata: models.RasterMetadata,
) -> tuple[float, float]:
    """Express a WGS84 point in the raster CRS."""
    if metadata.is_geographic or metadata.crs == "UNKNOWN":
        return lon, lat

    try:
        xs, ys = rasterio.warp.transform(
            rasterio.crs.CRS.from_user_input(WGS84),
            rasterio.crs.CRS.from_user_input(metadata.crs),
            [lon],
            [lat],
        )
    except _REPROJECTION_ERRORS as exc:
        raise errors.FileFormatError(
            f"Cannot reproject WGS84 into {metadata.crs}: {exc}"
        ) from exc
    return xs[0], ys[0]


def wgs84_bounds(metadata: models.RasterMetadata) -> models.Bounds:
    """Return the raster extent in WGS84, reprojecting when needed."""
    if metadata.is_geographic or metadata.crs == "UNKNOWN":
        return metadata.bounds

    try:
        west, south, east, north = rasterio.warp.transform_bounds(
            rasterio.crs.CRS.from_user_input(metadata.crs),
            rasterio.crs.CRS.from_user_input(WGS84),
            *metadata.bounds.as_tuple(),
        )
    except _REPROJECTION_ERRORS as exc:
        raise errors.FileFormatError(
            f"Cannot reproject {metadata.crs} bounds into WGS84: {exc}"
        ) from exc
    return models.Bounds(west, south, east, north)


def _read_pixel(
    dataset: Any,
    col: int,
    row: int,
    indexes: list[int] | None = None,
) -> list[float]:
    """Read the single cell (col, row) of the requested bands as floats."""
    try:
        data = dataset.read(indexes, window=windows.Window(col, row, 1, 1))
    except rasterio.errors.RasterioIOError as exc:
        raise errors.FileAccessError(
            f"Failed reading pixel ({col}, {row}) of {dataset.name}: {exc}"
        ) from exc
    return [float(value) for value in data[:, 0, 0]]


def sample_all_bands(
    path: PathLike,
    lat: float,
    lon: float,
    metadata: models.RasterMetadata | None = None,
) -> list[float] | None:
    """Read every band of the cell containing a WGS84 point.

    Args:
        path: Path of the raster file.
        lat: Latitude (WGS84).
        lon: Longitude (WGS84).
        metadata: Previously read metadata for ``path``; read from the file
            when omitted.

    Returns:
        One raw value per band, or None when the point is outside the raster
        or every band holds nodata. Rasters where only some bands are nodata
        still return all values; per-band validity is up to the caller.

    Raises:
        FileAccessError: If the file is missing or the read fails.
        FileFormatError: If the file is not a georeferenced raster.
    """
    path = pathlib.Path(path)
    with _open_dataset(path) as dataset:
        meta = metadata or metadata_from_dataset(dataset)
        x, y = _to_raster_crs(lon, lat, meta)

        pixel = meta.pixel_coordinates(x, y)
        if pixel is None:
            logger.debug("(%s, %s) outside raster %s", lat, lon, path.name)
            return None

        col, row = pixel
        values = _read_pixel(dataset, col, row)

    if all(models.is_nodata(value, meta.nodata_value) for value in values):
        logger.debug("Only nodata at (%s, %s) in %s", lat, lon, path.name)
        return None

    logger.debug("%s pixel (%d, %d): %s", path.name, col, row, values)
    return values


def pixel_value(
    path: PathLike,
    lat: float,
    lon: float,
    band: int = 1,
    metadata: models.RasterMetadata | None = None,
) -> float | None:
    """Read one band at a WGS84 point.

    Args:
        path: Path of the raster file.
        lat: Latitude (WGS84).
        lon: Longitude (WGS84).
        band: 1-based band number.
        metadata: Previously read metadata for ``path``.

    Returns:
        The pixel value, or None when the band does not exist, the point is
        outside the raster or the value is nodata.
    """
    path = pathlib.Path(path)
    with _open_dataset(path) as dataset:
        meta = metadata or metadata_from_dataset(dataset)
        if not 1 <= band <= meta.band_count:
            logger.warning(
                "Invalid band %d for %s (max: %d)", band, path.name, meta.band_count
            )
            return None

        pixel = meta.pixel_coordinates(*_to_raster_crs(lon, lat, meta))
        if pixel is None:
            return None
        (value,) = _read_pixel(dataset, pixel[0], pixel[1], [band])

    if models.is_nodata(value, meta.nodata_value):
        return None
    return value


def is_valid_raster(path: PathLike) -> bool:
    """Return True if ``path`` opens as a georeferenced raster."""
    try:
        read_metadata(path)
    except errors.MapCoreError as exc:
        logger.info("Not a valid raster: %s (%s)", path, exc)
        return False
    return True


@dataclasses.dataclass(frozen=True)
class RasterFileInfo:
    """A raster file found on disk and the outcome of validating it."""

    path: pathlib.Path
    size_bytes: int
    is_valid: bool
    metadata: models.RasterMetadata | None = None
    error: str | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024.0 * 1024.0)

    @property
    def display_size(self) -> str:
        if self.size_mb < 1.0:
            return f"{self.size_bytes / 1024.0:.1f} KB"
        if self.size_mb < 100.0:
            return f"{self.size_mb:.1f} MB"
        return f"{self.size_mb:.0f} MB"


def validate_raster(path: PathLike) -> RasterFileInfo:
    """Validate a raster file and collect its metadata.

    Raises:
        FileAccessError: If the file is missing or unreadable.
    """
    path = pathlib.Path(path)
    _check_access(path)
    size = path.stat().st_size
    try:
        metadata = read_metadata(path)
    except (errors.FileFormatError, errors.DegenerateTransformError) as exc:
        return RasterFileInfo(path, size, is_valid=False, error=str(exc))
    return RasterFileInfo(path, size, is_valid=True, metadata=metadata)


def find_raster_files(
    directory: PathLike,
    max_size_bytes: int | None = None,
) -> list[RasterFileInfo]:
    """Recursively find and validate raster files under ``directory``.

    Files larger than ``max_size_bytes`` are skipped. Results are sorted by
    modification time, newest first.
    """
    root = pathlib.Path(directory)
    if not root.is_dir():
        logger.warning("Not a directory: %s", root)
        return []

    found: list[RasterFileInfo] = []
    for candidate in root.rglob("*"):
        if candidate.suffix.lower() not in RASTER_EXTENSIONS or not candidate.is_file():
            continue
        size = candidate.stat().st_size
        if max_size_bytes is not None and size > max_size_bytes:
            logger.warning("Skipping large raster %s (%d bytes)", candidate.name, size)
            continue
        try:
            found.append(validate_raster(candidate))
        except errors.FileAccessError as exc:
            logger.warning("Skipping unreadable raster %s: %s", candidate.name, exc)

    found.sort(key=lambda info: info.path.stat().st_mtime, reverse=True)
    return found
