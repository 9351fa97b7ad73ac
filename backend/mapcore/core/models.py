"""Value types for georeferenced rasters, tile pyramids and query results.

Everything in this module is immutable once built. RasterMetadata and
TileArchiveMetadata instances are what the MetadataCache stores per layer;
RasterSample and the QueryOutcome variants are created fresh for every point
query and never cached.

Example:
    Describe a one-band WGS84 raster and locate a point in it:
        >>> from mapcore.core import models
        >>> transform = models.AffineTransform(-5.0, 0.001, 0.0, 42.0, 0.0, -0.001)
        >>> meta = models.RasterMetadata(
        ...     width=1000,
        ...     height=1000,
        ...     band_count=1,
        ...     band_names=("Height",),
        ...     bounds=models.bounds_from_transform(1000, 1000, transform),
        ...     transform=transform,
        ...     nodata_value=-9999.0,
        ...     data_type=models.DataType.FLOAT32,
        ...     crs="EPSG:4326",
        ... )
        >>> meta.pixel_coordinates(-4.5, 41.5)
        (500, 500)
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import math
from typing import TYPE_CHECKING, Any, Literal

from mapcore.core import errors
from mapcore.utils import coordinates

if TYPE_CHECKING:
    from collections.abc import Sequence

NODATA_EPSILON = 1e-4


@dataclasses.dataclass(frozen=True)
class Bounds:
    """Closed bounding box ``[min_lon, max_lon] x [min_lat, max_lat]``.

    Coordinates are expressed in the raster's CRS; for WGS84 rasters that is
    longitude/latitude in degrees.

    Raises:
        ValueError: If the box is empty or inverted on either axis.
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self) -> None:
        if not self.min_lon < self.max_lon:
            raise ValueError(
                f"min_lon ({self.min_lon}) must be < max_lon ({self.max_lon})"
            )
        if not self.min_lat < self.max_lat:
            raise ValueError(
                f"min_lat ({self.min_lat}) must be < max_lat ({self.max_lat})"
            )

    def contains(self, lon: float, lat: float) -> bool:
        """Return True if the point lies inside or on the edge of the box."""
        return (
            self.min_lon <= lon <= self.max_lon
            and self.min_lat <= lat <= self.max_lat
        )

    def center(self) -> tuple[float, float]:
        """Return the (lon, lat) centre of the box."""
        return (
            (self.min_lon + self.max_lon) / 2.0,
            (self.min_lat + self.max_lat) / 2.0,
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        """Return ``(min_lon, min_lat, max_lon, max_lat)``."""
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)


@dataclasses.dataclass(frozen=True)
class AffineTransform:
    """Six-term geotransform in GDAL order.

    ``x = origin_x + col * pixel_width + row * rotation_x``
    ``y = origin_y + col * rotation_y + row * pixel_height``

    ``pixel_height`` is negative for north-up rasters, where the row index
    grows southward.
    """

    origin_x: float
    pixel_width: float
    rotation_x: float
    origin_y: float
    rotation_y: float
    pixel_height: float

    @classmethod
    def from_gdal(cls, values: Sequence[float]) -> AffineTransform:
        """Build from a GDAL ``GetGeoTransform()`` style sequence."""
        if len(values) != 6:
            raise ValueError(f"Geotransform needs 6 terms, got {len(values)}")
        return cls(*(float(v) for v in values))

    @classmethod
    def from_rasterio(cls, affine: Any) -> AffineTransform:
        """Build from an ``affine.Affine`` as exposed by ``dataset.transform``."""
        return cls.from_gdal(affine.to_gdal())

    def to_gdal(self) -> tuple[float, float, float, float, float, float]:
        return (
            self.origin_x,
            self.pixel_width,
            self.rotation_x,
            self.origin_y,
            self.rotation_y,
            self.pixel_height,
        )

    @property
    def is_rotated(self) -> bool:
        return self.rotation_x != 0.0 or self.rotation_y != 0.0

    @property
    def determinant(self) -> float:
        return self.pixel_width * self.pixel_height - self.rotation_x * self.rotation_y

    @property
    def is_degenerate(self) -> bool:
        """True when the transform cannot be inverted."""
        if not self.is_rotated:
            return self.pixel_width == 0.0 or self.pixel_height == 0.0
        return abs(self.determinant) < coordinates.DETERMINANT_EPSILON

    def geo_to_pixel(self, lon: float, lat: float) -> tuple[int, int] | None:
        return coordinates.geo_to_pixel(lon, lat, self)

    def pixel_to_geo(
        self,
        col: float,
        row: float,
        offset: Literal["ul", "center"] = "ul",
    ) -> tuple[float, float]:
        return coordinates.pixel_to_geo(col, row, self, offset)


class DataType(enum.Enum):
    """Sample type of a raster band."""

    BYTE = "Byte"
    INT16 = "Int16"
    UINT16 = "UInt16"
    INT32 = "Int32"
    UINT32 = "UInt32"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"
    UNKNOWN = "Unknown"

    @classmethod
    def from_dtype(cls, name: str) -> DataType:
        """Map a numpy/rasterio dtype name (or common alias) to a DataType."""
        return cls(_DTYPE_ALIASES.get(name.lower(), "Unknown"))

    @property
    def bytes_per_sample(self) -> int:
        return _BYTES_PER_SAMPLE[self]


_DTYPE_ALIASES = {
    "uint8": "Byte",
    "byte": "Byte",
    "int16": "Int16",
    "short": "Int16",
    "uint16": "UInt16",
    "ushort": "UInt16",
    "int32": "Int32",
    "int": "Int32",
    "uint32": "UInt32",
    "uint": "UInt32",
    "float32": "Float32",
    "float": "Float32",
    "float64": "Float64",
    "double": "Float64",
}

_BYTES_PER_SAMPLE = {
    DataType.BYTE: 1,
    DataType.INT16: 2,
    DataType.UINT16: 2,
    DataType.INT32: 4,
    DataType.UINT32: 4,
    DataType.FLOAT32: 4,
    DataType.FLOAT64: 8,
    DataType.UNKNOWN: 4,
}


def bounds_from_transform(
    width: int,
    height: int,
    transform: AffineTransform,
) -> Bounds:
    """Compute the bounding box covered by a ``width x height`` raster.

    All four corners are projected, so rotated transforms get the box that
    encloses the whole parallelogram.
    """
    corners = [
        transform.pixel_to_geo(col, row)
        for col, row in ((0, 0), (width, 0), (0, height), (width, height))
    ]
    xs = [x for x, _ in corners]
    ys = [y for _, y in corners]
    return Bounds(min(xs), min(ys), max(xs), max(ys))


@dataclasses.dataclass(frozen=True)
class RasterMetadata:
    """Georeferencing and layout of a raster file.

    Attributes:
        width: Number of columns.
        height: Number of rows.
        band_count: Number of bands.
        band_names: One name per band, or None.
        bounds: Bounding box in the raster CRS.
        transform: Geo/pixel affine transform.
        nodata_value: Sample value meaning "no data", if any.
        data_type: Sample type of the first band.
        crs: CRS identifier such as ``"EPSG:4326"``, or ``"UNKNOWN"``.
        compression: Compression name reported by the container, if any.

    Raises:
        ValueError: On non-positive dimensions, mismatched band names or a
            non-positive pixel width.
        DegenerateTransformError: If the transform cannot be inverted.
    """

    width: int
    height: int
    band_count: int
    band_names: tuple[str, ...] | None
    bounds: Bounds
    transform: AffineTransform
    nodata_value: float | None
    data_type: DataType
    crs: str = "EPSG:4326"
    compression: str | None = None

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Raster dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.band_count <= 0:
            raise ValueError(f"Raster needs at least one band, got {self.band_count}")
        if self.band_names is not None and len(self.band_names) != self.band_count:
            raise ValueError(
                f"{len(self.band_names)} band names for {self.band_count} bands"
            )
        if self.transform.pixel_width <= 0:
            raise ValueError(
                f"pixel_width must be positive, got {self.transform.pixel_width}"
            )
        if self.transform.is_degenerate:
            raise errors.DegenerateTransformError(
                f"Singular geotransform {self.transform.to_gdal()}"
            )

    @property
    def pixel_size(self) -> tuple[float, float]:
        """Absolute (x, y) pixel size in CRS units."""
        return abs(self.transform.pixel_width), abs(self.transform.pixel_height)

    @property
    def is_geographic(self) -> bool:
        return self.crs.upper() in {"EPSG:4326", "OGC:CRS84", "WGS84"}

    def contains(self, lon: float, lat: float) -> bool:
        return self.bounds.contains(lon, lat)

    def pixel_coordinates(self, lon: float, lat: float) -> tuple[int, int] | None:
        """Return the (col, row) cell holding a point, or None if outside.

        Points on the closed right/bottom edge of an axis-aligned raster
        belong to the last column/row.
        """
        if not self.bounds.contains(lon, lat):
            return None

        pixel = coordinates.geo_to_pixel(lon, lat, self.transform)
        if pixel is None:
            return None

        col, row = pixel
        if not self.transform.is_rotated:
            col = min(max(col, 0), self.width - 1)
            row = min(max(row, 0), self.height - 1)

        if not (0 <= col < self.width and 0 <= row < self.height):
            return None
        return col, row

    def estimated_size_mb(self) -> float:
        """Uncompressed size of all bands, in MiB."""
        total = self.width * self.height * self.band_count
        return total * self.data_type.bytes_per_sample / (1024.0 * 1024.0)

    def summary(self) -> str:
        size_x, size_y = self.pixel_size
        lines = [
            "Raster info:",
            f"  Dimensions: {self.width}x{self.height} px",
            f"  Bands: {self.band_count}",
            f"  Type: {self.data_type.value}",
            f"  Pixel size: {size_x:.6f} x {size_y:.6f}",
            "  Bounds: [{:.6f}, {:.6f}, {:.6f}, {:.6f}]".format(
                *self.bounds.as_tuple()
            ),
            f"  NoData: {self.nodata_value if self.nodata_value is not None else 'N/A'}",
            f"  CRS: {self.crs}",
            f"  Estimated size: {self.estimated_size_mb():.2f} MB",
        ]
        if self.compression:
            lines.append(f"  Compression: {self.compression}")
        return "\n".join(lines)


def is_nodata(value: float, nodata_value: float | None) -> bool:
    """Return True if ``value`` is NaN or equal to ``nodata_value``."""
    if math.isnan(value):
        return True
    if nodata_value is None:
        return False
    if math.isnan(nodata_value):
        return False
    return abs(value - nodata_value) < NODATA_EPSILON


@dataclasses.dataclass(frozen=True)
class RasterSample:
    """Band values read from one raster layer at one point.

    A sample exists only when at least one band holds data; individual bands
    may still be nodata and are flagged with :meth:`is_nodata`.
    """

    layer_id: str
    layer_name: str
    latitude: float
    longitude: float
    values: tuple[float, ...]
    band_names: tuple[str, ...] | None = None
    unit: str | None = None
    nodata_value: float | None = None
    timestamp: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )

    @property
    def primary_value(self) -> float:
        return self.values[0] if self.values else math.nan

    def band_value(self, band_number: int) -> float | None:
        """Return the value of a 1-based band, or None if there is no such band."""
        index = band_number - 1
        if 0 <= index < len(self.values):
            return self.values[index]
        return None

    def is_nodata(self, index: int) -> bool:
        """Per-band flag for the 0-based ``index``."""
        return is_nodata(self.values[index], self.nodata_value)

    def nodata_flags(self) -> tuple[bool, ...]:
        return tuple(self.is_nodata(i) for i in range(len(self.values)))

    def is_no_data(self) -> bool:
        """True if any band holds the nodata value."""
        if self.nodata_value is None:
            return False
        return any(
            not math.isnan(v) and abs(v - self.nodata_value) < NODATA_EPSILON
            for v in self.values
        )

    def has_valid_data(self) -> bool:
        """True when no band is nodata and every band is finite."""
        return not self.is_no_data() and all(math.isfinite(v) for v in self.values)

    def has_any_data(self) -> bool:
        return any(
            math.isfinite(v) and not self.is_nodata(i)
            for i, v in enumerate(self.values)
        )

    def band_label(self, index: int) -> str:
        if self.band_names and index < len(self.band_names):
            return self.band_names[index]
        return f"Band {index + 1}"

    def _format_value(self, value: float) -> str:
        text = f"{value:.2f}"
        return f"{text} {self.unit}" if self.unit else text

    def format_primary_value(self) -> str:
        """Format the first band with its unit, e.g. ``"845.30 m"``."""
        if not self.values or self.is_nodata(0) or not math.isfinite(self.values[0]):
            return "No data"
        return self._format_value(self.primary_value)

    def format_all_bands(self) -> list[str]:
        """Return ``"<band name>: <value>"`` lines, one per band."""
        lines = []
        for index, value in enumerate(self.values):
            if self.is_nodata(index) or not math.isfinite(value):
                formatted = "No data"
            else:
                formatted = self._format_value(value)
            lines.append(f"{self.band_label(index)}: {formatted}")
        return lines

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer_id": self.layer_id,
            "layer_name": self.layer_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "values": [None if math.isnan(v) else v for v in self.values],
            "band_names": list(self.band_names) if self.band_names else None,
            "unit": self.unit,
            "nodata_value": self.nodata_value,
            "nodata_flags": list(self.nodata_flags()),
            "has_valid_data": self.has_valid_data(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclasses.dataclass(frozen=True)
class TileIndex:
    """One tile of a quad-tree pyramid.

    Row 0 is the topmost (northernmost) row at every zoom, as in XYZ/slippy
    map URLs. MBTiles stores rows bottom-up; use :attr:`tms_row` for that.
    """

    zoom: int
    column: int
    row: int

    def __post_init__(self) -> None:
        if self.zoom < 0:
            raise ValueError(f"zoom must be >= 0, got {self.zoom}")
        limit = 1 << self.zoom
        if not (0 <= self.column < limit and 0 <= self.row < limit):
            raise ValueError(
                f"Tile ({self.column}, {self.row}) outside zoom {self.zoom} grid"
            )

    @property
    def tms_row(self) -> int:
        return (1 << self.zoom) - 1 - self.row

    def parent(self, levels: int = 1) -> TileIndex:
        """Return the ancestor ``levels`` zoom levels up."""
        if not 0 <= levels <= self.zoom:
            raise ValueError(f"Cannot go {levels} levels up from zoom {self.zoom}")
        return TileIndex(self.zoom - levels, self.column >> levels, self.row >> levels)


class TileFormat(enum.Enum):
    """Tile payload formats allowed by the MBTiles ``format`` metadata key."""

    JPG = "jpg"
    PNG = "png"
    PBF = "pbf"
    WEBP = "webp"

    @classmethod
    def parse(cls, value: str) -> TileFormat:
        normalized = value.strip().lower()
        if normalized == "jpeg":
            normalized = "jpg"
        return cls(normalized)

    @property
    def media_type(self) -> str:
        return {
            TileFormat.JPG: "image/jpeg",
            TileFormat.PNG: "image/png",
            TileFormat.PBF: "application/x-protobuf",
            TileFormat.WEBP: "image/webp",
        }[self]

    @property
    def is_raster(self) -> bool:
        return self is not TileFormat.PBF


@dataclasses.dataclass(frozen=True)
class TileArchiveMetadata:
    """Descriptive metadata of a tile archive.

    Raises:
        ValueError: If ``min_zoom`` is greater than ``max_zoom``.
    """

    name: str
    format: TileFormat
    min_zoom: int
    max_zoom: int
    bounds: Bounds | None = None
    center: tuple[float, float, int] | None = None
    description: str | None = None
    attribution: str | None = None

    def __post_init__(self) -> None:
        if self.min_zoom > self.max_zoom:
            raise ValueError(
                f"min_zoom ({self.min_zoom}) must be <= max_zoom ({self.max_zoom})"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "format": self.format.value,
            "min_zoom": self.min_zoom,
            "max_zoom": self.max_zoom,
            "bounds": list(self.bounds.as_tuple()) if self.bounds else None,
            "center": list(self.center) if self.center else None,
            "description": self.description,
            "attribution": self.attribution,
        }


@dataclasses.dataclass(frozen=True)
class QuerySuccess:
    """At least one layer returned data."""

    values: tuple[RasterSample, ...]
    status: Literal["success"] = "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "values": [sample.to_dict() for sample in self.values],
        }


@dataclasses.dataclass(frozen=True)
class QueryNoData:
    """No queried layer covers the point. A normal, empty result."""

    status: Literal["no_data"] = "no_data"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status}


@dataclasses.dataclass(frozen=True)
class QueryError:
    """The query could not be answered at all."""

    message: str
    status: Literal["error"] = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "message": self.message}


QueryOutcome = QuerySuccess | QueryNoData | QueryError
