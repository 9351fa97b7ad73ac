"""Data models for layer records.

This module defines the record the application keeps for every layer shown
on the map. A LayerMetadata ties a layer identifier to the file or remote
service that backs it, plus the display state (visibility, opacity, drawing
order) and the per-layer overrides applied to point query results.

Example:
    Creating a LayerMetadata instance for a canopy height raster:
        >>> from mapcore.db.models import LayerMetadata
        >>> layer = LayerMetadata(
        ...     id="canopy",
        ...     name="Canopy height",
        ...     layer_type="raster",
        ...     source="/data/canopy_height.tif",
        ...     local_path="/data/canopy_height.tif",
        ...     unit="m",
        ... )

    Creating metadata for an offline base map:
        >>> base = LayerMetadata(
        ...     id="ortho",
        ...     name="Orthophoto",
        ...     layer_type="mbtiles",
        ...     source="/data/ortho.mbtiles",
        ...     local_path="/data/ortho.mbtiles",
        ...     min_zoom=0,
        ...     max_zoom=16,
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Literal

BBox = tuple[float, float, float, float]
LayerType = Literal["raster", "mbtiles", "vector", "base_map"]


@dataclasses.dataclass
class LayerMetadata:
    """Represents a layer the app knows about.

    Attributes:
        id: Unique identifier for the layer.
        name: Human-readable layer name.
        layer_type: Kind of layer ("raster", "mbtiles", "vector", "base_map").
        source: Original file path or URL template.
        local_path: Local file backing the layer, None for remote layers.
        bbox: Extent as (min_lon, min_lat, max_lon, max_lat) in WGS84.
        visible: Whether the layer is drawn.
        opacity: Layer opacity between 0.0 and 1.0.
        z_index: Drawing order, higher on top.
        band_names: Overrides the band names read from the raster.
        unit: Unit label appended to query values (e.g. "m").
        nodata_value: Overrides the nodata value read from the raster.
        min_zoom: Lowest zoom the layer is shown at.
        max_zoom: Highest zoom the layer is shown at.
        created_at: Timestamp when the layer was registered.
    """

    id: str
    name: str
    layer_type: LayerType
    source: str
    local_path: str | None = None
    bbox: BBox | None = None
    visible: bool = True
    opacity: float = 1.0
    z_index: int = 0
    band_names: tuple[str, ...] | None = None
    unit: str | None = None
    nodata_value: float | None = None
    min_zoom: int | None = None
    max_zoom: int | None = None
    created_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )

    def __post_init__(self) -> None:
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"opacity must be within [0, 1], got {self.opacity}")

    @property
    def is_raster(self) -> bool:
        return self.layer_type == "raster" and self.local_path is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible types."""
        data = dataclasses.asdict(self)
        data["bbox"] = list(self.bbox) if self.bbox else None
        data["band_names"] = list(self.band_names) if self.band_names else None
        data["created_at"] = self.created_at.isoformat()
        return data
