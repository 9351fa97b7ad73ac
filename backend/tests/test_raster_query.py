"""Tests for the multi-layer point query fan-out.

The key property: one broken or non-covering layer never hides the values
of the others. Per-layer failures end as NoData when nothing else answers;
QueryError is reserved for a fan-out that cannot run at all.
"""

from __future__ import annotations

import dataclasses
import pathlib
from typing import TYPE_CHECKING

import numpy
import pytest
import rasterio
import rasterio.transform

from mapcore.core import models
from mapcore.db import cache
from mapcore.db import models as db_models
from mapcore.services import raster_query, raster_reader

if TYPE_CHECKING:
    from collections.abc import Callable

INSIDE = (41.75, -4.55)
OUTSIDE = (10.0, 10.0)
LOCAL_CS = (
    'LOCAL_CS["site grid",UNIT["metre",1],'
    'AXIS["Easting",EAST],AXIS["Northing",NORTH]]'
)


def _layer(layer_id: str, path: pathlib.Path | str, **kwargs: object) -> db_models.LayerMetadata:
    return db_models.LayerMetadata(
        id=layer_id,
        name=layer_id.upper(),
        layer_type="raster",
        source=str(path),
        local_path=str(path),
        **kwargs,  # type: ignore[arg-type]
    )


def _service() -> raster_query.RasterQueryService:
    return raster_query.RasterQueryService(cache.MetadataCache(), max_workers=4)


def test_query_point_success(write_geotiff: Callable[..., pathlib.Path]) -> None:
    """Test a query over two covering layers keeps layer order."""
    first = _layer("a", write_geotiff("a.tif"))
    second = _layer("b", write_geotiff("b.tif", count=2))

    outcome = _service().query_point([first, second], *INSIDE)

    assert isinstance(outcome, models.QuerySuccess)
    assert [sample.layer_id for sample in outcome.values] == ["a", "b"]
    assert outcome.values[0].values == (1024.0,)
    assert outcome.values[1].values == (1024.0, 2024.0)


def test_partial_failure_keeps_other_layers(
    write_geotiff: Callable[..., pathlib.Path], tmp_path: pathlib.Path
) -> None:
    """Test that a missing file does not abort the remaining layers."""
    broken = _layer("broken", tmp_path / "missing.tif")
    good = _layer("good", write_geotiff())

    outcome = _service().query_point([broken, good], *INSIDE)

    assert isinstance(outcome, models.QuerySuccess)
    assert [sample.layer_id for sample in outcome.values] == ["good"]


def test_all_layers_failed_is_no_data(tmp_path: pathlib.Path) -> None:
    """Test that per-layer failures are logged and reported as NoData."""
    garbage = tmp_path / "garbage.tif"
    garbage.write_bytes(b"garbage")
    layers = [_layer("missing", tmp_path / "missing.tif"), _layer("garbage", garbage)]

    outcome = _service().query_point(layers, *INSIDE)

    assert isinstance(outcome, models.QueryNoData)


def test_single_layer_failure_is_reported_by_query_layer(
    tmp_path: pathlib.Path,
) -> None:
    """Test that query_layer still describes the failure of its layer."""
    outcome = _service().query_layer(_layer("m", tmp_path / "missing.tif"), *INSIDE)

    assert isinstance(outcome, models.QueryError)
    assert outcome.message.startswith("M: ")


def test_covering_outside_and_broken_layers(
    write_geotiff: Callable[..., pathlib.Path], tmp_path: pathlib.Path
) -> None:
    """Test one covering, one non-covering and one unreadable layer."""
    elsewhere = tmp_path / "elsewhere.tif"
    with rasterio.open(
        elsewhere,
        "w",
        driver="GTiff",
        width=4,
        height=4,
        count=1,
        dtype="float32",
        crs="EPSG:4326",
        transform=rasterio.transform.from_origin(10.0, 50.0, 0.1, 0.1),
    ) as dataset:
        dataset.write(numpy.ones((1, 4, 4), dtype="float32"))
    layers = [
        _layer("a", write_geotiff()),
        _layer("b", elsewhere),
        _layer("c", tmp_path / "unreadable.tif"),
    ]

    outcome = _service().query_point(layers, *INSIDE)

    assert isinstance(outcome, models.QuerySuccess)
    assert [sample.layer_id for sample in outcome.values] == ["a"]


def test_unreachable_crs_does_not_abort_other_layers(
    write_geotiff: Callable[..., pathlib.Path],
) -> None:
    """Test that a layer whose CRS has no route from WGS84 fails alone."""
    metadata_cache: cache.MetadataCache = cache.MetadataCache()
    local_path = write_geotiff("local.tif")
    metadata_cache.put(
        "local",
        dataclasses.replace(raster_reader.read_metadata(local_path), crs=LOCAL_CS),
    )
    service = raster_query.RasterQueryService(metadata_cache)
    local = _layer("local", local_path)
    good = _layer("good", write_geotiff("good.tif"))

    failed = service.query_layer(local, *INSIDE)
    outcome = service.query_point([local, good], *INSIDE)

    assert isinstance(failed, models.QueryError)
    assert isinstance(outcome, models.QuerySuccess)
    assert [sample.layer_id for sample in outcome.values] == ["good"]


def test_broken_thread_pool_is_error(
    write_geotiff: Callable[..., pathlib.Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that a fan-out that cannot run reports QueryError."""

    class ShutDownPool:
        def __init__(self, max_workers: int) -> None:
            pass

        def __enter__(self) -> ShutDownPool:
            return self

        def __exit__(self, *exc_info: object) -> None:
            return None

        def map(self, *args: object) -> list[models.QueryOutcome]:
            raise RuntimeError("cannot schedule new futures after shutdown")

    monkeypatch.setattr(
        raster_query.concurrent.futures, "ThreadPoolExecutor", ShutDownPool
    )

    outcome = _service().query_point([_layer("a", write_geotiff())], *INSIDE)

    assert isinstance(outcome, models.QueryError)
    assert "cannot schedule" in outcome.message


def test_failure_plus_no_coverage_is_no_data(
    write_geotiff: Callable[..., pathlib.Path], tmp_path: pathlib.Path
) -> None:
    """Test that one failure and one non-covering layer yield NoData."""
    layers = [_layer("missing", tmp_path / "missing.tif"), _layer("ok", write_geotiff())]
    outcome = _service().query_point(layers, *OUTSIDE)
    assert isinstance(outcome, models.QueryNoData)


def test_no_raster_layers_is_no_data() -> None:
    """Test that non-raster layers are ignored."""
    base_map = db_models.LayerMetadata(
        id="osm",
        name="OSM",
        layer_type="base_map",
        source="https://tile.openstreetmap.org/{z}/{x}/{y}.png",
    )
    outcome = _service().query_point([base_map], *INSIDE)
    assert isinstance(outcome, models.QueryNoData)


def test_layer_overrides(write_geotiff: Callable[..., pathlib.Path]) -> None:
    """Test that the layer record overrides names, unit and nodata."""
    layer = _layer(
        "dem",
        write_geotiff(),
        band_names=("Height",),
        unit="m",
        nodata_value=1024.0,
    )
    service = _service()

    assert isinstance(service.query_point([layer], *INSIDE), models.QueryNoData)

    outcome = service.query_layer(layer, 41.95, -4.95)
    assert isinstance(outcome, models.QuerySuccess)
    (sample,) = outcome.values
    assert sample.band_names == ("Height",)
    assert sample.format_primary_value() == "1000.00 m"
    assert sample.nodata_value == 1024.0


def test_metadata_is_cached_and_invalidated(
    write_geotiff: Callable[..., pathlib.Path],
) -> None:
    """Test lazy metadata caching, preload and invalidation."""
    metadata_cache: cache.MetadataCache = cache.MetadataCache()
    service = raster_query.RasterQueryService(metadata_cache)
    layer = _layer("dem", write_geotiff())

    service.query_point([layer], *INSIDE)
    service.query_point([layer], *INSIDE)
    assert "dem" in metadata_cache
    assert metadata_cache.stats().hits >= 1

    assert service.invalidate("dem")
    assert "dem" not in metadata_cache

    assert service.preload_metadata([layer]) == 1
    assert "dem" in metadata_cache
    assert service.cache_stats().startswith("Cache: 1 entries")

    service.clear()
    assert len(metadata_cache) == 0


def test_preload_skips_broken_layers(tmp_path: pathlib.Path) -> None:
    """Test that preloading logs and skips unreadable layers."""
    service = _service()
    assert service.preload_metadata([_layer("x", tmp_path / "none.tif")]) == 0
