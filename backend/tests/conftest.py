"""Shared fixtures: small GeoTIFFs and MBTiles archives on disk, and an
isolated FastAPI TestClient.

Rasters are written with rasterio and tiles are encoded with rio-tiler, so
the readers under test always see real files. The client overrides the
repository, metadata cache and settings dependencies per test.
"""

from __future__ import annotations

import pathlib
import sqlite3
from typing import TYPE_CHECKING

import numpy
import pytest
import rasterio
import rasterio.transform
from fastapi import testclient
from rio_tiler.models import ImageData

from mapcore import main
from mapcore.api import deps
from mapcore.core import config
from mapcore.db import cache, database

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

# 10x10 WGS84 grid covering lon [-5, -4], lat [41, 42] at 0.1 degree pixels.
GRID_WEST = -5.0
GRID_NORTH = 42.0
GRID_RESOLUTION = 0.1
GRID_SIZE = 10
NODATA = -9999.0


def _grid_values(band: int = 1) -> numpy.ndarray:
    """Cell (row, col) of band ``b`` holds ``b * 1000 + row * 10 + col``."""
    rows, cols = numpy.mgrid[0:GRID_SIZE, 0:GRID_SIZE]
    return (band * 1000 + rows * 10 + cols).astype("float32")


def _encode_tile(array: numpy.ndarray, img_format: str = "PNG") -> bytes:
    """Encode a (bands, h, w) uint8 array as an image tile."""
    return ImageData(numpy.ma.MaskedArray(array)).render(
        img_format=img_format, add_mask=False
    )


def _quadrant_tile(size: int = 256) -> numpy.ndarray:
    """RGB tile whose four quadrants are red, green, blue and white."""
    array = numpy.zeros((3, size, size), dtype="uint8")
    half = size // 2
    array[0, :half, :half] = 255
    array[1, :half, half:] = 255
    array[2, half:, :half] = 255
    array[:, half:, half:] = 255
    return array


@pytest.fixture
def write_geotiff(tmp_path: pathlib.Path) -> Callable[..., pathlib.Path]:
    """Factory writing a float32 GeoTIFF of the test grid."""

    def _write(
        name: str = "grid.tif",
        count: int = 1,
        nodata: float | None = NODATA,
        crs: str | None = "EPSG:4326",
        descriptions: tuple[str, ...] | None = None,
        nodata_cells: tuple[tuple[int, int], ...] = (),
    ) -> pathlib.Path:
        path = tmp_path / name
        transform = rasterio.transform.from_origin(
            GRID_WEST, GRID_NORTH, GRID_RESOLUTION, GRID_RESOLUTION
        )
        data = numpy.stack([_grid_values(band) for band in range(1, count + 1)])
        for row, col in nodata_cells:
            data[:, row, col] = nodata
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            width=GRID_SIZE,
            height=GRID_SIZE,
            count=count,
            dtype="float32",
            crs=crs,
            transform=transform,
            nodata=nodata,
        ) as dataset:
            dataset.write(data)
            if descriptions:
                for index, description in enumerate(descriptions, start=1):
                    dataset.set_band_description(index, description)
        return path

    return _write


@pytest.fixture
def make_mbtiles(tmp_path: pathlib.Path) -> Callable[..., pathlib.Path]:
    """Factory writing an MBTiles archive.

    ``tiles`` maps XYZ ``(zoom, column, row)`` to tile bytes; rows are
    flipped to TMS on insert like real archives.
    """

    def _make(
        tiles: Mapping[tuple[int, int, int], bytes],
        metadata: Mapping[str, str] | None = None,
        name: str = "archive.mbtiles",
    ) -> pathlib.Path:
        path = tmp_path / name
        connection = sqlite3.connect(path)
        try:
            connection.execute("CREATE TABLE metadata (name TEXT, value TEXT)")
            connection.execute(
                "CREATE TABLE tiles (zoom_level INTEGER, tile_column INTEGER,"
                " tile_row INTEGER, tile_data BLOB)"
            )
            connection.executemany(
                "INSERT INTO metadata VALUES (?, ?)",
                list((metadata or {}).items()),
            )
            connection.executemany(
                "INSERT INTO tiles VALUES (?, ?, ?, ?)",
                [
                    (zoom, column, (1 << zoom) - 1 - row, data)
                    for (zoom, column, row), data in tiles.items()
                ],
            )
            connection.commit()
        finally:
            connection.close()
        return path

    return _make


@pytest.fixture
def encode_tile() -> Callable[..., bytes]:
    """Encode a (bands, h, w) uint8 array as PNG (or ``img_format``)."""
    return _encode_tile


@pytest.fixture
def quadrant_png() -> bytes:
    """256px PNG tile with red, green, blue and white quadrants."""
    return _encode_tile(_quadrant_tile())


@pytest.fixture
def repo() -> database.InMemoryLayerRepository:
    return database.InMemoryLayerRepository()


@pytest.fixture
def metadata_cache() -> cache.MetadataCache:
    return cache.MetadataCache()


@pytest.fixture
def client(
    repo: database.InMemoryLayerRepository,
    metadata_cache: cache.MetadataCache,
    tmp_path: pathlib.Path,
) -> Iterator[testclient.TestClient]:
    """TestClient with isolated repository, cache and data directory."""
    app = main.create_app()
    settings = config.Settings(data_dir=tmp_path, max_virtual_zoom=14)
    app.dependency_overrides[deps.get_repo] = lambda: repo
    app.dependency_overrides[deps.get_metadata_cache] = lambda: metadata_cache
    app.dependency_overrides[config.get_settings] = lambda: settings
    try:
        yield testclient.TestClient(app)
    finally:
        app.dependency_overrides.clear()
