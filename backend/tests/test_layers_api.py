"""API endpoint tests for the layers management endpoints.

This module provides tests for the /api/layers endpoints in the FastAPI
application, covering:
    - Registering raster, MBTiles and remote layers, with file validation,
    - Listing, describing and deleting layers,
    - Cache invalidation on delete and on explicit clear,
    - Discovering raster and archive files in the data directory.

The layer repository, metadata cache and settings are always injected
using dependency overrides so every test works on isolated state.
"""

from __future__ import annotations

import pathlib
import sqlite3
from typing import TYPE_CHECKING

import pytest
from fastapi import testclient

from mapcore.db import cache, database

if TYPE_CHECKING:
    from collections.abc import Callable


def test_list_layers_empty(client: testclient.TestClient) -> None:
    """Test listing layers when repository is empty."""
    response = client.get("/api/layers")
    assert response.status_code == 200
    assert response.json() == []


def test_register_raster_layer(
    client: testclient.TestClient,
    metadata_cache: cache.MetadataCache,
    write_geotiff: Callable[..., pathlib.Path],
) -> None:
    """Test registering a GeoTIFF validates it and stores its WGS84 bbox."""
    path = write_geotiff()
    response = client.post(
        "/api/layers",
        json={"name": "DEM", "layer_type": "raster", "path": str(path), "unit": "m"},
    )

    assert response.status_code == 201
    layer = response.json()
    assert layer["layer_type"] == "raster"
    assert layer["unit"] == "m"
    assert layer["bbox"] == pytest.approx([-5.0, 41.0, -4.0, 42.0])
    assert layer["id"] in metadata_cache

    listed = client.get("/api/layers").json()
    assert [item["id"] for item in listed] == [layer["id"]]
    assert client.get(f"/api/layers/{layer['id']}").json()["name"] == "DEM"


def test_register_mbtiles_layer(
    client: testclient.TestClient,
    make_mbtiles: Callable[..., pathlib.Path],
    quadrant_png: bytes,
) -> None:
    """Test registering an MBTiles archive copies its zoom range and bounds."""
    path = make_mbtiles(
        {(10, 10, 14): quadrant_png},
        metadata={"format": "png", "bounds": "-5,41,-4,42"},
    )
    response = client.post(
        "/api/layers",
        json={"name": "Ortho", "layer_type": "mbtiles", "path": str(path)},
    )

    assert response.status_code == 201
    layer = response.json()
    assert (layer["min_zoom"], layer["max_zoom"]) == (10, 10)
    assert layer["bbox"] == [-5.0, 41.0, -4.0, 42.0]


def test_register_remote_layer(client: testclient.TestClient) -> None:
    """Test registering a base map from a URL template."""
    response = client.post(
        "/api/layers",
        json={
            "name": "OSM",
            "layer_type": "base_map",
            "url": "https://tile.openstreetmap.org/{z}/{x}/{y}.png",
            "z_index": -1,
        },
    )
    assert response.status_code == 201
    assert response.json()["local_path"] is None


def test_register_requires_path_or_url(client: testclient.TestClient) -> None:
    """Test that file layers need a path and remote layers a URL."""
    assert client.post(
        "/api/layers", json={"name": "x", "layer_type": "raster"}
    ).status_code == 400
    assert client.post(
        "/api/layers", json={"name": "x", "layer_type": "base_map"}
    ).status_code == 400


@pytest.mark.parametrize(
    ("content", "layer_type", "status_code", "error"),
    [
        (None, "raster", 404, "FileAccessError"),
        (b"not a raster", "raster", 422, "FileFormatError"),
        (b"not sqlite", "mbtiles", 422, "FileFormatError"),
    ],
)
def test_register_invalid_files(
    client: testclient.TestClient,
    repo: database.InMemoryLayerRepository,
    tmp_path: pathlib.Path,
    content: bytes | None,
    layer_type: str,
    status_code: int,
    error: str,
) -> None:
    """Test that invalid files are rejected with the mapped status code."""
    path = tmp_path / "layer.bin"
    if content is not None:
        path.write_bytes(content)

    response = client.post(
        "/api/layers",
        json={"name": "bad", "layer_type": layer_type, "path": str(path)},
    )

    assert response.status_code == status_code
    assert response.json()["error"] == error
    assert list(repo.all()) == []


def test_corrupt_archive_is_conflict(
    client: testclient.TestClient, tmp_path: pathlib.Path
) -> None:
    """Test that a SQLite file without tiles maps to 409."""
    path = tmp_path / "corrupt.mbtiles"
    with sqlite3.connect(path) as connection:
        connection.execute("CREATE TABLE metadata (name TEXT, value TEXT)")

    response = client.post(
        "/api/layers",
        json={"name": "bad", "layer_type": "mbtiles", "path": str(path)},
    )
    assert response.status_code == 409


def test_get_layer_bbox_not_found(client: testclient.TestClient) -> None:
    """Test bbox and detail endpoints for unknown layers."""
    assert client.get("/api/layers/missing/bbox").status_code == 404
    assert client.get("/api/layers/missing").status_code == 404


def test_get_layer_bbox(
    client: testclient.TestClient, write_geotiff: Callable[..., pathlib.Path]
) -> None:
    """Test the bbox endpoint for a registered raster."""
    layer_id = client.post(
        "/api/layers",
        json={"name": "DEM", "layer_type": "raster", "path": str(write_geotiff())},
    ).json()["id"]

    bbox = client.get(f"/api/layers/{layer_id}/bbox").json()["bbox"]
    assert bbox == pytest.approx([-5.0, 41.0, -4.0, 42.0])


def test_delete_layer_invalidates_cache(
    client: testclient.TestClient,
    metadata_cache: cache.MetadataCache,
    write_geotiff: Callable[..., pathlib.Path],
) -> None:
    """Test that deleting a layer removes it and its cached metadata."""
    layer_id = client.post(
        "/api/layers",
        json={"name": "DEM", "layer_type": "raster", "path": str(write_geotiff())},
    ).json()["id"]

    assert client.delete(f"/api/layers/{layer_id}").status_code == 204
    assert layer_id not in metadata_cache
    assert client.get(f"/api/layers/{layer_id}").status_code == 404
    assert client.delete(f"/api/layers/{layer_id}").status_code == 404


def test_clear_cache(
    client: testclient.TestClient, metadata_cache: cache.MetadataCache
) -> None:
    """Test the explicit cache clear endpoint."""
    metadata_cache.put("a", object())
    response = client.post("/api/layers/cache/clear")
    assert response.status_code == 200
    assert len(metadata_cache) == 0


def test_discover_files(
    client: testclient.TestClient,
    write_geotiff: Callable[..., pathlib.Path],
    make_mbtiles: Callable[..., pathlib.Path],
) -> None:
    """Test discovery of rasters and archives in the data directory."""
    write_geotiff("dem.tif")
    make_mbtiles({(0, 0, 0): b"x"}, metadata={"format": "png"}, name="ortho.mbtiles")

    found = client.get("/api/layers/discover").json()

    assert [item["name"] for item in found["rasters"]] == ["dem.tif"]
    assert found["rasters"][0]["is_valid"] is True
    assert [item["name"] for item in found["archives"]] == ["ortho"]
