"""Tests for application configuration and settings.

This module contains unit tests for the Settings Pydantic model and
application configuration logic in mapcore.core.config. It ensures that
default values, ``MAPCORE_`` environment overrides, directory creation
logic and get_settings caching work as expected.

All tests are safe to run in isolation. Temporary directories are used
to verify filesystem interactions where needed.
"""

from __future__ import annotations

import pathlib

import pydantic
import pytest

from mapcore.core import config


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that Settings has expected default values."""
    monkeypatch.delenv("MAPCORE_MAX_VIRTUAL_ZOOM", raising=False)
    settings = config.Settings(_env_file=None)  # type: ignore[call-arg]
    assert settings.tile_size == 256
    assert settings.max_virtual_zoom == 28
    assert settings.utm_zone == 30
    assert settings.screen_dpi == 96.0
    assert settings.max_raster_size_bytes == 500 * 1024 * 1024
    assert settings.allow_origins == ["*"]


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that MAPCORE_ prefixed variables override defaults."""
    monkeypatch.setenv("MAPCORE_MAX_VIRTUAL_ZOOM", "22")
    monkeypatch.setenv("MAPCORE_QUERY_WORKERS", "8")
    monkeypatch.setenv("MAPCORE_DATA_DIR", "/srv/maps")

    settings = config.Settings(_env_file=None)  # type: ignore[call-arg]

    assert settings.max_virtual_zoom == 22
    assert settings.query_workers == 8
    assert settings.data_dir == pathlib.Path("/srv/maps")


def test_settings_validation() -> None:
    """Test that out-of-range values are rejected."""
    with pytest.raises(pydantic.ValidationError):
        config.Settings(utm_zone=61)
    with pytest.raises(pydantic.ValidationError):
        config.Settings(max_virtual_zoom=31)


def test_settings_ensure_directories(tmp_path: pathlib.Path) -> None:
    """Test that ensure_directories creates the data directory."""
    data_dir = tmp_path / "layers"
    settings = config.Settings(data_dir=data_dir)
    assert not data_dir.exists()
    settings.ensure_directories()
    assert data_dir.is_dir()


def test_get_settings_cached(
    monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path
) -> None:
    """Test that get_settings returns a cached instance and creates directories."""
    monkeypatch.setenv("MAPCORE_DATA_DIR", str(tmp_path / "cached"))
    config.get_settings.cache_clear()
    try:
        settings1 = config.get_settings()
        settings2 = config.get_settings()
        assert settings1 is settings2
        assert settings1.data_dir.is_dir()
    finally:
        config.get_settings.cache_clear()
