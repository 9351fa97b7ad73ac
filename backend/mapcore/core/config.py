"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings cover the
directory scanned for raster and MBTiles files, the virtual tile pyramid
(tile size and maximum synthesized zoom), the UTM zone and screen DPI used
for cursor display, the worker pool size of the multi-layer point query,
CORS origins and logging.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from mapcore.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.tile_size)

    Environment variables can override defaults:
        >>> MAPCORE_DATA_DIR=/srv/maps
        >>> MAPCORE_MAX_VIRTUAL_ZOOM=22
        >>> MAPCORE_QUERY_WORKERS=8
"""

import functools
import pathlib

import pydantic
import pydantic_settings


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via ``MAPCORE_``-prefixed environment
    variables or a .env file. The data directory is created on demand by
    ensure_directories().

    Attributes:
        data_dir: Directory where raster and MBTiles layer files live.
        tile_size: Edge length in pixels of served tiles.
        max_virtual_zoom: Highest zoom the upscaler will synthesize.
        utm_zone: UTM zone used for the cursor coordinate display.
        screen_dpi: Screen resolution assumed by the map scale label.
        query_workers: Thread pool size for multi-layer point queries.
        max_raster_size_bytes: Raster files above this size are skipped by
            discovery (default 500MB).
        allow_origins: List of allowed CORS origins (["*"] allows all).
        log_level: Root logging level.
        log_json: Emit JSON log records instead of plain text.

    Example:
        Create settings with custom values:
            >>> settings = Settings(
            ...     data_dir=Path("/srv/maps"),
            ...     max_virtual_zoom=22,
            ... )
            >>> settings.ensure_directories()
    """

    data_dir: pathlib.Path = pathlib.Path("/tmp/map_viewer/layers")
    tile_size: int = pydantic.Field(default=256, gt=0)
    max_virtual_zoom: int = pydantic.Field(default=28, ge=0, le=30)
    utm_zone: int = pydantic.Field(default=30, ge=1, le=60)
    screen_dpi: float = pydantic.Field(default=96.0, gt=0)
    query_workers: int = pydantic.Field(default=4, ge=1)
    max_raster_size_bytes: int = 500 * 1024 * 1024
    allow_origins: list[str] = ["*"]
    log_level: str = "INFO"
    log_json: bool = False

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MAPCORE_",
        case_sensitive=False,
        extra="ignore",
    )

    def ensure_directories(self) -> None:
        """Create the local layer data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance with directories initialized.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Directories are created on first call.
    Subsequent calls return the same cached instance.

    Returns:
        Settings instance with all configuration values populated and
        directories ensured to exist.

    Example:
        The settings are cached, so multiple calls return the same instance:
            >>> settings1 = get_settings()
            >>> settings2 = get_settings()
            >>> assert settings1 is settings2  # Same instance
    """
    settings = Settings()
    settings.ensure_directories()
    return settings
