"""Read-only access to MBTiles tile archives.

An MBTiles file is a SQLite database with a ``metadata`` key/value table and
a ``tiles`` table (or view) holding one blob per
(zoom_level, tile_column, tile_row). Rows are stored in TMS order, counted
from the bottom of the map, while the rest of the application uses XYZ rows
counted from the top; get_tile() flips between the two.

Opening an archive discriminates three failures:

- FileAccessError: the file is missing or unreadable;
- FileFormatError: the file is not a SQLite database;
- CorruptArchiveError: the database opens but the tile index is missing or
  unreadable.

Connections are opened read-only and closed when the TileArchive context
exits, so every request can open its own handle.

Example:
    >>> from mapcore.services import tile_archive
    >>> with tile_archive.open_archive("ortho.mbtiles") as archive:
    ...     meta = archive.read_metadata()
    ...     tile = archive.get_tile(14, 8012, 6120)
    >>> meta.format
    <TileFormat.JPG: 'jpg'>
"""

from __future__ import annotations

import dataclasses
import logging
import os
import pathlib
import sqlite3
from typing import TYPE_CHECKING, Self

from mapcore.core import errors, models

if TYPE_CHECKING:
    import types

logger = logging.getLogger(__name__)

SQLITE_SIGNATURE = b"SQLite format 3\x00"
ARCHIVE_EXTENSIONS = frozenset({".mbtiles"})

PathLike = str | os.PathLike[str]


def _check_access(path: pathlib.Path) -> None:
    if not path.is_file():
        raise errors.FileAccessError(f"Tile archive not found: {path}")
    if not os.access(path, os.R_OK):
        raise errors.FileAccessError(f"Tile archive is not readable: {path}")


def _check_signature(path: pathlib.Path) -> None:
    try:
        with path.open("rb") as handle:
            header = handle.read(len(SQLITE_SIGNATURE))
    except OSError as exc:
        raise errors.FileAccessError(f"Cannot read {path}: {exc}") from exc
    if header != SQLITE_SIGNATURE:
        raise errors.FileFormatError(f"{path.name} is not a SQLite database")


def sniff_tile_format(data: bytes) -> models.TileFormat | None:
    """Guess a tile format from the payload's magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return models.TileFormat.PNG
    if data.startswith(b"\xff\xd8\xff"):
        return models.TileFormat.JPG
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return models.TileFormat.WEBP
    if data.startswith(b"\x1f\x8b") or data.startswith(b"\x1a"):
        return models.TileFormat.PBF
    return None


def _parse_bounds(value: str | None) -> models.Bounds | None:
    if not value:
        return None
    try:
        west, south, east, north = (float(part) for part in value.split(","))
        return models.Bounds(west, south, east, north)
    except ValueError:
        logger.warning("Ignoring malformed bounds metadata %r", value)
        return None


def _parse_center(value: str | None) -> tuple[float, float, int] | None:
    if not value:
        return None
    try:
        lon, lat, zoom = value.split(",")
        return float(lon), float(lat), int(float(zoom))
    except ValueError:
        logger.warning("Ignoring malformed center metadata %r", value)
        return None


class TileArchive:
    """An open, read-only MBTiles archive.

    Use as a context manager; the connection is closed on exit.
    """

    def __init__(self, path: pathlib.Path, connection: sqlite3.Connection) -> None:
        self.path = path
        self._connection = connection

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._connection.close()

    def _query(self, sql: str, params: tuple[object, ...] = ()) -> list[tuple]:
        try:
            return self._connection.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as exc:
            raise errors.CorruptArchiveError(
                f"{self.path.name}: query failed: {exc}"
            ) from exc

    def _raw_metadata(self) -> dict[str, str]:
        try:
            rows = self._connection.execute(
                "SELECT name, value FROM metadata"
            ).fetchall()
        except sqlite3.OperationalError:
            logger.warning("%s has no metadata table", self.path.name)
            return {}
        except sqlite3.DatabaseError as exc:
            raise errors.CorruptArchiveError(
                f"{self.path.name}: unreadable metadata: {exc}"
            ) from exc
        return {str(name): str(value) for name, value in rows if value is not None}

    def zoom_levels(self) -> tuple[int, int] | None:
        """Return (min, max) zoom present in the tile index, None if empty."""
        ((low, high),) = self._query(
            "SELECT MIN(zoom_level), MAX(zoom_level) FROM tiles"
        )
        if low is None:
            return None
        return int(low), int(high)

    def tile_count(self) -> int:
        ((count,),) = self._query("SELECT COUNT(*) FROM tiles")
        return int(count)

    def read_metadata(self) -> models.TileArchiveMetadata:
        """Read the archive's descriptive metadata.

        Missing ``minzoom``/``maxzoom`` entries are derived from the tile
        index, a missing ``format`` is sniffed from the first tile and a
        missing ``name`` falls back to the file stem.

        Raises:
            CorruptArchiveError: If the tile index cannot be read.
            FileFormatError: If the format is unknown and cannot be sniffed.
        """
        raw = self._raw_metadata()

        min_zoom = raw.get("minzoom")
        max_zoom = raw.get("maxzoom")
        if min_zoom is None or max_zoom is None:
            levels = self.zoom_levels() or (0, 0)
            logger.debug("%s: zoom range derived from tiles: %s", self.path.name, levels)
            min_zoom = min_zoom if min_zoom is not None else levels[0]
            max_zoom = max_zoom if max_zoom is not None else levels[1]

        tile_format = self._resolve_format(raw.get("format"))
        try:
            return models.TileArchiveMetadata(
                name=raw.get("name") or self.path.stem,
                format=tile_format,
                min_zoom=int(min_zoom),
                max_zoom=int(max_zoom),
                bounds=_parse_bounds(raw.get("bounds")),
                center=_parse_center(raw.get("center")),
                description=raw.get("description"),
                attribution=raw.get("attribution"),
            )
        except ValueError as exc:
            raise errors.CorruptArchiveError(
                f"{self.path.name}: invalid metadata: {exc}"
            ) from exc

    def _resolve_format(self, declared: str | None) -> models.TileFormat:
        if declared:
            try:
                return models.TileFormat.parse(declared)
            except ValueError:
                logger.warning(
                    "%s declares unknown format %r", self.path.name, declared
                )
        rows = self._query("SELECT tile_data FROM tiles LIMIT 1")
        sniffed = sniff_tile_format(bytes(rows[0][0])) if rows else None
        if sniffed is None:
            raise errors.FileFormatError(
                f"{self.path.name}: cannot determine tile format"
            )
        return sniffed

    def get_tile(self, zoom: int, column: int, row: int) -> bytes | None:
        """Fetch a tile by XYZ address.

        Args:
            zoom: Zoom level.
            column: Tile column.
            row: Tile row counted from the top (XYZ).

        Returns:
            The stored tile bytes, or None when the archive has no such tile
            or the address is outside the zoom grid.

        Raises:
            CorruptArchiveError: If the tile index cannot be read.
        """
        try:
            index = models.TileIndex(zoom, column, row)
        except ValueError:
            return None

        rows = self._query(
            "SELECT tile_data FROM tiles"
            " WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (index.zoom, index.column, index.tms_row),
        )
        if not rows or rows[0][0] is None:
            return None
        return bytes(rows[0][0])


def open_archive(path: PathLike) -> TileArchive:
    """Open an MBTiles archive read-only and check its tile index.

    Args:
        path: Path of the ``.mbtiles`` file.

    Returns:
        An open TileArchive; use it as a context manager.

    Raises:
        FileAccessError: If the file is missing or unreadable.
        FileFormatError: If the file is not a SQLite database.
        CorruptArchiveError: If the ``tiles`` table or view is missing or
            cannot be read.
    """
    path = pathlib.Path(path)
    _check_access(path)
    _check_signature(path)

    try:
        connection = sqlite3.connect(
            f"{path.resolve().as_uri()}?mode=ro", uri=True, check_same_thread=False
        )
    except sqlite3.Error as exc:
        raise errors.FileFormatError(f"Cannot open {path.name}: {exc}") from exc

    try:
        (has_tiles,) = connection.execute(
            "SELECT COUNT(*) FROM sqlite_master"
            " WHERE name = 'tiles' AND type IN ('table', 'view')"
        ).fetchone()
        if not has_tiles:
            raise errors.CorruptArchiveError(f"{path.name} has no tiles table")
        connection.execute(
            "SELECT zoom_level, tile_column, tile_row FROM tiles LIMIT 1"
        ).fetchall()
    except sqlite3.DatabaseError as exc:
        connection.close()
        raise errors.CorruptArchiveError(
            f"{path.name}: tile index unreadable: {exc}"
        ) from exc
    except errors.CorruptArchiveError:
        connection.close()
        raise

    logger.debug("Opened tile archive %s", path.name)
    return TileArchive(path, connection)


def read_archive_metadata(path: PathLike) -> models.TileArchiveMetadata:
    """Open ``path``, read its metadata and close it again."""
    with open_archive(path) as archive:
        return archive.read_metadata()


def is_valid_archive(path: PathLike) -> bool:
    try:
        read_archive_metadata(path)
    except errors.MapCoreError as exc:
        logger.info("Not a valid tile archive: %s (%s)", path, exc)
        return False
    return True


@dataclasses.dataclass(frozen=True)
class ArchiveFileInfo:
    """File-level facts about a tile archive on disk."""

    name: str
    path: pathlib.Path
    size_bytes: int
    extension: str

    @property
    def display_size(self) -> str:
        size = float(self.size_bytes)
        for unit in ("B", "KB", "MB"):
            if size < 1024.0:
                return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
            size /= 1024.0
        return f"{size:.1f} GB"


def archive_file_info(path: PathLike) -> ArchiveFileInfo:
    """Describe an archive file without opening it.

    Raises:
        FileAccessError: If the file does not exist.
    """
    path = pathlib.Path(path)
    _check_access(path)
    return ArchiveFileInfo(
        name=path.stem,
        path=path,
        size_bytes=path.stat().st_size,
        extension=path.suffix.lower(),
    )


def find_archives(directory: PathLike) -> list[ArchiveFileInfo]:
    """Recursively find valid ``.mbtiles`` archives under ``directory``."""
    root = pathlib.Path(directory)
    if not root.is_dir():
        logger.warning("Not a directory: %s", root)
        return []
    return sorted(
        (
            archive_file_info(candidate)
            for candidate in root.rglob("*")
            if candidate.suffix.lower() in ARCHIVE_EXTENSIONS
            and is_valid_archive(candidate)
        ),
        key=lambda info: info.name,
    )
