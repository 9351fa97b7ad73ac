"""Error taxonomy for raster and tile archive access.

Every failure the core reports to its callers derives from MapCoreError, so
API handlers and the query fan-out can catch the whole family in one place
while still telling the cases apart. "No coverage at this point" is never an
error: readers return ``None`` for it.

Example:
    Distinguish a damaged archive from a file of the wrong type:
        >>> from mapcore.core import errors
        >>> from mapcore.services import tile_archive
        >>> try:
        ...     tile_archive.open_archive(path)
        ... except errors.CorruptArchiveError:
        ...     print("re-download the file")
        ... except errors.FileFormatError:
        ...     print("pick a different file")
"""

from __future__ import annotations


class MapCoreError(Exception):
    """Base exception for all raster and tile archive errors."""


class FileFormatError(MapCoreError):
    """Input is not a recognized raster or tile archive container.

    Raised when rasterio cannot open a file as a raster, when a raster has no
    usable georeferencing, or when a tile archive lacks the SQLite signature.
    Never retried; surfaced to the user as "invalid file".
    """


class FileAccessError(MapCoreError):
    """Underlying filesystem failure (missing file, permissions, read error).

    The caller may retry at a higher level, for example by asking the user to
    select the file again.
    """


class CorruptArchiveError(MapCoreError):
    """A tile archive has a valid container but a damaged tile index.

    Reported separately from FileFormatError so the user is told to obtain
    the file again rather than to choose another file type.
    """


class OutOfBoundsError(MapCoreError):
    """Coordinate or pixel index outside the raster or tile range.

    Internal only. Query paths model this case as a ``None`` result.
    """


class DegenerateTransformError(MapCoreError):
    """Affine transform with a zero (or near-zero) determinant."""
