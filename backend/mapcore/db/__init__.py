"""Layer records and metadata caching.

This package holds the in-memory layer repository and the metadata cache
shared by the raster query and tile services. Both are lock-guarded so they
can be used from FastAPI's worker threads.

Example:
    Use in a service or FastAPI dependency:
        >>> from mapcore.db import database
        >>> repo = database.get_layer_repository()
"""
