"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that configures
logging, sets up CORS middleware, maps the domain errors to HTTP status
codes, includes the layer, query and tile routers and exposes a health check
endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn mapcore.main:app --reload

    Or imported and used programmatically:
        >>> from mapcore.main import app
"""

import logging

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from mapcore.api import layers, query, tiles
from mapcore.core import config, errors
from mapcore.utils import logger as log_config

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[errors.MapCoreError], int] = {
    errors.FileAccessError: 404,
    errors.CorruptArchiveError: 409,
    errors.FileFormatError: 422,
    errors.DegenerateTransformError: 422,
    errors.OutOfBoundsError: 404,
}


async def _handle_map_core_error(
    request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Translate a MapCoreError into a JSON error response."""
    status_code = _ERROR_STATUS.get(type(exc), 500)
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return responses.JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance ready for ASGI server.

    Example:
        The app can be used with uvicorn or other ASGI servers:
            >>> app = create_app()
    """
    settings = config.get_settings()
    log_config.setup_logging(settings.log_level, json_format=settings.log_json)

    app = fastapi.FastAPI(title="Map Viewer Core", version="0.1.0")

    app.include_router(layers.router)
    app.include_router(query.router)
    app.include_router(tiles.router)

    app.add_exception_handler(errors.MapCoreError, _handle_map_core_error)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    logger.info("Application created (data dir: %s)", settings.data_dir)
    return app


app = create_app()
