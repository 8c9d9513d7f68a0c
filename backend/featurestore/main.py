"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that configures
structured logging, sets up CORS middleware, includes the dataset API router,
and exposes a health check endpoint for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn featurestore.main:app --reload

    Or imported and used programmatically:
        >>> from featurestore.main import create_app
        >>> app = create_app()
"""

import fastapi
from fastapi.middleware import cors

from featurestore.api import datasets
from featurestore.core import config
from featurestore.core.logging_config import configure_logging


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging from settings, includes the dataset router, sets up
    CORS middleware, and adds a health check endpoint.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = config.get_settings()
    configure_logging(settings.log_level)
    app = fastapi.FastAPI(title="Feature Store", version="0.1.0")

    app.include_router(datasets.router)

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

    return app


app = create_app()
