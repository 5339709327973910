from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

# Import the conversion router
from pdfconvert.router import router as convert_router

# Import service configuration
from pdfconvert.config import ServiceSettings
from pdfconvert.orchestrator import ServiceContainer

# Import centralized HTTP client lifecycle
from pdfconvert.utils.http_client import lifespan_http_clients

# Import centralized logging configuration
from pdfconvert.utils.logging_config import get_logger, setup_logging


# Set up logging
setup_logging()
logger = get_logger()


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Prebuilt collaborators. When omitted they are created from
            the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager with centralized HTTP client setup."""
        container = services
        if container is None:
            settings = ServiceSettings.from_env()
            logger.info(f"Starting PDF converter in {settings.trust_mode.value} trust mode")
            container = ServiceContainer.from_settings(settings)
        app.state.services = container

        # Use the centralized lifespan context manager for proper cleanup
        async with lifespan_http_clients(container.http_factory):
            yield

    app = FastAPI(title="PDF Converter", lifespan=lifespan)

    # Include the conversion router
    app.include_router(convert_router)

    @app.get("/ping")
    async def general_ping():
        return {"success": True, "data": "PONG!"}

    return app


app = create_app()
