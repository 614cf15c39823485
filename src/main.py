"""Main FastAPI application entry point"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from src.api.errors import register_exception_handlers
from src.api.health import router as health_router
from src.api.photos import router as photos_router
from src.config import settings
from src.container import ServiceContainer, build_container

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-built service graph (tests); built from settings on
            startup when omitted

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.container = container or build_container()
        logger.info("Photo pipeline API started")
        yield
        app.state.container.shutdown(wait=False)
        logger.info("Photo pipeline API stopped")

    app = FastAPI(
        title="Photo Pipeline API",
        description="Photo upload and processing service with resilient storage and event delivery",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=3600,
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(health_router)
    app.include_router(photos_router)

    @app.get("/")
    def root():
        """Root endpoint"""
        return {
            "message": "Photo Pipeline API",
            "version": "1.0.0",
            "status": "running",
            "environment": settings.environment,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host=settings.api_host, port=settings.api_port)
