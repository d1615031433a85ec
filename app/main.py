"""
FastAPI application for thousand-words.

The lifespan opens the configured index and content store through the
backend selector and closes them on shutdown.

Usage:
    uvicorn app.main:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from app.stories.routes import register_error_handlers, router as stories_router
from app.stories.services.backends import open_backends
from app.stories.services.story_service import StoryService
from thousand_core.config import Settings, settings
from thousand_core.logging import setup_logging


def create_app(config: Settings | None = None) -> FastAPI:
    """Build the application for the given settings."""
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with open_backends(config) as backends:
            app.state.backends = backends
            app.state.story_service = StoryService(backends.index, backends.store, config)
            logger.info(f"{config.SERVICE_NAME} started")
            yield
        logger.info(f"{config.SERVICE_NAME} stopped")

    app = FastAPI(
        title="Thousand Words",
        description="Publishing API for stories of 950 to 1000 words",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)

    # Mount the stories router under /stories prefix
    app.include_router(stories_router, prefix="/stories", tags=["Stories"])

    @app.get("/health")
    def health():
        """Health check endpoint with the selected backends."""
        return {
            "status": "ok",
            "service": config.SERVICE_NAME,
            "index_backend": config.INDEX_BACKEND,
            "content_backend": config.CONTENT_BACKEND,
        }

    return app


setup_logging(settings.LOG_LEVEL)
app = create_app()
