"""FastAPI application entry point for Briefly."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from briefly import __version__
from briefly.api.routes import router
from briefly.config import get_settings
from briefly.runtime import Runtime
from briefly.utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger = get_logger(__name__)
    logger.info("Briefly starting", version=__version__)
    async with Runtime.open(settings) as runtime:
        app.state.runtime = runtime
        yield
        logger.info("Briefly shutting down")
    app.state.runtime = None


app = FastAPI(
    title="Briefly",
    description="Daily personalized news briefings summarized with Gemini",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic info."""
    return {
        "name": "Briefly",
        "version": __version__,
        "docs": "/docs",
    }
