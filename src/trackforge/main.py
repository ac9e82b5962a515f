"""FastAPI application factory and server entry point."""

import uvicorn
from fastapi import FastAPI

from trackforge import __version__
from trackforge.api.exception_handlers import register_exception_handlers
from trackforge.api.routers import api_router, health
from trackforge.config import Settings, get_settings
from trackforge.infrastructure.lifecycle import lifespan
from trackforge.infrastructure.observability import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use instead of the environment (tests pass their own)

    Returns:
        Configured FastAPI app. Services are wired when the lifespan starts.
    """
    app = FastAPI(
        title="TrackForge",
        description="AI music generation orchestration and media ingestion",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")
    app.include_router(health.router, prefix="/health", tags=["Health"])
    return app


app = create_app()


def run() -> None:
    """Run the API server with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "trackforge.main:app",
        host=settings.api.host,
        port=settings.api.port,
        log_config=None,
    )
