"""
Backend server for the broadcaster.

Publishes one post to LinkedIn, X and Mastodon on behalf of a user. This is
the main entry point that assembles the modular components from the app and
broadcaster packages.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI

from app.error_handlers import register_exception_handlers
from app.middleware import RequestLoggingMiddleware
from app.routes import health_router, oauth_router, publish_router
from app.services import build_services
from broadcaster import __version__
from broadcaster.config import Settings, get_settings
from broadcaster.http import create_http_client
from broadcaster.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the shared HTTP client for the lifetime of the application."""
    settings: Settings = app.state.settings
    http_client = create_http_client(settings.http)
    app.state.services = build_services(settings, http_client)
    logger.info("Configuration loaded", extra={"config": settings.get_config_summary()})
    try:
        yield
    finally:
        await http_client.aclose()
        logger.info("HTTP client closed")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Services are created by the lifespan; tests may assign
    app.state.services directly instead.
    """
    settings = settings or get_settings()
    setup_logging(
        service_name="broadcaster-api",
        log_level=settings.logging.log_level,
        use_json=settings.is_production or settings.logging.log_format_json,
    )

    app = FastAPI(
        title="Broadcaster API",
        description="Publish one post to several social platforms at once.",
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health checks and system status"},
            {"name": "oauth", "description": "Connecting platform accounts"},
            {"name": "publish", "description": "Broadcasting posts"},
        ],
    )
    app.state.settings = settings

    # =========================================================================
    # Exception Handlers
    # =========================================================================

    register_exception_handlers(app)

    # =========================================================================
    # Request Logging Middleware
    # =========================================================================

    if settings.logging.request_logging_enabled:
        app.add_middleware(RequestLoggingMiddleware)
        logger.info("Request logging middleware enabled")

    # =========================================================================
    # Include Routers
    # =========================================================================

    app.include_router(health_router)
    app.include_router(oauth_router)
    app.include_router(publish_router)

    return app


if __name__ == "__main__":
    load_dotenv(find_dotenv())
    uvicorn.run("server:create_app", factory=True, host="0.0.0.0", port=8000)
