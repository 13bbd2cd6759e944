"""API routes for the broadcaster."""

from .health import router as health_router
from .oauth import router as oauth_router
from .publish import router as publish_router

__all__ = [
    "health_router",
    "oauth_router",
    "publish_router",
]
