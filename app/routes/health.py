"""
Health check and root endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from broadcaster import __version__

from ..services import BroadcastServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Broadcaster API is running"}


@router.get(
    "/health",
    summary="System health check",
    description="""
Health check endpoint for monitoring and load balancers.

Lists the platforms this deployment publishes to.

**Authentication**: Not required.
    """,
    responses={
        200: {
            "description": "Health status retrieved",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "timestamp": "2024-01-24T12:00:00+00:00",
                        "version": "1.0.0",
                        "platforms": ["linkedin", "mastodon"],
                    }
                }
            },
        }
    },
)
async def health_check(services: BroadcastServices = Depends(get_services)) -> Dict[str, Any]:
    platforms = [p.value for p in services.publishers]
    return {
        "status": "healthy" if platforms else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "platforms": platforms,
    }
