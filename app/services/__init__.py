"""Services for the broadcaster API."""

from .broadcast import (
    BroadcastServices,
    build_services,
    get_coordinator,
    get_lifecycle,
    get_services,
)

__all__ = [
    "BroadcastServices",
    "build_services",
    "get_coordinator",
    "get_lifecycle",
    "get_services",
]
