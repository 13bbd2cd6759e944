"""
Service wiring for the broadcaster API.

All components share the one httpx.AsyncClient owned by the application
lifespan. The container is stored on app.state and handed to routes through
FastAPI dependencies.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from fastapi import Request

from broadcaster.config import Settings
from broadcaster.coordinator import BroadcastCoordinator
from broadcaster.credentials import FileCredentialStore, OAuthStateStore, TokenLifecycleManager
from broadcaster.credentials.store import CredentialStore
from broadcaster.link_preview import HttpLinkPreviewResolver, LinkPreviewResolver, NullLinkPreviewResolver
from broadcaster.media import DirectoryMediaResolver, MediaResolver
from broadcaster.platforms import build_auth_clients, build_publishers
from broadcaster.platforms.common import PlatformPublisher
from broadcaster.types.social import SocialPlatform

logger = logging.getLogger(__name__)


@dataclass
class BroadcastServices:
    """Components serving one application instance."""

    settings: Settings
    store: CredentialStore
    lifecycle: TokenLifecycleManager
    publishers: Dict[SocialPlatform, PlatformPublisher]
    coordinator: BroadcastCoordinator


def build_services(
    settings: Settings,
    http_client: httpx.AsyncClient,
    store: Optional[CredentialStore] = None,
    media: Optional[MediaResolver] = None,
    link_previews: Optional[LinkPreviewResolver] = None,
) -> BroadcastServices:
    """
    Assemble the broadcaster for the enabled platforms.

    Storage, media and preview collaborators default to the configured
    file-backed and HTTP implementations; tests pass their own.
    """
    if store is None:
        store = FileCredentialStore(settings.storage.credential_storage_dir)
    if media is None:
        media = DirectoryMediaResolver(settings.storage.media_storage_dir)
    if link_previews is None:
        if settings.publish.link_previews_enabled:
            link_previews = HttpLinkPreviewResolver(http_client)
        else:
            link_previews = NullLinkPreviewResolver()

    lifecycle = TokenLifecycleManager(
        store,
        build_auth_clients(settings, http_client),
        state_store=OAuthStateStore(),
        redirect_uri_for=settings.publish.callback_url,
    )
    publishers = build_publishers(settings, http_client, link_previews)
    coordinator = BroadcastCoordinator(
        lifecycle,
        publishers,
        media,
        max_concurrent_targets=settings.http.max_concurrent_targets,
    )

    logger.info(
        f"Broadcaster ready for platforms: {[p.value for p in publishers] or 'none'}"
    )
    return BroadcastServices(
        settings=settings,
        store=store,
        lifecycle=lifecycle,
        publishers=publishers,
        coordinator=coordinator,
    )


def get_services(request: Request) -> BroadcastServices:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services


def get_coordinator(request: Request) -> BroadcastCoordinator:
    return get_services(request).coordinator


def get_lifecycle(request: Request) -> TokenLifecycleManager:
    return get_services(request).lifecycle
