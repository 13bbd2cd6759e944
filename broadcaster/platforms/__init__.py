"""
Platform publishers.

The supported platforms form a closed set. PUBLISHERS maps each
SocialPlatform to the one class that implements it; the builders below only
instantiate the platforms enabled in the deployment settings.
"""

from typing import Dict, Iterable, Optional, Type

import httpx

from ..config import Settings
from ..link_preview import LinkPreviewResolver, NullLinkPreviewResolver
from ..oauth import AuthClient
from ..types.social import SocialPlatform
from .bluesky import BlueskyPublisher, BlueskySessionClient
from .common import OAuth2Platform, PlatformPublisher, extract_post_id, failure_from_exception
from .linkedin import LinkedInPublisher
from .mastodon import MastodonPublisher
from .twitter import TwitterPublisher

PUBLISHERS: Dict[SocialPlatform, Type[PlatformPublisher]] = {
    SocialPlatform.LINKEDIN: LinkedInPublisher,
    SocialPlatform.TWITTER: TwitterPublisher,
    SocialPlatform.MASTODON: MastodonPublisher,
    SocialPlatform.BLUESKY: BlueskyPublisher,
}


def build_auth_clients(
    settings: Settings,
    http_client: httpx.AsyncClient,
    platforms: Optional[Iterable[SocialPlatform]] = None,
) -> Dict[SocialPlatform, AuthClient]:
    """OAuth2 or session clients for the enabled platforms."""
    selected = settings.enabled_platforms if platforms is None else platforms
    return {
        platform: PUBLISHERS[platform].auth_client(settings, http_client)
        for platform in selected
    }


def build_publishers(
    settings: Settings,
    http_client: httpx.AsyncClient,
    link_previews: Optional[LinkPreviewResolver] = None,
    platforms: Optional[Iterable[SocialPlatform]] = None,
) -> Dict[SocialPlatform, PlatformPublisher]:
    """Publisher instances for the enabled platforms, sharing one HTTP client."""
    selected = settings.enabled_platforms if platforms is None else platforms
    previews = link_previews or NullLinkPreviewResolver()
    return {
        platform: PUBLISHERS[platform].from_settings(settings, http_client, previews)
        for platform in selected
    }


__all__ = [
    "PUBLISHERS",
    "PlatformPublisher",
    "OAuth2Platform",
    "BlueskyPublisher",
    "BlueskySessionClient",
    "LinkedInPublisher",
    "MastodonPublisher",
    "TwitterPublisher",
    "build_auth_clients",
    "build_publishers",
    "extract_post_id",
    "failure_from_exception",
]
