"""
Shared capability protocol and helpers for the platform publishers.

Every publisher is a standalone class satisfying PlatformPublisher; they
share behavior through the helpers below rather than through a base class.
OAuth2Platform only supplies the auth client for code-flow platforms.
"""

import logging
from typing import Any, Awaitable, Dict, Iterable, Optional, Protocol, Sequence, Tuple

import httpx

from ..config import Settings
from ..exceptions import (
    BroadcasterException,
    ErrorCode,
    TransportError,
    UnauthenticatedError,
    UpstreamError,
    ValidationError,
)
from ..link_preview import LinkPreviewResolver
from ..oauth import AuthClient, OAuth2Client, OAuthProvider
from ..types.social import (
    FailureKind,
    MediaAsset,
    NormalizedPost,
    PublishFailure,
    PublishOutcome,
    PublishSuccess,
    SocialPlatform,
    ValidToken,
)
from ..utils.text import join_content, truncate_text

logger = logging.getLogger(__name__)


class PlatformPublisher(Protocol):
    """Capabilities every platform variant provides."""

    platform: SocialPlatform

    @classmethod
    def auth_client(cls, settings: Settings, http_client: httpx.AsyncClient) -> AuthClient:
        """Client that connects accounts and refreshes their credentials."""
        ...

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        link_previews: LinkPreviewResolver,
    ) -> "PlatformPublisher":
        ...

    async def publish(
        self,
        post: NormalizedPost,
        token: ValidToken,
        assets: Sequence[MediaAsset],
    ) -> PublishOutcome:
        """Create the post. Never raises; failures come back as PublishFailure."""
        ...


class OAuth2Platform:
    """Mixin for publishers whose accounts connect through the OAuth2 code flow."""

    @classmethod
    def oauth_provider(cls, settings: Settings) -> OAuthProvider:
        raise NotImplementedError

    @classmethod
    def auth_client(cls, settings: Settings, http_client: httpx.AsyncClient) -> OAuth2Client:
        return OAuth2Client(cls.oauth_provider(settings), http_client)


# -----------------------------------------------------------------------------
# Payload Helpers
# -----------------------------------------------------------------------------

# Both X and Mastodon count any URL as 23 characters
LINK_WEIGHT = 23
LINK_SEPARATOR = "\n\n"


def compose_status_text(content: str, link: Optional[str], limit: int) -> str:
    """
    Build status text with the link appended, truncating only the content.

    The link itself is never cut, so it stays clickable.
    """
    if not link:
        return truncate_text(content, limit)
    budget = limit - LINK_WEIGHT - len(LINK_SEPARATOR)
    return join_content(truncate_text(content, budget), link, LINK_SEPARATOR)


def check_media_count(platform: SocialPlatform, assets: Sequence[MediaAsset], limit: int) -> None:
    """Reject posts with more images than the platform accepts."""
    if len(assets) > limit:
        raise ValidationError(
            message=f"{platform.value} accepts at most {limit} images per post",
            field="images",
            error_code=ErrorCode.INVALID_INPUT,
            details={"count": len(assets), "max_images": limit},
        )


# -----------------------------------------------------------------------------
# Response Helpers
# -----------------------------------------------------------------------------


def extract_post_id(
    response: httpx.Response,
    header: Optional[str] = None,
    body_paths: Iterable[Tuple[str, ...]] = (),
) -> Optional[str]:
    """
    Find the platform post id, checking the header before the body.

    Args:
        response: Successful create-post response.
        header: Response header that may carry the id.
        body_paths: Key paths into the JSON body, tried in order.

    Returns:
        The id, or None when neither location has one.
    """
    if header:
        value = response.headers.get(header)
        if value and value.strip():
            return value.strip()

    paths = list(body_paths)
    if not paths:
        return None
    try:
        body = response.json()
    except ValueError:
        return None

    for path in paths:
        node: Any = body
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if node is not None and str(node).strip():
            return str(node)
    return None


def require_post_id(
    response: httpx.Response,
    platform: SocialPlatform,
    header: Optional[str] = None,
    body_paths: Iterable[Tuple[str, ...]] = (),
) -> str:
    """Like extract_post_id, but a missing id is an upstream failure."""
    post_id = extract_post_id(response, header, body_paths)
    if post_id is None:
        raise UpstreamError(
            message=f"{platform.value} accepted the post but returned no post id",
            platform=platform.value,
            raw_body=response.text,
            error_code=ErrorCode.MISSING_POST_ID,
        )
    return post_id


def json_body(response: httpx.Response) -> Dict[str, Any]:
    """Parsed JSON object body, empty dict when there is none."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# -----------------------------------------------------------------------------
# Outcome Helpers
# -----------------------------------------------------------------------------


def failure_from_exception(platform: SocialPlatform, exc: Exception) -> PublishFailure:
    """Map any exception raised while publishing to a per-target failure."""
    if isinstance(exc, ValidationError):
        kind = FailureKind.VALIDATION
    elif isinstance(exc, UnauthenticatedError):
        kind = FailureKind.UNAUTHENTICATED
    elif isinstance(exc, UpstreamError):
        return PublishFailure(
            platform=platform,
            kind=FailureKind.UPSTREAM,
            status=exc.status_code,
            message=exc.message,
            raw_body=exc.raw_body,
        )
    elif isinstance(exc, TransportError):
        kind = FailureKind.TRANSPORT
    elif isinstance(exc, BroadcasterException):
        kind = FailureKind.UNEXPECTED
    else:
        logger.exception(f"Unexpected error publishing to {platform.value}", exc_info=exc)
        return PublishFailure(
            platform=platform,
            kind=FailureKind.UNEXPECTED,
            status=500,
            message=f"Unexpected error publishing to {platform.value}",
        )

    return PublishFailure(
        platform=platform,
        kind=kind,
        status=exc.status_code,
        message=exc.message,
    )


async def guarded(platform: SocialPlatform, operation: Awaitable[PublishOutcome]) -> PublishOutcome:
    """Await a publish operation, turning exceptions into a PublishFailure."""
    try:
        return await operation
    except Exception as e:
        return failure_from_exception(platform, e)
