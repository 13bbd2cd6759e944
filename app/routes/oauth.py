"""
Platform account connection endpoints.

Provides API endpoints for:
- Starting the OAuth2 authorization flow
- Completing it from the platform callback
- Signing in to app-password platforms
- Reporting whether a platform is ready to publish to
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from broadcaster.credentials import TokenLifecycleManager
from broadcaster.exceptions import ErrorCode, ValidationError
from broadcaster.types.social import (
    AuthorizeResponse,
    ConnectResponse,
    CredentialStatus,
    SessionLoginRequest,
    SocialPlatform,
)
from broadcaster.utils.logging import set_platform_context

from ..auth import verify_api_key
from ..services import get_lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["oauth"])


def parse_platform(platform: str, request: Request) -> SocialPlatform:
    """Path parameter to platform, case-insensitive."""
    parsed = SocialPlatform.parse(platform)
    if parsed is None:
        raise ValidationError(
            message=f"Unknown platform: {platform}",
            field="platform",
            value=platform,
            error_code=ErrorCode.INVALID_INPUT,
        )
    set_platform_context(parsed.value)
    request.state.oauth_platform = parsed.value
    return parsed


@router.get(
    "/{platform}/authorize",
    response_model=AuthorizeResponse,
    responses={
        400: {"description": "Unknown platform"},
        503: {"description": "Platform not configured"},
    },
)
async def authorize(
    platform: SocialPlatform = Depends(parse_platform),
    user_id: str = Depends(verify_api_key),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle),
) -> AuthorizeResponse:
    """
    Start OAuth flow to connect a platform account.

    Returns an authorization URL that the user should be redirected to.
    """
    return lifecycle.authorize(user_id, platform)


@router.get(
    "/{platform}/callback",
    response_model=ConnectResponse,
    responses={
        400: {"description": "Invalid state, denied authorization or missing code"},
        503: {"description": "Platform not configured"},
    },
)
async def callback(
    platform: SocialPlatform = Depends(parse_platform),
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    user_id: str = Depends(verify_api_key),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle),
) -> ConnectResponse:
    """
    OAuth callback: exchange the code and store the credential.
    """
    credential = await lifecycle.connect(
        user_id,
        platform,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )
    return ConnectResponse(
        platform=platform,
        connected_at=credential.obtained_at_datetime,
    )


@router.post(
    "/{platform}/connect",
    response_model=ConnectResponse,
    responses={
        400: {"description": "Platform connects through OAuth instead"},
        401: {"description": "Identifier or app password rejected"},
        503: {"description": "Platform not configured"},
    },
)
async def connect_with_password(
    login: SessionLoginRequest,
    platform: SocialPlatform = Depends(parse_platform),
    user_id: str = Depends(verify_api_key),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle),
) -> ConnectResponse:
    """
    Sign in to an app-password platform (Bluesky) and store the session.
    """
    credential = await lifecycle.sign_in(
        user_id,
        platform,
        login.identifier,
        login.password.get_secret_value(),
    )
    return ConnectResponse(
        platform=platform,
        connected_at=credential.obtained_at_datetime,
    )


@router.get(
    "/{platform}/status",
    response_model=CredentialStatus,
    responses={400: {"description": "Unknown platform"}},
)
async def credential_status(
    platform: SocialPlatform = Depends(parse_platform),
    user_id: str = Depends(verify_api_key),
    lifecycle: TokenLifecycleManager = Depends(get_lifecycle),
) -> CredentialStatus:
    """Whether the user can publish to the platform right now."""
    return await lifecycle.status(user_id, platform)
