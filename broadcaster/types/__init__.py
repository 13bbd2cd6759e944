"""
Type definitions for the broadcaster.
"""

from .social import (
    MAX_CONTENT_LENGTH,
    OAUTH_STATE_TTL_SECONDS,
    REFRESH_BUFFER_SECONDS,
    AuthorizeResponse,
    BroadcastResult,
    BroadcastStatus,
    ConnectResponse,
    Credential,
    CredentialStatus,
    FailureKind,
    LinkPreview,
    MediaAsset,
    NormalizedPost,
    OAuthState,
    PostRequest,
    PostShape,
    PublishFailure,
    PublishOutcome,
    PublishResponse,
    PublishSuccess,
    SessionLoginRequest,
    SocialPlatform,
    TargetState,
    UploadedReference,
    ValidToken,
    select_post_shape,
)

__all__ = [
    "MAX_CONTENT_LENGTH",
    "OAUTH_STATE_TTL_SECONDS",
    "REFRESH_BUFFER_SECONDS",
    "AuthorizeResponse",
    "BroadcastResult",
    "BroadcastStatus",
    "ConnectResponse",
    "Credential",
    "CredentialStatus",
    "FailureKind",
    "LinkPreview",
    "MediaAsset",
    "NormalizedPost",
    "OAuthState",
    "PostRequest",
    "PostShape",
    "PublishFailure",
    "PublishOutcome",
    "PublishResponse",
    "PublishSuccess",
    "SessionLoginRequest",
    "SocialPlatform",
    "TargetState",
    "UploadedReference",
    "ValidToken",
    "select_post_shape",
]
