"""
Type definitions for broadcasting posts to social platforms.

Provides models for:
- The authoring request and its normalized form
- Stored OAuth2 credentials and pending authorization state
- Media assets and uploaded references
- Per-target publish outcomes and the aggregated broadcast result
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..exceptions import ErrorCode, ValidationError
from ..utils.text import cleanup_html

MAX_CONTENT_LENGTH = 1000
REFRESH_BUFFER_SECONDS = 300
OAUTH_STATE_TTL_SECONDS = 600


class SocialPlatform(str, Enum):
    """Supported publishing targets."""

    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    MASTODON = "mastodon"
    BLUESKY = "bluesky"

    @classmethod
    def parse(cls, name: str) -> Optional["SocialPlatform"]:
        """Case-insensitive lookup, None for unknown names."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


class PostShape(str, Enum):
    """Native content shape a publisher sends."""

    TEXT = "text"
    SINGLE_IMAGE = "single_image"
    MULTI_IMAGE = "multi_image"
    ARTICLE = "article"


class TargetState(str, Enum):
    """Lifecycle of one target within a broadcast."""

    PENDING = "pending"
    CREDENTIAL_INVALID = "credential_invalid"
    CREDENTIAL_REFRESHING = "credential_refreshing"
    CREDENTIAL_READY = "credential_ready"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a target failed."""

    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    UPSTREAM = "upstream"
    TRANSPORT = "transport"
    UNEXPECTED = "unexpected"


class BroadcastStatus(str, Enum):
    """Overall outcome of a broadcast."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


def select_post_shape(images: Sequence[Any], link: Optional[str]) -> PostShape:
    """
    Pick the content shape for a post.

    Images win over a link, a link wins over plain text.
    """
    if len(images) > 1:
        return PostShape.MULTI_IMAGE
    if len(images) == 1:
        return PostShape.SINGLE_IMAGE
    if link:
        return PostShape.ARTICLE
    return PostShape.TEXT


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------


class NormalizedPost(BaseModel):
    """A validated post, shared read-only by every target."""

    model_config = ConfigDict(frozen=True)

    content: str
    link: Optional[str] = None
    images: Tuple[str, ...] = ()
    language: Optional[str] = None

    @property
    def shape(self) -> PostShape:
        return select_post_shape(self.images, self.link)


class PostRequest(BaseModel):
    """Request to publish one post to one or more platforms."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    link: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Opaque media handles")
    targets: Optional[List[str]] = Field(
        default=None,
        description="Platform names; omitted means every connected platform",
    )
    language: Optional[str] = None
    cleanup_html: bool = Field(default=False, alias="cleanupHtml")

    def normalized(self) -> NormalizedPost:
        """Apply HTML cleanup and trimming without validating."""
        content = cleanup_html(self.content) if self.cleanup_html else self.content.strip()
        link = self.link.strip() if self.link and self.link.strip() else None
        images = tuple(handle for handle in self.images if handle and handle.strip())
        language = self.language.strip() if self.language and self.language.strip() else None
        return NormalizedPost(content=content, link=link, images=images, language=language)

    def validate_request(self, max_length: int = MAX_CONTENT_LENGTH) -> NormalizedPost:
        """
        Normalize and validate the request.

        Raises:
            ValidationError: If the content is blank or too long, or the
                link is not an http(s) URL.
        """
        post = self.normalized()

        if not post.content:
            raise ValidationError(
                message="Post content must not be blank",
                field="content",
                error_code=ErrorCode.MISSING_REQUIRED_FIELD,
            )
        if len(post.content) > max_length:
            raise ValidationError(
                message=f"Post content must be at most {max_length} characters",
                field="content",
                error_code=ErrorCode.CONTENT_TOO_LONG,
                details={"length": len(post.content), "max_length": max_length},
            )
        if post.link is not None:
            parsed = urlparse(post.link)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValidationError(
                    message="Link must be an http(s) URL",
                    field="link",
                    value=post.link,
                    error_code=ErrorCode.INVALID_INPUT,
                )
        return post


# -----------------------------------------------------------------------------
# Credential and OAuth Models
# -----------------------------------------------------------------------------


class Credential(BaseModel):
    """
    Access credential for one (user, platform): an OAuth2 token or a session.

    Replaced wholesale on refresh, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    platform: SocialPlatform
    user_id: str
    access_token: str
    refresh_token: Optional[str] = None
    obtained_at: float = Field(description="Epoch seconds when the token was issued")
    expires_in: Optional[int] = Field(
        default=None,
        description="Token lifetime in seconds, None for non-expiring tokens",
    )
    refresh_token_expires_in: Optional[int] = None
    scope: Optional[str] = None
    identity: Optional[str] = Field(
        default=None,
        description="Canonical platform identity of the token owner",
    )

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once the token is within the refresh buffer of its expiry."""
        if self.expires_in is None:
            return False
        now = time.time() if now is None else now
        return now - self.obtained_at >= self.expires_in - REFRESH_BUFFER_SECONDS

    @property
    def obtained_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.obtained_at, tz=timezone.utc)

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return datetime.fromtimestamp(self.obtained_at + self.expires_in, tz=timezone.utc)


class OAuthState(BaseModel):
    """Pending authorization, keyed by the state token sent to the platform."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    platform: SocialPlatform
    state: str
    redirect_uri: str
    code_verifier: Optional[str] = None
    created_at: float = Field(default_factory=time.time)

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now - self.created_at >= OAUTH_STATE_TTL_SECONDS


class CredentialStatus(BaseModel):
    """Whether a user can currently publish to a platform."""

    platform: SocialPlatform
    has_credential: bool
    usable: bool
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class ValidToken:
    """Access token plus the canonical platform identity of its owner."""

    access_token: str
    identity: str
    refreshed: bool = False


# -----------------------------------------------------------------------------
# Media Models
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MediaAsset:
    """Resolved media handle. Lives only for one broadcast."""

    handle: str
    content: bytes = field(repr=False)
    mime_type: str
    alt_text: Optional[str] = None


@dataclass(frozen=True)
class UploadedReference:
    """Platform-side media reference returned by an upload."""

    platform: SocialPlatform
    reference: str
    alt_text: Optional[str] = None


class LinkPreview(BaseModel):
    """Title and thumbnail scraped from a shared link."""

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


# -----------------------------------------------------------------------------
# Outcome Models
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class PublishSuccess:
    """Post created on the platform."""

    platform: SocialPlatform
    post_id: str
    url: Optional[str] = None

    is_success = True

    def to_response(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.post_id}
        if self.url:
            result["url"] = self.url
        return {"type": "success", "platform": self.platform.value, "result": result}


@dataclass(frozen=True)
class PublishFailure:
    """Post not created; raw_body holds the upstream response when there was one."""

    platform: SocialPlatform
    kind: FailureKind
    status: int
    message: str
    raw_body: Optional[str] = field(default=None, repr=False)

    is_success = False

    def to_response(self) -> Dict[str, Any]:
        return {
            "type": "error",
            "platform": self.platform.value,
            "kind": self.kind.value,
            "status": self.status,
            "error": self.message,
        }


PublishOutcome = Union[PublishSuccess, PublishFailure]


@dataclass
class BroadcastResult:
    """Ordered per-target outcomes of one broadcast."""

    entries: List[Tuple[SocialPlatform, PublishOutcome]] = field(default_factory=list)

    @property
    def successes(self) -> List[PublishSuccess]:
        return [o for _, o in self.entries if isinstance(o, PublishSuccess)]

    @property
    def failures(self) -> List[PublishFailure]:
        return [o for _, o in self.entries if isinstance(o, PublishFailure)]

    @property
    def status(self) -> BroadcastStatus:
        if not self.failures:
            return BroadcastStatus.SUCCEEDED
        if self.successes:
            return BroadcastStatus.PARTIAL
        return BroadcastStatus.FAILED

    @property
    def max_failure_status(self) -> Optional[int]:
        statuses = [f.status for f in self.failures]
        return max(statuses) if statuses else None

    def to_responses(self) -> List[Dict[str, Any]]:
        return [outcome.to_response() for _, outcome in self.entries]


# -----------------------------------------------------------------------------
# API Response Models
# -----------------------------------------------------------------------------


class AuthorizeResponse(BaseModel):
    """Where to send the user to grant access."""

    authorization_url: str
    state: str


class SessionLoginRequest(BaseModel):
    """Identifier and app password for platforms that sign in without a redirect."""

    identifier: str = Field(min_length=1, description="Handle or email of the account")
    password: SecretStr = Field(description="App password, used once and never stored")


class ConnectResponse(BaseModel):
    """Result of connecting a platform account."""

    success: bool = True
    platform: SocialPlatform
    connected_at: datetime


class PublishResponse(BaseModel):
    """Body returned when every target succeeded."""

    success: bool = True
    status: BroadcastStatus
    results: List[Dict[str, Any]]
