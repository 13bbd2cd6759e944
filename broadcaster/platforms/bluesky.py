"""
Bluesky (AT Protocol) integration.

Accounts sign in with a handle and app password. The resulting session is
stored like an OAuth2 credential (accessJwt as the access token, refreshJwt
as the refresh token, the account DID as identity) and refreshed through
com.atproto.server.refreshSession.

Posts are app.bsky.feed.post records. Links are shortened for display and
carried as link facets; images become an app.bsky.embed.images embed, and a
link without images becomes an external card built from the link preview.
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import jwt

from ..config import Settings
from ..exceptions import UpstreamError
from ..http import bearer_headers, ensure_success, parse_json, transport_errors
from ..link_preview import LinkPreviewResolver, NullLinkPreviewResolver
from ..media import upload_concurrently
from ..oauth import PasswordSessionClient
from ..types.social import (
    Credential,
    LinkPreview,
    MediaAsset,
    NormalizedPost,
    PublishOutcome,
    PublishSuccess,
    SocialPlatform,
    ValidToken,
)
from ..utils.text import join_content, truncate_text
from .common import check_media_count, guarded, json_body

logger = logging.getLogger(__name__)

TEXT_LIMIT = 300
MAX_IMAGES = 4
LINK_DISPLAY_LENGTH = 24
LINK_SEPARATOR = "\n\n"
POST_COLLECTION = "app.bsky.feed.post"
# Access JWTs are issued for two hours
DEFAULT_SESSION_LIFETIME_SECONDS = 7200

URL_PATTERN = re.compile(r"(?<!\S)(https?://\S+)")
TAG_PATTERN = re.compile(r"(?<!\S)#([A-Za-z0-9]+)")
MENTION_PATTERN = re.compile(r"(?<!\S)@([A-Za-z0-9.-]+)")


def token_lifetime(token: str, now: float) -> int:
    """Seconds left before the JWT's exp claim, or the default lifetime."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        return max(int(claims["exp"] - now), 0)
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        return DEFAULT_SESSION_LIFETIME_SECONDS


# -----------------------------------------------------------------------------
# Rich Text
# -----------------------------------------------------------------------------


def shorten_link(url: str, max_length: int = LINK_DISPLAY_LENGTH) -> str:
    """Display form of a URL: scheme dropped, cut to max_length with '...'."""
    bare = re.sub(r"^https?://", "", url)
    if len(bare) <= max_length:
        return bare
    return bare[: max_length - 3] + "..."


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _facet(byte_start: int, byte_end: int, feature: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "index": {"byteStart": byte_start, "byteEnd": byte_end},
        "features": [feature],
    }


def build_rich_text(text: str) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Shorten links for display and attach link and hashtag facets.

    Facet offsets are UTF-8 byte offsets into the returned text, as the
    AT Protocol requires. Link facets keep the full URL.
    """
    parts: List[str] = []
    facets: List[Dict[str, Any]] = []
    offset = 0
    last = 0

    for match in URL_PATTERN.finditer(text):
        prefix = text[last:match.start()]
        parts.append(prefix)
        offset += _byte_len(prefix)

        url = match.group(1)
        display = shorten_link(url)
        facets.append(
            _facet(offset, offset + _byte_len(display), {"$type": "app.bsky.richtext.facet#link", "uri": url})
        )
        parts.append(display)
        offset += _byte_len(display)
        last = match.end()

    parts.append(text[last:])
    display_text = "".join(parts)

    for match in TAG_PATTERN.finditer(display_text):
        start = _byte_len(display_text[:match.start()])
        facets.append(
            _facet(
                start,
                start + _byte_len(match.group(0)),
                {"$type": "app.bsky.richtext.facet#tag", "tag": match.group(1)},
            )
        )

    return display_text, facets


def compose_post_text(content: str, link: Optional[str]) -> str:
    """Content plus link, with the content cut so the displayed text fits."""
    if not link:
        return truncate_text(content, TEXT_LIMIT)
    budget = TEXT_LIMIT - len(LINK_SEPARATOR) - len(shorten_link(link))
    return join_content(truncate_text(content, budget), link, LINK_SEPARATOR)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# -----------------------------------------------------------------------------
# Sessions
# -----------------------------------------------------------------------------


class BlueskySessionClient(PasswordSessionClient):
    """createSession / refreshSession / getSession against one PDS."""

    platform = SocialPlatform.BLUESKY

    def __init__(self, http_client: httpx.AsyncClient, service: str):
        self._http = http_client
        self.service = service.rstrip("/")

    async def create_session(self, user_id: str, identifier: str, password: str) -> Credential:
        with transport_errors(self.platform.value, "sign in"):
            response = await self._http.post(
                f"{self.service}/xrpc/com.atproto.server.createSession",
                json={"identifier": identifier, "password": password},
            )
        ensure_success(response, self.platform.value, "sign in")
        session = parse_json(response, self.platform.value, "sign in")
        logger.info(f"Signed in to Bluesky as {session.get('handle')}")
        return self._credential_from_session(user_id, session)

    async def refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise ValueError("credential has no refresh token")

        with transport_errors(self.platform.value, "session refresh"):
            response = await self._http.post(
                f"{self.service}/xrpc/com.atproto.server.refreshSession",
                headers=bearer_headers(credential.refresh_token),
            )
        ensure_success(response, self.platform.value, "session refresh")
        session = parse_json(response, self.platform.value, "session refresh")
        logger.info("Refreshed bluesky session")
        return self._credential_from_session(credential.user_id, session)

    async def fetch_identity(self, access_token: str) -> str:
        with transport_errors(self.platform.value, "identity lookup"):
            response = await self._http.get(
                f"{self.service}/xrpc/com.atproto.server.getSession",
                headers=bearer_headers(access_token),
            )
        ensure_success(response, self.platform.value, "identity lookup")
        did = parse_json(response, self.platform.value, "identity lookup").get("did")
        if not did:
            raise UpstreamError(
                message="bluesky session has no did",
                platform=self.platform.value,
                raw_body=response.text,
            )
        return did

    def _credential_from_session(self, user_id: str, session: Dict[str, Any]) -> Credential:
        access_jwt = session.get("accessJwt")
        did = session.get("did")
        if not access_jwt or not did:
            raise UpstreamError(
                message="bluesky session response has no accessJwt or did",
                platform=self.platform.value,
                internal_message=f"session keys: {sorted(session)}",
            )

        refresh_jwt = session.get("refreshJwt")
        now = time.time()
        return Credential(
            platform=self.platform,
            user_id=user_id,
            access_token=access_jwt,
            refresh_token=refresh_jwt,
            obtained_at=now,
            expires_in=token_lifetime(access_jwt, now),
            refresh_token_expires_in=token_lifetime(refresh_jwt, now) if refresh_jwt else None,
            identity=did,
        )


# -----------------------------------------------------------------------------
# Publisher
# -----------------------------------------------------------------------------


class BlueskyPublisher:
    """
    Creates app.bsky.feed.post records in the signed-in account's repo.

    Images are uploaded as blobs first. Bluesky allows one embed per post:
    images win over the link card.
    """

    platform = SocialPlatform.BLUESKY

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        service: str,
        app_base: str = "https://bsky.app",
        link_previews: Optional[LinkPreviewResolver] = None,
    ):
        self._http = http_client
        self.service = service.rstrip("/")
        self.app_base = app_base.rstrip("/")
        self.link_previews = link_previews or NullLinkPreviewResolver()

    @classmethod
    def auth_client(cls, settings: Settings, http_client: httpx.AsyncClient) -> BlueskySessionClient:
        return BlueskySessionClient(http_client, settings.bluesky.base_url)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        link_previews: LinkPreviewResolver,
    ) -> "BlueskyPublisher":
        return cls(
            http_client,
            settings.bluesky.base_url,
            settings.bluesky.bluesky_app_base,
            link_previews,
        )

    async def publish(
        self,
        post: NormalizedPost,
        token: ValidToken,
        assets: Sequence[MediaAsset],
    ) -> PublishOutcome:
        return await guarded(self.platform, self._publish(post, token, assets))

    async def _publish(
        self,
        post: NormalizedPost,
        token: ValidToken,
        assets: Sequence[MediaAsset],
    ) -> PublishOutcome:
        check_media_count(self.platform, assets, MAX_IMAGES)

        images = await upload_concurrently(
            self.platform.value,
            [self._upload_image(token.access_token, asset) for asset in assets],
        )

        text, facets = build_rich_text(compose_post_text(post.content, post.link))
        facets.extend(await self._mention_facets(text))

        record: Dict[str, Any] = {
            "$type": POST_COLLECTION,
            "text": text,
            "createdAt": _utc_timestamp(),
        }
        if facets:
            record["facets"] = facets
        if post.language:
            record["langs"] = [post.language]

        if images:
            record["embed"] = {"$type": "app.bsky.embed.images", "images": images}
        elif post.link:
            card = await self._external_card(token.access_token, post.link)
            if card:
                record["embed"] = card

        logger.info(f"Posting to Bluesky with {len(images)} images")
        with transport_errors(self.platform.value, "create post"):
            response = await self._http.post(
                f"{self.service}/xrpc/com.atproto.repo.createRecord",
                json={"repo": token.identity, "collection": POST_COLLECTION, "record": record},
                headers=bearer_headers(token.access_token),
            )
        ensure_success(response, self.platform.value, "create post")

        uri = parse_json(response, self.platform.value, "create post").get("uri")
        if not uri:
            raise UpstreamError(
                message="Could not determine post id from bluesky response",
                platform=self.platform.value,
                raw_body=response.text,
            )
        rkey = uri.rsplit("/", 1)[-1]
        return PublishSuccess(
            platform=self.platform,
            post_id=uri,
            url=f"{self.app_base}/profile/{token.identity}/post/{rkey}",
        )

    async def _upload_blob(self, access_token: str, content: bytes, mime_type: str) -> Dict[str, Any]:
        with transport_errors(self.platform.value, "media upload"):
            response = await self._http.post(
                f"{self.service}/xrpc/com.atproto.repo.uploadBlob",
                content=content,
                headers=bearer_headers(access_token, {"Content-Type": mime_type}),
            )
        ensure_success(response, self.platform.value, "media upload")
        blob = parse_json(response, self.platform.value, "media upload").get("blob")
        if not isinstance(blob, dict):
            raise UpstreamError(
                message="bluesky upload returned no blob",
                platform=self.platform.value,
                raw_body=response.text,
            )
        return blob

    async def _upload_image(self, access_token: str, asset: MediaAsset) -> Dict[str, Any]:
        blob = await self._upload_blob(access_token, asset.content, asset.mime_type)
        return {"alt": asset.alt_text or "", "image": blob}

    async def _external_card(self, access_token: str, link: str) -> Optional[Dict[str, Any]]:
        preview = await self.link_previews.fetch(link)
        if preview is None:
            return None

        external: Dict[str, Any] = {
            "uri": link,
            "title": preview.title or "",
            "description": preview.description or "",
        }
        thumb = await self._thumbnail(access_token, preview)
        if thumb:
            external["thumb"] = thumb
        return {"$type": "app.bsky.embed.external", "external": external}

    async def _thumbnail(self, access_token: str, preview: LinkPreview) -> Optional[Dict[str, Any]]:
        """Re-host the preview image as a blob. Best effort."""
        if not preview.image:
            return None
        try:
            response = await self._http.get(preview.image, follow_redirects=True)
            if not response.is_success:
                logger.info(f"Preview image fetch returned HTTP {response.status_code}")
                return None
            mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
            return await self._upload_blob(access_token, response.content, mime_type)
        except Exception as e:
            logger.warning(f"Skipping bluesky link thumbnail: {type(e).__name__}")
            return None

    async def _mention_facets(self, text: str) -> List[Dict[str, Any]]:
        """Facets for @handle mentions that resolve to a DID."""
        facets = []
        for match in MENTION_PATTERN.finditer(text):
            handle = match.group(1).rstrip(".")
            if "." not in handle:
                continue
            did = await self._resolve_handle(handle)
            if not did:
                continue
            start = _byte_len(text[:match.start()])
            facets.append(
                _facet(
                    start,
                    start + _byte_len("@" + handle),
                    {"$type": "app.bsky.richtext.facet#mention", "did": did},
                )
            )
        return facets

    async def _resolve_handle(self, handle: str) -> Optional[str]:
        try:
            response = await self._http.get(
                f"{self.service}/xrpc/com.atproto.identity.resolveHandle",
                params={"handle": handle},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Could not resolve bluesky handle {handle}: {type(e).__name__}")
            return None
        if response.status_code != 200:
            logger.info(f"Bluesky handle {handle} did not resolve (HTTP {response.status_code})")
            return None
        did = json_body(response).get("did")
        return did if isinstance(did, str) else None
