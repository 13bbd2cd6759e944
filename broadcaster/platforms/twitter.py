"""
X (Twitter) API integration.

Implements OAuth 2.0 with PKCE and the v2 endpoints for media upload and
tweet creation.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from ..config import Settings
from ..exceptions import UpstreamError
from ..http import bearer_headers, ensure_success, transport_errors
from ..link_preview import LinkPreviewResolver
from ..media import upload_concurrently
from ..oauth import OAuthProvider
from ..types.social import (
    MediaAsset,
    NormalizedPost,
    PublishOutcome,
    PublishSuccess,
    SocialPlatform,
    ValidToken,
)
from .common import (
    OAuth2Platform,
    check_media_count,
    compose_status_text,
    extract_post_id,
    guarded,
    require_post_id,
)

logger = logging.getLogger(__name__)

TEXT_LIMIT = 280
MAX_IMAGES = 4
ALT_TEXT_LIMIT = 1000
POST_URL_TEMPLATE = "https://x.com/i/web/status/{post_id}"


def _identity_from_me(profile: Dict[str, Any]) -> Optional[str]:
    data = profile.get("data") or {}
    user_id = data.get("id")
    return str(user_id) if user_id else None


class TwitterPublisher(OAuth2Platform):
    """
    Publishes tweets through the X API v2.

    Images go up one request each with the simple multipart upload, then
    the tweet references their media ids. Links are appended to the text.
    """

    platform = SocialPlatform.TWITTER

    def __init__(self, http_client: httpx.AsyncClient, api_base: str):
        self._http = http_client
        self.api_base = api_base.rstrip("/")

    @classmethod
    def oauth_provider(cls, settings: Settings) -> OAuthProvider:
        twitter = settings.twitter
        return OAuthProvider(
            platform=cls.platform,
            client_id=twitter.twitter_client_id or "",
            client_secret=(
                twitter.twitter_client_secret.get_secret_value()
                if twitter.twitter_client_secret
                else ""
            ),
            authorization_url=twitter.twitter_authorization_url,
            token_url=twitter.twitter_token_url,
            scopes=tuple(twitter.twitter_scopes.split()),
            identity_url=f"{twitter.twitter_api_base.rstrip('/')}/users/me",
            identity_extractor=_identity_from_me,
            use_pkce=True,
            basic_auth=True,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        link_previews: LinkPreviewResolver,
    ) -> "TwitterPublisher":
        return cls(http_client, settings.twitter.twitter_api_base)

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

        media_ids = await upload_concurrently(
            self.platform.value,
            [self._upload(token.access_token, asset) for asset in assets],
        )

        body: Dict[str, Any] = {"text": compose_status_text(post.content, post.link, TEXT_LIMIT)}
        if media_ids:
            body["media"] = {"media_ids": media_ids}

        logger.info(f"Posting tweet with {len(media_ids)} images")
        with transport_errors(self.platform.value, "create post"):
            response = await self._http.post(
                f"{self.api_base}/tweets",
                json=body,
                headers=bearer_headers(token.access_token),
            )
        ensure_success(response, self.platform.value, "create post")

        post_id = require_post_id(response, self.platform, body_paths=[("data", "id")])
        return PublishSuccess(
            platform=self.platform,
            post_id=post_id,
            url=POST_URL_TEMPLATE.format(post_id=post_id),
        )

    async def _upload(self, access_token: str, asset: MediaAsset) -> str:
        with transport_errors(self.platform.value, "media upload"):
            response = await self._http.post(
                f"{self.api_base}/media/upload",
                files={"media": (asset.handle, asset.content, asset.mime_type)},
                data={"media_category": "tweet_image"},
                headers=bearer_headers(access_token),
            )
        ensure_success(response, self.platform.value, "media upload")

        media_id = extract_post_id(response, body_paths=[("data", "id"), ("media_id_string",)])
        if media_id is None:
            raise UpstreamError(
                message="X media upload returned no media id",
                platform=self.platform.value,
                raw_body=response.text,
            )

        if asset.alt_text:
            await self._set_alt_text(access_token, media_id, asset.alt_text)
        return media_id

    async def _set_alt_text(self, access_token: str, media_id: str, alt_text: str) -> None:
        with transport_errors(self.platform.value, "media metadata"):
            response = await self._http.post(
                f"{self.api_base}/media/metadata",
                json={
                    "id": media_id,
                    "metadata": {"alt_text": {"text": alt_text[:ALT_TEXT_LIMIT]}},
                },
                headers=bearer_headers(access_token),
            )
        ensure_success(response, self.platform.value, "media metadata")
