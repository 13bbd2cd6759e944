"""
Mastodon API integration.

Implements OAuth 2.0 against the configured instance (tokens do not
expire), media upload through /api/v2/media and status creation.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from ..config import Settings
from ..exceptions import TransportError, UpstreamError
from ..http import bearer_headers, ensure_success, parse_json, transport_errors
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
    guarded,
    json_body,
    require_post_id,
)

logger = logging.getLogger(__name__)

TEXT_LIMIT = 500
MAX_IMAGES = 4
MEDIA_POLL_ATTEMPTS = 30
MEDIA_POLL_INTERVAL_SECONDS = 0.2
# GET /api/v1/media/:id answers with these while the file is still processing
MEDIA_PROCESSING_STATUSES = (202, 206)


def _identity_from_account(profile: Dict[str, Any]) -> Optional[str]:
    account_id = profile.get("id")
    return str(account_id) if account_id else None


class MastodonPublisher(OAuth2Platform):
    """
    Publishes statuses to one Mastodon instance.

    Large media is processed asynchronously by the instance; a 202 upload
    response is polled until the attachment is ready.
    """

    platform = SocialPlatform.MASTODON

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        host: str,
        poll_interval: float = MEDIA_POLL_INTERVAL_SECONDS,
    ):
        self._http = http_client
        self.host = host.rstrip("/")
        self.poll_interval = poll_interval

    @classmethod
    def oauth_provider(cls, settings: Settings) -> OAuthProvider:
        mastodon = settings.mastodon
        host = mastodon.base_url
        return OAuthProvider(
            platform=cls.platform,
            client_id=mastodon.mastodon_client_id or "",
            client_secret=(
                mastodon.mastodon_client_secret.get_secret_value()
                if mastodon.mastodon_client_secret
                else ""
            ),
            authorization_url=f"{host}/oauth/authorize",
            token_url=f"{host}/oauth/token",
            scopes=tuple(mastodon.mastodon_scopes.split()),
            identity_url=f"{host}/api/v1/accounts/verify_credentials",
            identity_extractor=_identity_from_account,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        link_previews: LinkPreviewResolver,
    ) -> "MastodonPublisher":
        return cls(http_client, settings.mastodon.base_url)

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

        form: Dict[str, Any] = {"status": compose_status_text(post.content, post.link, TEXT_LIMIT)}
        if media_ids:
            form["media_ids[]"] = media_ids
        if post.language:
            form["language"] = post.language

        logger.info(f"Posting status with {len(media_ids)} images")
        with transport_errors(self.platform.value, "create post"):
            response = await self._http.post(
                f"{self.host}/api/v1/statuses",
                data=form,
                headers=bearer_headers(token.access_token),
            )
        ensure_success(response, self.platform.value, "create post")

        post_id = require_post_id(response, self.platform, body_paths=[("id",)])
        return PublishSuccess(
            platform=self.platform,
            post_id=post_id,
            url=json_body(response).get("url"),
        )

    async def _upload(self, access_token: str, asset: MediaAsset) -> str:
        data = {"description": asset.alt_text} if asset.alt_text else None
        with transport_errors(self.platform.value, "media upload"):
            response = await self._http.post(
                f"{self.host}/api/v2/media",
                files={"file": (asset.handle, asset.content, asset.mime_type)},
                data=data,
                headers=bearer_headers(access_token),
            )
        ensure_success(response, self.platform.value, "media upload")
        media = parse_json(response, self.platform.value, "media upload")

        media_id = media.get("id")
        if not media_id:
            raise UpstreamError(
                message="Mastodon media upload returned no id",
                platform=self.platform.value,
                raw_body=response.text,
            )
        if response.status_code == 202:
            await self._wait_for_processing(access_token, str(media_id))
        return str(media_id)

    async def _wait_for_processing(self, access_token: str, media_id: str) -> None:
        for _ in range(MEDIA_POLL_ATTEMPTS):
            await asyncio.sleep(self.poll_interval)
            with transport_errors(self.platform.value, "media status"):
                response = await self._http.get(
                    f"{self.host}/api/v1/media/{media_id}",
                    headers=bearer_headers(access_token),
                )
            if response.status_code in MEDIA_PROCESSING_STATUSES:
                continue
            ensure_success(response, self.platform.value, "media status")
            if response.status_code != 200:
                raise UpstreamError(
                    message="Unexpected Mastodon media status response",
                    platform=self.platform.value,
                    raw_body=response.text,
                    internal_message=f"media {media_id} status answered {response.status_code}",
                )
            return

        raise TransportError(
            message="Mastodon media processing timed out",
            platform=self.platform.value,
            internal_message=f"media {media_id} still processing after {MEDIA_POLL_ATTEMPTS} polls",
        )
