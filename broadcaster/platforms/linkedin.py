"""
LinkedIn API integration.

Implements OAuth 2.0 (OpenID Connect userinfo for the member id), the
registerUpload two-phase image upload and the UGC Posts API.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..config import Settings
from ..http import bearer_headers, ensure_success, transport_errors
from ..link_preview import LinkPreviewResolver, NullLinkPreviewResolver
from ..media import RegisterUploadProtocol, TwoPhaseUploadAdapter
from ..oauth import OAuthProvider
from ..types.social import (
    MediaAsset,
    NormalizedPost,
    PostShape,
    PublishOutcome,
    PublishSuccess,
    SocialPlatform,
    UploadedReference,
    ValidToken,
    select_post_shape,
)
from ..utils.text import truncate_text
from .common import OAuth2Platform, guarded, require_post_id

logger = logging.getLogger(__name__)

PERSON_URN_PREFIX = "urn:li:person:"
RESTLI_HEADERS = {"X-Restli-Protocol-Version": "2.0.0"}
FEEDSHARE_IMAGE_RECIPE = "urn:li:digitalmediaRecipe:feedshare-image"
UPLOAD_MECHANISM_KEY = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
POST_URL_TEMPLATE = "https://www.linkedin.com/feed/update/{post_id}"

ARTICLE_DESCRIPTION_LIMIT = 256
COMMENTARY_LIMIT = 3000


def normalize_person_urn(member_id: Optional[str]) -> Optional[str]:
    """Return urn:li:person:<id> whether given the bare id or the URN."""
    if not member_id:
        return None
    member_id = member_id.strip()
    if member_id.startswith(PERSON_URN_PREFIX):
        return member_id if len(member_id) > len(PERSON_URN_PREFIX) else None
    return f"{PERSON_URN_PREFIX}{member_id}"


def _identity_from_userinfo(profile: Dict[str, Any]) -> Optional[str]:
    return normalize_person_urn(profile.get("sub") or profile.get("id"))


# -----------------------------------------------------------------------------
# Two-phase image upload dialect
# -----------------------------------------------------------------------------


def _register_descriptor(owner: str, asset: MediaAsset) -> Dict[str, Any]:
    return {
        "registerUploadRequest": {
            "recipes": [FEEDSHARE_IMAGE_RECIPE],
            "owner": owner,
            "serviceRelationships": [
                {
                    "relationshipType": "OWNER",
                    "identifier": "urn:li:userGeneratedContent",
                }
            ],
        }
    }


def _parse_registration(data: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    value = data.get("value") or {}
    mechanism = value.get("uploadMechanism") or {}
    upload_request = mechanism.get(UPLOAD_MECHANISM_KEY) or {}
    return upload_request.get("uploadUrl"), value.get("asset")


def image_upload_protocol(api_base: str) -> RegisterUploadProtocol:
    """LinkedIn feed-share image registration."""
    return RegisterUploadProtocol(
        platform=SocialPlatform.LINKEDIN,
        registration_url=f"{api_base}/assets?action=registerUpload",
        build_descriptor=_register_descriptor,
        parse_registration=_parse_registration,
        headers=RESTLI_HEADERS,
    )


# -----------------------------------------------------------------------------
# Publisher
# -----------------------------------------------------------------------------


class LinkedInPublisher(OAuth2Platform):
    """
    Publishes member shares through the UGC Posts API.

    Images are uploaded first with the two-phase protocol. Links without
    images become ARTICLE shares with a preview title and thumbnail when
    one can be fetched.
    """

    platform = SocialPlatform.LINKEDIN

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_base: str,
        link_previews: Optional[LinkPreviewResolver] = None,
    ):
        self._http = http_client
        self.api_base = api_base.rstrip("/")
        self.link_previews = link_previews or NullLinkPreviewResolver()
        self.uploader = TwoPhaseUploadAdapter(image_upload_protocol(self.api_base), http_client)

    @classmethod
    def oauth_provider(cls, settings: Settings) -> OAuthProvider:
        linkedin = settings.linkedin
        return OAuthProvider(
            platform=cls.platform,
            client_id=linkedin.linkedin_client_id or "",
            client_secret=(
                linkedin.linkedin_client_secret.get_secret_value()
                if linkedin.linkedin_client_secret
                else ""
            ),
            authorization_url=linkedin.linkedin_authorization_url,
            token_url=linkedin.linkedin_token_url,
            scopes=tuple(linkedin.linkedin_scopes.split()),
            identity_url=f"{linkedin.linkedin_api_base.rstrip('/')}/userinfo",
            identity_extractor=_identity_from_userinfo,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        link_previews: LinkPreviewResolver,
    ) -> "LinkedInPublisher":
        return cls(http_client, settings.linkedin.linkedin_api_base, link_previews)

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
        author = normalize_person_urn(token.identity) or token.identity
        shape = select_post_shape(assets, post.link)

        share_content: Dict[str, Any] = {
            "shareCommentary": {"text": truncate_text(post.content, COMMENTARY_LIMIT)},
            "shareMediaCategory": "NONE",
        }
        if shape in (PostShape.SINGLE_IMAGE, PostShape.MULTI_IMAGE):
            uploaded = await self.uploader.upload_all(token.access_token, author, assets)
            share_content["shareMediaCategory"] = "IMAGE"
            share_content["media"] = self._image_media(uploaded)
        elif shape == PostShape.ARTICLE:
            share_content["shareMediaCategory"] = "ARTICLE"
            share_content["media"] = [await self._article_media(post)]

        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share_content},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }

        logger.info(f"Posting {shape.value} share to LinkedIn")
        with transport_errors(self.platform.value, "create post"):
            response = await self._http.post(
                f"{self.api_base}/ugcPosts",
                json=body,
                headers=bearer_headers(token.access_token, RESTLI_HEADERS),
            )
        ensure_success(response, self.platform.value, "create post")

        post_id = require_post_id(response, self.platform, header="X-RestLi-Id", body_paths=[("id",)])
        return PublishSuccess(
            platform=self.platform,
            post_id=post_id,
            url=POST_URL_TEMPLATE.format(post_id=post_id),
        )

    @staticmethod
    def _image_media(uploaded: Sequence[UploadedReference]) -> List[Dict[str, Any]]:
        media = []
        for ref in uploaded:
            item: Dict[str, Any] = {"status": "READY", "media": ref.reference}
            if ref.alt_text:
                item["description"] = {"text": ref.alt_text}
            media.append(item)
        return media

    async def _article_media(self, post: NormalizedPost) -> Dict[str, Any]:
        preview = await self.link_previews.fetch(post.link)
        item: Dict[str, Any] = {
            "status": "READY",
            "originalUrl": post.link,
            "description": {"text": truncate_text(post.content, ARTICLE_DESCRIPTION_LIMIT)},
        }
        if preview and preview.title:
            item["title"] = {"text": preview.title}
        if preview and preview.image:
            item["thumbnails"] = [{"url": preview.image}]
        return item
