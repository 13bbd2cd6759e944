"""
Tests for the LinkedIn, X, Mastodon and Bluesky publishers and their shared helpers.
"""

import time
import unittest
from unittest.mock import AsyncMock

import httpx
import jwt
import pytest

from broadcaster.exceptions import (
    BroadcasterException,
    ErrorCode,
    TransportError,
    UnauthenticatedError,
    UpstreamError,
    ValidationError,
)
from broadcaster.platforms import (
    PUBLISHERS,
    BlueskyPublisher,
    BlueskySessionClient,
    LinkedInPublisher,
    MastodonPublisher,
    TwitterPublisher,
)
from broadcaster.platforms.bluesky import (
    DEFAULT_SESSION_LIFETIME_SECONDS,
    build_rich_text,
    shorten_link,
    token_lifetime,
)
from broadcaster.platforms.common import (
    LINK_WEIGHT,
    compose_status_text,
    extract_post_id,
    failure_from_exception,
    require_post_id,
)
from broadcaster.platforms.linkedin import normalize_person_urn
from broadcaster.types.social import (
    FailureKind,
    LinkPreview,
    NormalizedPost,
    PublishFailure,
    PublishSuccess,
    SocialPlatform,
    ValidToken,
)

from conftest import (
    BLUESKY_HOST,
    LINKEDIN_API,
    MASTODON_HOST,
    TWITTER_API,
    linkedin_upload_routes,
    make_asset,
    make_credential,
    request_json,
)

LINKEDIN_TOKEN = ValidToken(access_token="li-token", identity="urn:li:person:abc")


def post(content="Hello", link=None, images=()):
    return NormalizedPost(content=content, link=link, images=tuple(images))


# =============================================================================
# Shared helpers
# =============================================================================


class TestExtractPostId(unittest.TestCase):
    def test_header_wins_over_body(self):
        response = httpx.Response(201, headers={"X-RestLi-Id": "urn:li:share:1"}, json={"id": "other"})
        self.assertEqual(extract_post_id(response, "X-RestLi-Id", [("id",)]), "urn:li:share:1")

    def test_body_fallback(self):
        response = httpx.Response(201, json={"id": "urn:li:share:2"})
        self.assertEqual(extract_post_id(response, "X-RestLi-Id", [("id",)]), "urn:li:share:2")

    def test_nested_path(self):
        response = httpx.Response(201, json={"data": {"id": 123}})
        self.assertEqual(extract_post_id(response, body_paths=[("data", "id")]), "123")

    def test_neither(self):
        response = httpx.Response(201, text="")
        self.assertIsNone(extract_post_id(response, "X-RestLi-Id", [("id",)]))


class TestComposeStatusText(unittest.TestCase):
    def test_fits(self):
        self.assertEqual(compose_status_text("Hi", "https://e.com", 280), "Hi\n\nhttps://e.com")

    def test_content_truncated_link_kept(self):
        link = "https://example.com/" + "a" * 100
        text = compose_status_text("x" * 400, link, 280)
        self.assertTrue(text.endswith("\n\n" + link))
        content = text[: -len("\n\n" + link)]
        self.assertEqual(len(content), 280 - LINK_WEIGHT - 2)
        self.assertTrue(content.endswith("..."))

    def test_no_link(self):
        self.assertEqual(len(compose_status_text("y" * 600, None, 500)), 500)


class TestFailureFromException(unittest.TestCase):
    def test_kinds(self):
        platform = SocialPlatform.LINKEDIN
        cases = [
            (ValidationError("bad"), FailureKind.VALIDATION, 400),
            (UnauthenticatedError(platform="linkedin"), FailureKind.UNAUTHENTICATED, 401),
            (UpstreamError(upstream_status=429, raw_body="slow down"), FailureKind.UPSTREAM, 429),
            (TransportError(platform="linkedin"), FailureKind.TRANSPORT, 500),
            (BroadcasterException("odd"), FailureKind.UNEXPECTED, 500),
            (RuntimeError("boom"), FailureKind.UNEXPECTED, 500),
        ]
        for exc, kind, status in cases:
            failure = failure_from_exception(platform, exc)
            self.assertEqual((failure.kind, failure.status), (kind, status), exc)

    def test_upstream_keeps_raw_body(self):
        failure = failure_from_exception(SocialPlatform.TWITTER, UpstreamError(upstream_status=403, raw_body="{}"))
        self.assertEqual(failure.raw_body, "{}")


def test_registry_is_closed_set():
    assert set(PUBLISHERS) == set(SocialPlatform)


def test_normalize_person_urn():
    assert normalize_person_urn("abc") == "urn:li:person:abc"
    assert normalize_person_urn("urn:li:person:abc") == "urn:li:person:abc"
    assert normalize_person_urn("urn:li:person:") is None
    assert normalize_person_urn(None) is None


# =============================================================================
# LinkedIn
# =============================================================================


class TestLinkedInPublisher:
    @pytest.mark.asyncio
    async def test_text_post(self, http_client, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/ugcPosts", status=201, headers={"X-RestLi-Id": "urn:li:share:7"})
        publisher = LinkedInPublisher(http_client, LINKEDIN_API)

        outcome = await publisher.publish(post("Hello"), LINKEDIN_TOKEN, [])

        assert outcome == PublishSuccess(
            platform=SocialPlatform.LINKEDIN,
            post_id="urn:li:share:7",
            url="https://www.linkedin.com/feed/update/urn:li:share:7",
        )
        request = fake_api.requests[0]
        assert request.headers["X-Restli-Protocol-Version"] == "2.0.0"
        assert request.headers["Authorization"] == "Bearer li-token"
        body = request_json(request)
        assert body["author"] == "urn:li:person:abc"
        share = body["specificContent"]["com.linkedin.ugc.ShareContent"]
        assert share["shareCommentary"] == {"text": "Hello"}
        assert share["shareMediaCategory"] == "NONE"

    @pytest.mark.asyncio
    async def test_article_post_with_preview(self, http_client, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/ugcPosts", status=201, json_body={"id": "urn:li:share:8"})
        previews = AsyncMock()
        previews.fetch.return_value = LinkPreview(
            url="https://blog.example/p", title="A post", image="https://blog.example/i.png"
        )
        publisher = LinkedInPublisher(http_client, LINKEDIN_API, previews)

        outcome = await publisher.publish(post("z" * 400, link="https://blog.example/p"), LINKEDIN_TOKEN, [])

        assert outcome.post_id == "urn:li:share:8"
        share = request_json(fake_api.requests[0])["specificContent"]["com.linkedin.ugc.ShareContent"]
        assert share["shareMediaCategory"] == "ARTICLE"
        media = share["media"][0]
        assert media["originalUrl"] == "https://blog.example/p"
        assert media["title"] == {"text": "A post"}
        assert media["thumbnails"] == [{"url": "https://blog.example/i.png"}]
        assert len(media["description"]["text"]) == 256

    @pytest.mark.asyncio
    async def test_multi_image_post(self, http_client, fake_api):
        linkedin_upload_routes(fake_api, count=2)
        fake_api.add("POST", f"{LINKEDIN_API}/ugcPosts", status=201, headers={"X-RestLi-Id": "urn:li:share:9"})
        publisher = LinkedInPublisher(http_client, LINKEDIN_API)
        assets = [make_asset("a.png", alt_text="first"), make_asset("b.png")]

        outcome = await publisher.publish(post(images=["a.png", "b.png"], link="https://x.example"), LINKEDIN_TOKEN, assets)

        assert isinstance(outcome, PublishSuccess)
        create = fake_api.calls("POST", f"{LINKEDIN_API}/ugcPosts")[0]
        share = request_json(create)["specificContent"]["com.linkedin.ugc.ShareContent"]
        assert share["shareMediaCategory"] == "IMAGE"
        assert len(share["media"]) == 2
        assert all(m["media"].startswith("urn:li:digitalmediaAsset:") for m in share["media"])

    @pytest.mark.asyncio
    async def test_upload_403_fails_target_without_posting(self, http_client, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/assets", status=403, json_body={"message": "denied"})
        publisher = LinkedInPublisher(http_client, LINKEDIN_API)

        outcome = await publisher.publish(post(images=["a.png"]), LINKEDIN_TOKEN, [make_asset()])

        assert isinstance(outcome, PublishFailure)
        assert outcome.kind == FailureKind.UPSTREAM
        assert outcome.status == 403
        assert "denied" in outcome.raw_body
        assert fake_api.calls("POST", f"{LINKEDIN_API}/ugcPosts") == []

    @pytest.mark.asyncio
    async def test_missing_post_id_fails_closed(self, http_client, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/ugcPosts", status=201, text="")
        publisher = LinkedInPublisher(http_client, LINKEDIN_API)

        outcome = await publisher.publish(post(), LINKEDIN_TOKEN, [])

        assert isinstance(outcome, PublishFailure)
        assert outcome.kind == FailureKind.UPSTREAM
        assert outcome.status == 502

    @pytest.mark.asyncio
    async def test_bare_member_id_is_normalized(self, http_client, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/ugcPosts", status=201, headers={"X-RestLi-Id": "urn:li:share:1"})
        publisher = LinkedInPublisher(http_client, LINKEDIN_API)

        await publisher.publish(post(), ValidToken(access_token="t", identity="abc"), [])

        assert request_json(fake_api.requests[0])["author"] == "urn:li:person:abc"


# =============================================================================
# X (Twitter)
# =============================================================================


class TestTwitterPublisher:
    token = ValidToken(access_token="tw-token", identity="42")

    @pytest.mark.asyncio
    async def test_text_post_with_link(self, http_client, fake_api):
        fake_api.add("POST", f"{TWITTER_API}/tweets", status=201, json_body={"data": {"id": "1001", "text": "x"}})
        publisher = TwitterPublisher(http_client, TWITTER_API)

        outcome = await publisher.publish(post("Hello", link="https://e.com"), self.token, [])

        assert outcome.post_id == "1001"
        assert outcome.url == "https://x.com/i/web/status/1001"
        assert request_json(fake_api.requests[0]) == {"text": "Hello\n\nhttps://e.com"}

    @pytest.mark.asyncio
    async def test_images_uploaded_with_alt_text(self, http_client, fake_api):
        fake_api.add("POST", f"{TWITTER_API}/media/upload", json_body={"data": {"id": "m1"}})
        fake_api.add("POST", f"{TWITTER_API}/media/metadata", json_body={})
        fake_api.add("POST", f"{TWITTER_API}/tweets", status=201, json_body={"data": {"id": "1002"}})
        publisher = TwitterPublisher(http_client, TWITTER_API)

        outcome = await publisher.publish(post(images=["a.png"]), self.token, [make_asset(alt_text="cat")])

        assert outcome.post_id == "1002"
        metadata = request_json(fake_api.calls("POST", f"{TWITTER_API}/media/metadata")[0])
        assert metadata == {"id": "m1", "metadata": {"alt_text": {"text": "cat"}}}
        tweet = request_json(fake_api.calls("POST", f"{TWITTER_API}/tweets")[0])
        assert tweet["media"] == {"media_ids": ["m1"]}

    @pytest.mark.asyncio
    async def test_too_many_images_is_validation_failure(self, http_client, fake_api):
        publisher = TwitterPublisher(http_client, TWITTER_API)
        assets = [make_asset(f"{i}.png") for i in range(5)]

        outcome = await publisher.publish(post(images=[a.handle for a in assets]), self.token, assets)

        assert outcome.kind == FailureKind.VALIDATION
        assert outcome.status == 400
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, http_client, fake_api):
        fake_api.add("POST", f"{TWITTER_API}/tweets", status=429, json_body={"title": "Too Many Requests"})
        publisher = TwitterPublisher(http_client, TWITTER_API)

        outcome = await publisher.publish(post(), self.token, [])

        assert outcome.status == 429
        assert "Too Many Requests" in outcome.raw_body

    @pytest.mark.asyncio
    async def test_network_error_is_transport_failure(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        publisher = TwitterPublisher(httpx.AsyncClient(transport=httpx.MockTransport(boom)), TWITTER_API)

        outcome = await publisher.publish(post(), self.token, [])

        assert outcome.kind == FailureKind.TRANSPORT
        assert outcome.status == 500


# =============================================================================
# Mastodon
# =============================================================================


class TestMastodonPublisher:
    token = ValidToken(access_token="md-token", identity="7")

    @pytest.mark.asyncio
    async def test_status_with_language(self, http_client, fake_api):
        fake_api.add(
            "POST",
            f"{MASTODON_HOST}/api/v1/statuses",
            json_body={"id": "555", "url": "https://mastodon.example/@me/555"},
        )
        publisher = MastodonPublisher(http_client, MASTODON_HOST)

        outcome = await publisher.publish(
            NormalizedPost(content="Hallo", language="de"), self.token, []
        )

        assert outcome == PublishSuccess(SocialPlatform.MASTODON, "555", "https://mastodon.example/@me/555")
        form = fake_api.requests[0].content.decode()
        assert "status=Hallo" in form
        assert "language=de" in form

    @pytest.mark.asyncio
    async def test_media_processing_is_awaited(self, http_client, fake_api):
        fake_api.add("POST", f"{MASTODON_HOST}/api/v2/media", status=202, json_body={"id": "m9"})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=202, json_body={"id": "m9"})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=200, json_body={"id": "m9"})
        fake_api.add("POST", f"{MASTODON_HOST}/api/v1/statuses", json_body={"id": "556"})
        publisher = MastodonPublisher(http_client, MASTODON_HOST, poll_interval=0)

        outcome = await publisher.publish(post(images=["a.png"]), self.token, [make_asset(alt_text="cat")])

        assert outcome.post_id == "556"
        status_form = fake_api.calls("POST", f"{MASTODON_HOST}/api/v1/statuses")[0].content.decode()
        assert "media_ids%5B%5D=m9" in status_form

    @pytest.mark.asyncio
    async def test_partial_content_media_keeps_polling(self, http_client, fake_api):
        fake_api.add("POST", f"{MASTODON_HOST}/api/v2/media", status=202, json_body={"id": "m9"})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=206, json_body={"id": "m9", "url": None})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=206, json_body={"id": "m9", "url": None})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=200, json_body={"id": "m9"})
        fake_api.add("POST", f"{MASTODON_HOST}/api/v1/statuses", json_body={"id": "557"})
        publisher = MastodonPublisher(http_client, MASTODON_HOST, poll_interval=0)

        outcome = await publisher.publish(post(images=["a.png"]), self.token, [make_asset()])

        assert outcome.post_id == "557"
        assert len(fake_api.calls("GET", f"{MASTODON_HOST}/api/v1/media/m9")) == 3

    @pytest.mark.asyncio
    async def test_unexpected_media_status_fails_closed(self, http_client, fake_api):
        fake_api.add("POST", f"{MASTODON_HOST}/api/v2/media", status=202, json_body={"id": "m9"})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=204)
        publisher = MastodonPublisher(http_client, MASTODON_HOST, poll_interval=0)

        outcome = await publisher.publish(post(images=["a.png"]), self.token, [make_asset()])

        assert outcome.kind == FailureKind.UPSTREAM
        assert fake_api.calls("POST", f"{MASTODON_HOST}/api/v1/statuses") == []

    @pytest.mark.asyncio
    async def test_media_still_processing_times_out(self, http_client, fake_api):
        fake_api.add("POST", f"{MASTODON_HOST}/api/v2/media", status=202, json_body={"id": "m9"})
        fake_api.add("GET", f"{MASTODON_HOST}/api/v1/media/m9", status=202, json_body={"id": "m9"})
        publisher = MastodonPublisher(http_client, MASTODON_HOST, poll_interval=0)

        outcome = await publisher.publish(post(images=["a.png"]), self.token, [make_asset()])

        assert outcome.kind == FailureKind.TRANSPORT
        assert fake_api.calls("POST", f"{MASTODON_HOST}/api/v1/statuses") == []

    @pytest.mark.asyncio
    async def test_unauthorized(self, http_client, fake_api):
        fake_api.add("POST", f"{MASTODON_HOST}/api/v1/statuses", status=401, json_body={"error": "The access token is invalid"})
        publisher = MastodonPublisher(http_client, MASTODON_HOST)

        outcome = await publisher.publish(post(), self.token, [])

        assert outcome.kind == FailureKind.UPSTREAM
        assert outcome.status == 401


def test_error_code_of_missing_post_id():
    response = httpx.Response(200, text="")

    with pytest.raises(UpstreamError) as ctx:
        require_post_id(response, SocialPlatform.MASTODON, body_paths=[("id",)])
    assert ctx.value.error_code == ErrorCode.MISSING_POST_ID


# =============================================================================
# Bluesky
# =============================================================================

BLUESKY_XRPC = f"{BLUESKY_HOST}/xrpc"
JWT_KEY = "bluesky-test-signing-key-0123456789"
BLOB = {"$type": "blob", "ref": {"$link": "bafkreiblob"}, "mimeType": "image/png", "size": 9}
POST_URI = "at://did:plc:me/app.bsky.feed.post/3kabc"


def session_jwt(lifetime):
    return jwt.encode({"exp": int(time.time()) + lifetime, "sub": "did:plc:me"}, JWT_KEY, algorithm="HS256")


class TestBlueskyRichText(unittest.TestCase):
    def test_shorten_link(self):
        self.assertEqual(shorten_link("https://e.com/a"), "e.com/a")
        self.assertEqual(shorten_link("https://blog.example/posts/a-very-long-slug"), "blog.example/posts/a-...")

    def test_link_facet_offsets_are_utf8_bytes(self):
        url = "https://blog.example/posts/a-very-long-slug"
        text, facets = build_rich_text(f"Café\n\n{url}")

        self.assertEqual(text, "Café\n\nblog.example/posts/a-...")
        self.assertEqual(
            facets,
            [
                {
                    "index": {"byteStart": 7, "byteEnd": 31},
                    "features": [{"$type": "app.bsky.richtext.facet#link", "uri": url}],
                }
            ],
        )

    def test_hashtag_facet(self):
        text, facets = build_rich_text("Café #news")

        self.assertEqual(text, "Café #news")
        self.assertEqual(facets[0]["index"], {"byteStart": 6, "byteEnd": 11})
        self.assertEqual(facets[0]["features"], [{"$type": "app.bsky.richtext.facet#tag", "tag": "news"}])

    def test_plain_text_has_no_facets(self):
        self.assertEqual(build_rich_text("just words"), ("just words", []))

    def test_token_lifetime_read_from_exp(self):
        now = time.time()
        token = jwt.encode({"exp": int(now) + 600}, JWT_KEY, algorithm="HS256")
        expired = jwt.encode({"exp": int(now) - 60}, JWT_KEY, algorithm="HS256")

        self.assertIn(token_lifetime(token, now), (599, 600))
        self.assertEqual(token_lifetime(expired, now), 0)
        self.assertEqual(token_lifetime("not-a-jwt", now), DEFAULT_SESSION_LIFETIME_SECONDS)


class TestBlueskyPublisher:
    token = ValidToken(access_token="bsky-access", identity="did:plc:me")

    @pytest.mark.asyncio
    async def test_text_post_with_link(self, http_client, fake_api):
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI, "cid": "bafy"})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)

        outcome = await publisher.publish(
            NormalizedPost(content="Read this", link="https://e.com/a", language="en"), self.token, []
        )

        assert outcome == PublishSuccess(
            SocialPlatform.BLUESKY, POST_URI, "https://bsky.app/profile/did:plc:me/post/3kabc"
        )
        call = fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0]
        assert call.headers["Authorization"] == "Bearer bsky-access"
        body = request_json(call)
        assert body["repo"] == "did:plc:me"
        assert body["collection"] == "app.bsky.feed.post"
        record = body["record"]
        assert record["text"] == "Read this\n\ne.com/a"
        assert record["langs"] == ["en"]
        assert record["facets"][0]["features"][0]["uri"] == "https://e.com/a"
        assert record["createdAt"].endswith("Z")
        assert "embed" not in record

    @pytest.mark.asyncio
    async def test_images_uploaded_as_blobs(self, http_client, fake_api):
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.uploadBlob", json_body={"blob": BLOB})
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)
        asset = make_asset(alt_text="cat")

        outcome = await publisher.publish(post(images=["a.png"]), self.token, [asset])

        assert outcome.post_id == POST_URI
        upload = fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.uploadBlob")[0]
        assert upload.headers["Content-Type"] == "image/png"
        assert upload.content == asset.content
        record = request_json(fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0])["record"]
        assert record["embed"] == {"$type": "app.bsky.embed.images", "images": [{"alt": "cat", "image": BLOB}]}

    @pytest.mark.asyncio
    async def test_link_without_images_gets_external_card(self, http_client, fake_api):
        link = "https://blog.example/posts/1"
        previews = AsyncMock()
        previews.fetch.return_value = LinkPreview(
            url=link, title="A post", description="Summary", image="https://blog.example/og.png"
        )
        fake_api.add_handler(
            "GET",
            "https://blog.example/og.png",
            lambda request: httpx.Response(200, content=b"thumbnail", headers={"content-type": "image/png"}),
        )
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.uploadBlob", json_body={"blob": BLOB})
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST, link_previews=previews)

        await publisher.publish(post("New article", link=link), self.token, [])

        record = request_json(fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0])["record"]
        assert record["embed"] == {
            "$type": "app.bsky.embed.external",
            "external": {"uri": link, "title": "A post", "description": "Summary", "thumb": BLOB},
        }
        previews.fetch.assert_awaited_once_with(link)

    @pytest.mark.asyncio
    async def test_card_posted_without_thumbnail_when_image_fails(self, http_client, fake_api):
        link = "https://blog.example/posts/1"
        previews = AsyncMock()
        previews.fetch.return_value = LinkPreview(url=link, title="A post", image="https://blog.example/gone.png")
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST, link_previews=previews)

        outcome = await publisher.publish(post("New article", link=link), self.token, [])

        assert outcome.is_success
        record = request_json(fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0])["record"]
        assert record["embed"]["external"] == {"uri": link, "title": "A post", "description": ""}

    @pytest.mark.asyncio
    async def test_images_win_over_link_card(self, http_client, fake_api):
        previews = AsyncMock()
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.uploadBlob", json_body={"blob": BLOB})
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST, link_previews=previews)

        await publisher.publish(post(link="https://e.com/a", images=["a.png"]), self.token, [make_asset()])

        record = request_json(fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0])["record"]
        assert record["embed"]["$type"] == "app.bsky.embed.images"
        previews.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mention_resolved_to_did(self, http_client, fake_api):
        fake_api.add("GET", f"{BLUESKY_XRPC}/com.atproto.identity.resolveHandle", json_body={"did": "did:plc:alice"})
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)

        await publisher.publish(post("Thanks @alice.bsky.social"), self.token, [])

        lookup = fake_api.calls("GET", f"{BLUESKY_XRPC}/com.atproto.identity.resolveHandle")[0]
        assert lookup.url.params["handle"] == "alice.bsky.social"
        record = request_json(fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0])["record"]
        assert record["facets"] == [
            {
                "index": {"byteStart": 7, "byteEnd": 25},
                "features": [{"$type": "app.bsky.richtext.facet#mention", "did": "did:plc:alice"}],
            }
        ]

    @pytest.mark.asyncio
    async def test_unresolved_mention_stays_plain_text(self, http_client, fake_api):
        fake_api.add("GET", f"{BLUESKY_XRPC}/com.atproto.identity.resolveHandle", status=400, json_body={"error": "InvalidRequest"})
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"uri": POST_URI})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)

        outcome = await publisher.publish(post("Thanks @nobody.example"), self.token, [])

        assert outcome.is_success
        record = request_json(fake_api.calls("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord")[0])["record"]
        assert "facets" not in record

    @pytest.mark.asyncio
    async def test_too_many_images_is_validation_failure(self, http_client, fake_api):
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)
        assets = [make_asset(f"{i}.png") for i in range(5)]

        outcome = await publisher.publish(post(images=[a.handle for a in assets]), self.token, assets)

        assert outcome.kind == FailureKind.VALIDATION
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_rejected_record(self, http_client, fake_api):
        fake_api.add(
            "POST",
            f"{BLUESKY_XRPC}/com.atproto.repo.createRecord",
            status=401,
            json_body={"error": "ExpiredToken", "message": "Token has expired"},
        )
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)

        outcome = await publisher.publish(post(), self.token, [])

        assert outcome.kind == FailureKind.UPSTREAM
        assert outcome.status == 401
        assert "ExpiredToken" in outcome.raw_body

    @pytest.mark.asyncio
    async def test_missing_uri_fails_closed(self, http_client, fake_api):
        fake_api.add("POST", f"{BLUESKY_XRPC}/com.atproto.repo.createRecord", json_body={"cid": "bafy"})
        publisher = BlueskyPublisher(http_client, BLUESKY_HOST)

        outcome = await publisher.publish(post(), self.token, [])

        assert outcome.kind == FailureKind.UPSTREAM
        assert outcome.status == 502


class TestBlueskySessionClient:
    @pytest.mark.asyncio
    async def test_create_session(self, http_client, fake_api):
        access, refresh = session_jwt(7200), session_jwt(90 * 86400)
        fake_api.add(
            "POST",
            f"{BLUESKY_XRPC}/com.atproto.server.createSession",
            json_body={"accessJwt": access, "refreshJwt": refresh, "did": "did:plc:me", "handle": "me.bsky.social"},
        )
        client = BlueskySessionClient(http_client, BLUESKY_HOST)

        credential = await client.create_session("user-1", "me.bsky.social", "app-pass")

        assert credential.platform == SocialPlatform.BLUESKY
        assert credential.user_id == "user-1"
        assert credential.access_token == access
        assert credential.refresh_token == refresh
        assert credential.identity == "did:plc:me"
        assert 7190 <= credential.expires_in <= 7200
        assert not credential.is_expired()
        assert request_json(fake_api.requests[0]) == {"identifier": "me.bsky.social", "password": "app-pass"}

    @pytest.mark.asyncio
    async def test_rejected_sign_in(self, http_client, fake_api):
        fake_api.add(
            "POST",
            f"{BLUESKY_XRPC}/com.atproto.server.createSession",
            status=401,
            json_body={"error": "AuthenticationRequired", "message": "Invalid identifier or password"},
        )
        client = BlueskySessionClient(http_client, BLUESKY_HOST)

        with pytest.raises(UpstreamError) as ctx:
            await client.create_session("user-1", "me.bsky.social", "wrong")
        assert ctx.value.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_sends_refresh_jwt(self, http_client, fake_api):
        new_access = session_jwt(7200)
        fake_api.add(
            "POST",
            f"{BLUESKY_XRPC}/com.atproto.server.refreshSession",
            json_body={"accessJwt": new_access, "refreshJwt": session_jwt(86400), "did": "did:plc:me"},
        )
        client = BlueskySessionClient(http_client, BLUESKY_HOST)
        stored = make_credential(SocialPlatform.BLUESKY, refresh_token="old-refresh", identity="did:plc:me", age=8000)

        refreshed = await client.refresh(stored)

        assert fake_api.requests[0].headers["Authorization"] == "Bearer old-refresh"
        assert refreshed.access_token == new_access
        assert refreshed.user_id == "user-1"
        assert refreshed.refresh_token != "old-refresh"

    @pytest.mark.asyncio
    async def test_fetch_identity(self, http_client, fake_api):
        fake_api.add("GET", f"{BLUESKY_XRPC}/com.atproto.server.getSession", json_body={"did": "did:plc:me"})
        client = BlueskySessionClient(http_client, BLUESKY_HOST)

        assert await client.fetch_identity("bsky-access") == "did:plc:me"
        assert fake_api.requests[0].headers["Authorization"] == "Bearer bsky-access"
