"""
Tests for the generic OAuth2 client.
"""

import base64
import hashlib
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from broadcaster.exceptions import TransportError, UpstreamError
from broadcaster.oauth import OAuth2Client, OAuthProvider, generate_pkce_pair
from broadcaster.platforms import LinkedInPublisher, MastodonPublisher, TwitterPublisher
from broadcaster.types.social import SocialPlatform

from conftest import LINKEDIN_API, TWITTER_API, make_credential

LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"


def form_of(request: httpx.Request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def test_pkce_pair_is_s256():
    verifier, challenge = generate_pkce_pair()
    expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).decode().rstrip("=")
    assert challenge == expected
    assert "=" not in challenge


def test_linkedin_authorization_url(settings, http_client):
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    url = client.authorization_url("https://cb.example/api/linkedin/callback", state="xyz")

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert parsed.netloc == "www.linkedin.com"
    assert params["response_type"] == ["code"]
    assert params["client_id"] == ["li-client"]
    assert params["redirect_uri"] == ["https://cb.example/api/linkedin/callback"]
    assert params["scope"] == ["openid profile w_member_social"]
    assert params["state"] == ["xyz"]
    assert "code_challenge" not in params


def test_twitter_authorization_url_has_pkce(settings, http_client):
    client = OAuth2Client(TwitterPublisher.oauth_provider(settings), http_client)
    assert client.uses_pkce

    params = parse_qs(urlparse(client.authorization_url("https://cb", "s", code_challenge="abc")).query)

    assert params["code_challenge"] == ["abc"]
    assert params["code_challenge_method"] == ["S256"]


def test_mastodon_provider_uses_instance(settings):
    provider = MastodonPublisher.oauth_provider(settings)
    assert provider.authorization_url == "https://mastodon.example/oauth/authorize"
    assert provider.token_url == "https://mastodon.example/oauth/token"


@pytest.mark.asyncio
async def test_exchange_code_posts_form(settings, http_client, fake_api):
    fake_api.add(
        "POST",
        LINKEDIN_TOKEN_URL,
        json_body={"access_token": "at", "expires_in": 5184000, "refresh_token": "rt", "scope": "openid"},
    )
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    cred = await client.exchange_code("user-1", "the-code", "https://cb")

    form = form_of(fake_api.requests[0])
    assert form == {
        "grant_type": "authorization_code",
        "code": "the-code",
        "redirect_uri": "https://cb",
        "client_id": "li-client",
        "client_secret": "li-secret",
    }
    assert cred.access_token == "at"
    assert cred.refresh_token == "rt"
    assert cred.expires_in == 5184000
    assert cred.user_id == "user-1"
    assert cred.platform == SocialPlatform.LINKEDIN


@pytest.mark.asyncio
async def test_twitter_token_request_uses_basic_auth(settings, http_client, fake_api):
    fake_api.add("POST", TWITTER_TOKEN_URL, json_body={"access_token": "at", "expires_in": 7200})
    client = OAuth2Client(TwitterPublisher.oauth_provider(settings), http_client)

    await client.exchange_code("u", "code", "https://cb", code_verifier="verifier")

    request = fake_api.requests[0]
    expected = base64.b64encode(b"tw-client:tw-secret").decode()
    assert request.headers["Authorization"] == f"Basic {expected}"
    form = form_of(request)
    assert form["code_verifier"] == "verifier"
    assert "client_secret" not in form


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_not_rotated(settings, http_client, fake_api):
    fake_api.add("POST", LINKEDIN_TOKEN_URL, json_body={"access_token": "new", "expires_in": 3600})
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)
    old = make_credential(age=4000, refresh_token_expires_in=31536000, scope="openid")

    cred = await client.refresh(old)

    assert form_of(fake_api.requests[0])["grant_type"] == "refresh_token"
    assert form_of(fake_api.requests[0])["refresh_token"] == "refresh-1"
    assert cred.access_token == "new"
    assert cred.refresh_token == "refresh-1"
    assert cred.refresh_token_expires_in == 31536000
    assert cred.scope == "openid"
    assert cred.identity == old.identity
    assert cred.obtained_at > old.obtained_at
    assert not cred.is_expired()


@pytest.mark.asyncio
async def test_refresh_uses_rotated_token(settings, http_client, fake_api):
    fake_api.add(
        "POST",
        LINKEDIN_TOKEN_URL,
        json_body={"access_token": "new", "expires_in": 3600, "refresh_token": "refresh-2"},
    )
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    cred = await client.refresh(make_credential(age=4000))

    assert cred.refresh_token == "refresh-2"


@pytest.mark.asyncio
async def test_token_endpoint_rejection_is_upstream_error(settings, http_client, fake_api):
    fake_api.add("POST", LINKEDIN_TOKEN_URL, status=400, json_body={"error": "invalid_grant"})
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    with pytest.raises(UpstreamError) as ctx:
        await client.refresh(make_credential(age=4000))

    assert ctx.value.status_code == 400
    assert "invalid_grant" in ctx.value.raw_body


@pytest.mark.asyncio
async def test_token_response_without_access_token(settings, http_client, fake_api):
    fake_api.add("POST", LINKEDIN_TOKEN_URL, json_body={"expires_in": 3600})
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    with pytest.raises(UpstreamError):
        await client.exchange_code("u", "code", "https://cb")


@pytest.mark.asyncio
async def test_network_failure_is_transport_error(settings):
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(boom))
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    with pytest.raises(TransportError) as ctx:
        await client.exchange_code("u", "code", "https://cb")
    assert ctx.value.status_code == 500


@pytest.mark.asyncio
async def test_linkedin_identity_is_normalized(settings, http_client, fake_api):
    fake_api.add("GET", f"{LINKEDIN_API}/userinfo", json_body={"sub": "abc123", "name": "A"})
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    assert await client.fetch_identity("at") == "urn:li:person:abc123"
    assert fake_api.requests[0].headers["Authorization"] == "Bearer at"


@pytest.mark.asyncio
async def test_twitter_identity(settings, http_client, fake_api):
    fake_api.add("GET", f"{TWITTER_API}/users/me", json_body={"data": {"id": "42", "username": "me"}})
    client = OAuth2Client(TwitterPublisher.oauth_provider(settings), http_client)

    assert await client.fetch_identity("at") == "42"


@pytest.mark.asyncio
async def test_profile_without_id_is_upstream_error(settings, http_client, fake_api):
    fake_api.add("GET", f"{LINKEDIN_API}/userinfo", json_body={"name": "A"})
    client = OAuth2Client(LinkedInPublisher.oauth_provider(settings), http_client)

    with pytest.raises(UpstreamError):
        await client.fetch_identity("at")


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_is_a_programming_error(http_client):
    provider = OAuthProvider(
        platform=SocialPlatform.LINKEDIN,
        client_id="c",
        client_secret="s",
        authorization_url="https://auth",
        token_url="https://token",
        scopes=(),
        identity_url="https://me",
        identity_extractor=lambda p: p.get("id"),
    )
    with pytest.raises(ValueError):
        await OAuth2Client(provider, http_client).refresh(make_credential(refresh_token=None))
