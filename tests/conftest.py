"""
Pytest configuration and shared fixtures for broadcaster tests.

This module provides common fixtures used across all test files:
- A recording httpx transport standing in for the platform APIs
- Credential and media factories
- Settings with every platform configured
"""

import json
import os
import sys
import time
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

import httpx
import pytest

# Environment setup before any imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from broadcaster.config import (  # noqa: E402
    BlueskySettings,
    HttpSettings,
    LinkedInSettings,
    MastodonSettings,
    PublishSettings,
    Settings,
    StorageSettings,
    TwitterSettings,
)
from broadcaster.types.social import Credential, MediaAsset, SocialPlatform  # noqa: E402

LINKEDIN_API = "https://api.linkedin.com/v2"
TWITTER_API = "https://api.twitter.com/2"
MASTODON_HOST = "https://mastodon.example"
BLUESKY_HOST = "https://bsky.example"

Handler = Callable[[httpx.Request], httpx.Response]


class FakePlatformAPI:
    """
    Routes requests by method and URL (query string ignored) and records them.

    Responses queued for the same route are served in order; the last one
    keeps being served once the queue is down to it.
    """

    def __init__(self):
        self._routes: Dict[Tuple[str, str], Deque[Handler]] = defaultdict(deque)
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        status: int = 200,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        text: Optional[str] = None,
    ) -> "FakePlatformAPI":
        def handler(request: httpx.Request) -> httpx.Response:
            if json_body is not None:
                return httpx.Response(status, json=json_body, headers=headers)
            return httpx.Response(status, text=text or "", headers=headers)

        return self.add_handler(method, url, handler)

    def add_handler(self, method: str, url: str, handler: Handler) -> "FakePlatformAPI":
        self._routes[(method.upper(), url)].append(handler)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        queue = self._routes.get((request.method, url))
        if not queue:
            return httpx.Response(404, text=f"unrouted {request.method} {url}")
        handler = queue.popleft() if len(queue) > 1 else queue[0]
        return handler(request)

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method.upper()
            and f"{r.url.scheme}://{r.url.host}{r.url.path}" == url
        ]


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content.decode())


def make_credential(
    platform: SocialPlatform = SocialPlatform.LINKEDIN,
    user_id: str = "user-1",
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expires_in: Optional[int] = 3600,
    age: float = 0,
    identity: Optional[str] = "urn:li:person:abc",
    **kwargs: Any,
) -> Credential:
    return Credential(
        platform=platform,
        user_id=user_id,
        access_token=access_token,
        refresh_token=refresh_token,
        obtained_at=time.time() - age,
        expires_in=expires_in,
        identity=identity,
        **kwargs,
    )


def make_asset(handle: str = "a.png", alt_text: Optional[str] = None) -> MediaAsset:
    return MediaAsset(handle=handle, content=b"\x89PNG-" + handle.encode(), mime_type="image/png", alt_text=alt_text)


def linkedin_upload_routes(api: FakePlatformAPI, count: int = 1) -> FakePlatformAPI:
    """Queue successful register+PUT pairs for LinkedIn image uploads."""
    for i in range(count):
        api.add(
            "POST",
            f"{LINKEDIN_API}/assets",
            json_body={
                "value": {
                    "asset": f"urn:li:digitalmediaAsset:asset{i}",
                    "uploadMechanism": {
                        "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest": {
                            "uploadUrl": f"https://upload.linkedin.example/up{i}",
                        }
                    },
                }
            },
        )
        api.add("PUT", f"https://upload.linkedin.example/up{i}", status=201)
    return api


@pytest.fixture
def fake_api() -> FakePlatformAPI:
    return FakePlatformAPI()


@pytest.fixture
def http_client(fake_api: FakePlatformAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_api))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with every platform configured and storage under tmp_path."""
    return Settings(
        linkedin=LinkedInSettings(
            linkedin_client_id="li-client",
            linkedin_client_secret="li-secret",
            linkedin_api_base=LINKEDIN_API,
        ),
        twitter=TwitterSettings(
            twitter_client_id="tw-client",
            twitter_client_secret="tw-secret",
            twitter_api_base=TWITTER_API,
        ),
        mastodon=MastodonSettings(
            mastodon_host=MASTODON_HOST,
            mastodon_client_id="md-client",
            mastodon_client_secret="md-secret",
        ),
        http=HttpSettings(max_concurrent_targets=4),
        publish=PublishSettings(
            public_base_url="https://broadcaster.example",
            link_previews_enabled=False,
        ),
        storage=StorageSettings(
            credential_storage_dir=str(tmp_path / "credentials"),
            media_storage_dir=str(tmp_path / "media"),
            api_key_storage_path=str(tmp_path / "api_keys.json"),
        ),
    )


@pytest.fixture
def bluesky_settings(settings: Settings) -> Settings:
    """The standard settings with Bluesky sign-in enabled as well."""
    return settings.model_copy(
        update={"bluesky": BlueskySettings(bluesky_enabled=True, bluesky_service=BLUESKY_HOST)}
    )
