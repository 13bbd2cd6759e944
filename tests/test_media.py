"""
Tests for media resolution and the two-phase upload adapter.
"""

import json

import httpx
import pytest

from broadcaster.exceptions import ErrorCode, TransportError, UpstreamError, ValidationError
from broadcaster.media import (
    DirectoryMediaResolver,
    StaticMediaResolver,
    TwoPhaseUploadAdapter,
    upload_concurrently,
)
from broadcaster.platforms.linkedin import RESTLI_HEADERS, image_upload_protocol
from broadcaster.types.social import SocialPlatform

from conftest import LINKEDIN_API, linkedin_upload_routes, make_asset, request_json

OWNER = "urn:li:person:abc"


@pytest.fixture
def adapter(http_client):
    return TwoPhaseUploadAdapter(image_upload_protocol(LINKEDIN_API), http_client)


class TestTwoPhaseUpload:
    @pytest.mark.asyncio
    async def test_register_then_put(self, adapter, fake_api):
        linkedin_upload_routes(fake_api)
        asset = make_asset(alt_text="A cat")

        ref = await adapter.upload("token", OWNER, asset)

        assert ref.platform == SocialPlatform.LINKEDIN
        assert ref.reference == "urn:li:digitalmediaAsset:asset0"
        assert ref.alt_text == "A cat"

        register, put = fake_api.requests
        assert register.method == "POST"
        assert register.url.params["action"] == "registerUpload"
        assert register.headers["X-Restli-Protocol-Version"] == RESTLI_HEADERS["X-Restli-Protocol-Version"]
        body = request_json(register)["registerUploadRequest"]
        assert body["owner"] == OWNER
        assert body["recipes"] == ["urn:li:digitalmediaRecipe:feedshare-image"]

        assert put.method == "PUT"
        assert put.content == asset.content
        assert put.headers["Content-Type"] == "image/png"
        assert put.headers["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_register_403_aborts_before_transfer(self, adapter, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/assets", status=403, json_body={"message": "Not enough permissions"})

        with pytest.raises(UpstreamError) as ctx:
            await adapter.upload("token", OWNER, make_asset())

        assert ctx.value.status_code == 403
        assert "Not enough permissions" in ctx.value.raw_body
        assert len(fake_api.requests) == 1

    @pytest.mark.asyncio
    async def test_registration_without_upload_url(self, adapter, fake_api):
        fake_api.add("POST", f"{LINKEDIN_API}/assets", json_body={"value": {"asset": "urn:x"}})

        with pytest.raises(UpstreamError) as ctx:
            await adapter.upload("token", OWNER, make_asset())
        assert ctx.value.status_code == 502

    @pytest.mark.asyncio
    async def test_transfer_failure(self, adapter, fake_api):
        fake_api.add(
            "POST",
            f"{LINKEDIN_API}/assets",
            json_body={
                "value": {
                    "asset": "urn:li:digitalmediaAsset:asset0",
                    "uploadMechanism": {
                        "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest": {
                            "uploadUrl": "https://upload.linkedin.example/up0",
                        }
                    },
                }
            },
        )
        fake_api.add("PUT", "https://upload.linkedin.example/up0", status=500, text="storage down")

        with pytest.raises(UpstreamError) as ctx:
            await adapter.upload("token", OWNER, make_asset())
        assert ctx.value.status_code == 500

    @pytest.mark.asyncio
    async def test_network_error_is_transport_error(self):
        def boom(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(boom))
        adapter = TwoPhaseUploadAdapter(image_upload_protocol(LINKEDIN_API), client)

        with pytest.raises(TransportError):
            await adapter.upload("token", OWNER, make_asset())

    @pytest.mark.asyncio
    async def test_upload_all_keeps_declared_order(self, adapter, fake_api):
        linkedin_upload_routes(fake_api, count=2)

        refs = await adapter.upload_all("token", OWNER, [make_asset("a.png"), make_asset("b.png")])

        assert len(refs) == 2
        assert {r.reference for r in refs} == {
            "urn:li:digitalmediaAsset:asset0",
            "urn:li:digitalmediaAsset:asset1",
        }


class TestUploadConcurrently:
    @pytest.mark.asyncio
    async def test_all_succeed(self):
        async def ok(value):
            return value

        assert await upload_concurrently("x", [ok(1), ok(2)]) == [1, 2]

    @pytest.mark.asyncio
    async def test_first_failure_in_declared_order_wins(self):
        finished = []

        async def ok(value):
            finished.append(value)
            return value

        async def fail(status):
            raise UpstreamError(upstream_status=status)

        with pytest.raises(UpstreamError) as ctx:
            await upload_concurrently("x", [ok(1), fail(403), fail(500)])

        assert ctx.value.status_code == 403
        assert finished == [1]


class TestDirectoryMediaResolver:
    @pytest.mark.asyncio
    async def test_reads_bytes_mime_and_sidecar(self, tmp_path):
        (tmp_path / "cat.png").write_bytes(b"png-bytes")
        (tmp_path / "cat.png.json").write_text(json.dumps({"altText": "A cat"}))
        (tmp_path / "doc.pdf").write_bytes(b"pdf")

        assets = await DirectoryMediaResolver(str(tmp_path)).resolve(["cat.png", "doc.pdf"])

        assert [a.handle for a in assets] == ["cat.png", "doc.pdf"]
        assert assets[0].content == b"png-bytes"
        assert assets[0].mime_type == "image/png"
        assert assets[0].alt_text == "A cat"
        assert assets[1].mime_type == "application/pdf"
        assert assets[1].alt_text is None

    @pytest.mark.asyncio
    async def test_unknown_handle(self, tmp_path):
        with pytest.raises(ValidationError) as ctx:
            await DirectoryMediaResolver(str(tmp_path)).resolve(["missing.png"])
        assert ctx.value.error_code == ErrorCode.UNKNOWN_MEDIA

    @pytest.mark.asyncio
    @pytest.mark.parametrize("handle", ["../secret.png", "sub/x.png", ".hidden"])
    async def test_path_like_handles_rejected(self, tmp_path, handle):
        with pytest.raises(ValidationError):
            await DirectoryMediaResolver(str(tmp_path)).resolve([handle])


@pytest.mark.asyncio
async def test_static_resolver():
    asset = make_asset("a.png")
    resolver = StaticMediaResolver({"a.png": asset})

    assert await resolver.resolve(["a.png"]) == [asset]
    with pytest.raises(ValidationError):
        await resolver.resolve(["a.png", "b.png"])
