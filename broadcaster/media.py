"""
Media resolution and the two-phase upload protocol.

Media handles in a post request are opaque. A MediaResolver turns them into
bytes, MIME type and alt text once per broadcast. Platforms that do not
accept inline binaries get their assets through TwoPhaseUploadAdapter:

1. Register: POST a JSON descriptor, receive an upload URL and asset reference
2. Transfer: PUT the raw bytes to the upload URL
3. The asset reference is embedded in the post payload
"""

import asyncio
import json
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
)

import httpx

from .exceptions import ErrorCode, UpstreamError, ValidationError
from .http import bearer_headers, ensure_success, parse_json, transport_errors
from .types.social import MediaAsset, SocialPlatform, UploadedReference

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Media Resolution
# =============================================================================


class MediaResolver(Protocol):
    """Resolves opaque media handles to their content."""

    async def resolve(self, handles: Sequence[str]) -> List[MediaAsset]:
        """
        Resolve every handle, in order.

        Raises:
            ValidationError: If a handle is unknown.
        """
        ...


def _unknown_media(handle: str) -> ValidationError:
    return ValidationError(
        message=f"Unknown media handle: {handle}",
        field="images",
        value=handle,
        error_code=ErrorCode.UNKNOWN_MEDIA,
    )


class DirectoryMediaResolver:
    """
    Reads media from a directory, one file per handle.

    An optional <handle>.json sidecar may carry "alt_text" (or "altText")
    and "mime_type" overriding the extension-based guess.
    """

    def __init__(self, media_dir: str):
        self.media_dir = Path(media_dir)

    def _path_for(self, handle: str) -> Path:
        name = Path(handle).name
        if not name or name != handle or name.startswith("."):
            raise _unknown_media(handle)
        return self.media_dir / name

    def _load(self, handle: str) -> MediaAsset:
        path = self._path_for(handle)
        if not path.is_file():
            raise _unknown_media(handle)

        meta: Dict[str, Any] = {}
        sidecar = path.with_name(f"{path.name}.json")
        if sidecar.is_file():
            try:
                with open(sidecar, "r", encoding="utf-8") as f:
                    meta = json.load(f)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring unreadable media sidecar for {handle}")

        mime_type = meta.get("mime_type") or mimetypes.guess_type(path.name)[0]
        return MediaAsset(
            handle=handle,
            content=path.read_bytes(),
            mime_type=mime_type or "application/octet-stream",
            alt_text=meta.get("alt_text") or meta.get("altText"),
        )

    async def resolve(self, handles: Sequence[str]) -> List[MediaAsset]:
        return [await asyncio.to_thread(self._load, handle) for handle in handles]


class StaticMediaResolver:
    """Resolver over a fixed mapping of handles, for tests and fixtures."""

    def __init__(self, assets: Mapping[str, MediaAsset]):
        self._assets = dict(assets)

    async def resolve(self, handles: Sequence[str]) -> List[MediaAsset]:
        missing = [h for h in handles if h not in self._assets]
        if missing:
            raise _unknown_media(missing[0])
        return [self._assets[h] for h in handles]


# =============================================================================
# Two-Phase Upload
# =============================================================================


@dataclass(frozen=True)
class RegisterUploadProtocol:
    """
    Registration dialect of a platform.

    Attributes:
        platform: Platform the protocol belongs to.
        registration_url: Endpoint receiving the register POST.
        build_descriptor: (owner identity, asset) -> JSON body.
        parse_registration: JSON response -> (upload URL, asset reference).
            Returns None for either part when the response is unusable.
        headers: Extra headers for the register call.
    """

    platform: SocialPlatform
    registration_url: str
    build_descriptor: Callable[[str, MediaAsset], Dict[str, Any]]
    parse_registration: Callable[[Dict[str, Any]], Tuple[Optional[str], Optional[str]]]
    headers: Mapping[str, str] = field(default_factory=dict)


class TwoPhaseUploadAdapter:
    """Uploads assets with a register-then-PUT protocol."""

    def __init__(self, protocol: RegisterUploadProtocol, http_client: httpx.AsyncClient):
        self.protocol = protocol
        self._http = http_client

    @property
    def platform(self) -> str:
        return self.protocol.platform.value

    async def upload(self, access_token: str, owner: str, asset: MediaAsset) -> UploadedReference:
        """
        Register and transfer one asset.

        Raises:
            UpstreamError: Either phase answered non-2xx, or the registration
                response lacked an upload URL or asset reference.
            TransportError: Network failure in either phase.
        """
        upload_url, reference = await self._register(access_token, owner, asset)

        with transport_errors(self.platform, "media transfer"):
            response = await self._http.put(
                upload_url,
                content=asset.content,
                headers=bearer_headers(access_token, {"Content-Type": asset.mime_type}),
            )
        ensure_success(response, self.platform, "media transfer")

        logger.debug(f"Uploaded {asset.handle} as {reference}")
        return UploadedReference(
            platform=self.protocol.platform,
            reference=reference,
            alt_text=asset.alt_text,
        )

    async def _register(self, access_token: str, owner: str, asset: MediaAsset) -> Tuple[str, str]:
        descriptor = self.protocol.build_descriptor(owner, asset)
        with transport_errors(self.platform, "upload registration"):
            response = await self._http.post(
                self.protocol.registration_url,
                json=descriptor,
                headers=bearer_headers(access_token, self.protocol.headers),
            )
        ensure_success(response, self.platform, "upload registration")
        data = parse_json(response, self.platform, "upload registration")

        upload_url, reference = self.protocol.parse_registration(data)
        if not upload_url or not reference:
            raise UpstreamError(
                message=f"{self.platform} upload registration returned no upload URL",
                upstream_status=response.status_code,
                raw_body=response.text,
                platform=self.platform,
            )
        return upload_url, reference

    async def upload_all(
        self,
        access_token: str,
        owner: str,
        assets: Sequence[MediaAsset],
    ) -> List[UploadedReference]:
        """
        Upload every asset of a post concurrently.

        All uploads are attempted. If any failed, the first failure in
        declared order is raised and the post must not be published.
        """
        return await upload_concurrently(
            self.platform,
            [self.upload(access_token, owner, asset) for asset in assets],
        )


async def upload_concurrently(platform: str, uploads: Sequence[Awaitable[T]]) -> List[T]:
    """
    Run independent uploads together and require every one to succeed.

    Every upload runs to completion. If any failed, the first failure in
    declared order is raised.
    """
    results = await asyncio.gather(*uploads, return_exceptions=True)
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        if len(failures) < len(results):
            logger.warning(
                f"{len(failures)} of {len(results)} {platform} uploads failed, "
                f"not publishing a partial set"
            )
        raise failures[0]
    return list(results)
