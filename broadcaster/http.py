"""
HTTP plumbing shared by OAuth clients, publishers and uploaders.

The application lifespan owns exactly one httpx.AsyncClient built by
create_http_client(); every component receives it at construction.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional

import httpx

from .config import HttpSettings
from .exceptions import TransportError, UpstreamError

logger = logging.getLogger(__name__)

MASKED_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy headers with credentials replaced by a fixed marker."""
    return {
        name: ("***" if name.lower() in MASKED_HEADERS else value)
        for name, value in headers.items()
    }


async def _log_response(response: httpx.Response) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    request = response.request
    logger.debug(
        "%s %s -> %s",
        request.method,
        request.url,
        response.status_code,
        extra={"request_headers": mask_headers(request.headers)},
    )


def create_http_client(settings: HttpSettings) -> httpx.AsyncClient:
    """Build the shared client. The caller is responsible for closing it."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        headers={"User-Agent": settings.http_user_agent},
        event_hooks={"response": [_log_response]},
    )


def bearer_headers(access_token: str, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Authorization header plus any platform-specific headers."""
    headers = {"Authorization": f"Bearer {access_token}"}
    if extra:
        headers.update(extra)
    return headers


@contextmanager
def transport_errors(platform: Optional[str] = None, action: str = "request") -> Iterator[None]:
    """
    Convert network failures into TransportError.

    UpstreamError and other broadcaster errors pass through untouched.
    """
    try:
        yield
    except httpx.HTTPError as e:
        logger.warning(f"{platform or 'platform'} {action} failed: {type(e).__name__}")
        raise TransportError(platform=platform, original_error=e) from e


def ensure_success(response: httpx.Response, platform: Optional[str], action: str) -> httpx.Response:
    """
    Raise UpstreamError for any non-2xx response.

    Returns:
        The same response, for chaining.
    """
    if response.is_success:
        return response
    raise UpstreamError(
        message=f"{platform or 'platform'} {action} failed with HTTP {response.status_code}",
        upstream_status=response.status_code,
        raw_body=response.text,
        platform=platform,
    )


def parse_json(response: httpx.Response, platform: Optional[str], action: str) -> Dict[str, Any]:
    """Decode a JSON object body, raising TransportError when it is not one."""
    try:
        data = response.json()
    except ValueError as e:
        raise TransportError(
            message=f"Unreadable response from {platform or 'platform'}",
            platform=platform,
            original_error=e,
            internal_message=f"{action}: invalid JSON body {response.text[:200]!r}",
        ) from e
    if not isinstance(data, dict):
        raise TransportError(
            message=f"Unreadable response from {platform or 'platform'}",
            platform=platform,
            internal_message=f"{action}: expected JSON object, got {type(data).__name__}",
        )
    return data
