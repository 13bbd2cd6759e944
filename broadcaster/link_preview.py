"""
Link preview lookup for article shares.

Previews are best effort: any failure yields None and the post goes out
without a title or thumbnail.
"""

import logging
from typing import Optional, Protocol
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from .types.social import LinkPreview

logger = logging.getLogger(__name__)

MAX_PREVIEW_BYTES = 1024 * 1024


class LinkPreviewResolver(Protocol):
    """Fetches preview metadata for a URL."""

    async def fetch(self, url: str) -> Optional[LinkPreview]:
        ...


class NullLinkPreviewResolver:
    """Resolver that never finds a preview."""

    async def fetch(self, url: str) -> Optional[LinkPreview]:
        return None


def _meta_content(soup: BeautifulSoup, *keys: str) -> Optional[str]:
    for key in keys:
        tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
        if tag and tag.get("content"):
            value = str(tag["content"]).strip()
            if value:
                return value
    return None


def parse_preview(html: str, url: str) -> Optional[LinkPreview]:
    """
    Extract title, description and image from an HTML page.

    Open Graph tags win over Twitter card tags, which win over <title>.
    Relative image URLs are resolved against the page URL.
    """
    soup = BeautifulSoup(html, "html.parser")

    title = _meta_content(soup, "og:title", "twitter:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    description = _meta_content(soup, "og:description", "twitter:description", "description")
    image = _meta_content(soup, "og:image", "og:image:url", "twitter:image")
    if image:
        image = urljoin(url, image)

    if not title and not image:
        return None
    return LinkPreview(url=url, title=title, description=description, image=image)


async def _read_head(response: httpx.Response, limit: int) -> bytes:
    """Read at most limit bytes of the body, leaving the rest unread."""
    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        buffer.extend(chunk)
        if len(buffer) >= limit:
            break
    return bytes(buffer[:limit])


class HttpLinkPreviewResolver:
    """Fetches the page with the shared client and parses it with BeautifulSoup."""

    def __init__(self, http_client: httpx.AsyncClient):
        self._http = http_client

    async def fetch(self, url: str) -> Optional[LinkPreview]:
        try:
            async with self._http.stream(
                "GET",
                url,
                headers={"Accept": "text/html,application/xhtml+xml"},
                follow_redirects=True,
            ) as response:
                if not response.is_success:
                    logger.info(f"Link preview fetch returned HTTP {response.status_code}")
                    return None
                content_type = response.headers.get("content-type", "")
                if "html" not in content_type:
                    return None
                head = await _read_head(response, MAX_PREVIEW_BYTES)
                html = head.decode(response.encoding or "utf-8", errors="replace")
                return parse_preview(html, str(response.url))
        except Exception as e:
            logger.warning(f"Failed to fetch link preview for {url}: {type(e).__name__}")
            return None
