"""Text helpers shared by request normalization and the platform publishers."""

from typing import Optional

from bs4 import BeautifulSoup


def cleanup_html(html: str) -> str:
    """
    Strip markup from post content while keeping its text.

    Entities are decoded and non-breaking spaces become plain spaces.
    Line breaks in the text nodes are preserved.
    """
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text()
    return text.replace("\xa0", " ").strip()


def truncate_text(
    text: str,
    max_length: int,
    ellipsis: str = "...",
) -> str:
    """
    Truncate text to fit a platform limit.

    Args:
        text: The text to truncate
        max_length: Maximum length including the ellipsis
        ellipsis: String to append when truncating

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    if max_length <= len(ellipsis):
        return text[:max_length]
    return text[: max_length - len(ellipsis)].rstrip() + ellipsis


def join_content(content: str, link: Optional[str], separator: str = "\n\n") -> str:
    """Append a link to post text the way status-style platforms expect."""
    if not link:
        return content
    return f"{content}{separator}{link}"
