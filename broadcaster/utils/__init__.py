"""Utility modules for the broadcaster."""

from .logging import (
    setup_logging,
    set_request_context,
    clear_request_context,
    set_platform_context,
    get_request_id,
    get_user_id,
    Timer,
    JSONFormatter,
    DevelopmentFormatter,
    RequestContextFilter,
    SensitiveDataFilter,
    redact_sensitive_data,
)
from .text import cleanup_html, join_content, truncate_text

__all__ = [
    # Logging utilities
    "setup_logging",
    "set_request_context",
    "clear_request_context",
    "set_platform_context",
    "get_request_id",
    "get_user_id",
    "Timer",
    "JSONFormatter",
    "DevelopmentFormatter",
    "RequestContextFilter",
    "SensitiveDataFilter",
    "redact_sensitive_data",
    # Text utilities
    "cleanup_html",
    "join_content",
    "truncate_text",
]
