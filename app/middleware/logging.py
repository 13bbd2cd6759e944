"""
Access logging for the broadcaster API.

Every response carries X-Request-ID and X-Response-Time headers. Routes
annotate request.state with what they acted on (the OAuth platform, the
broadcast targets and outcome) and the access line reports it. Query
strings are never logged since OAuth callbacks carry authorization codes.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, FrozenSet, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from broadcaster.utils.logging import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

# Logged only when they fail
QUIET_PATHS: FrozenSet[str] = frozenset(
    {"/", "/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"}
)


# request.state attribute -> label in the access line
SUMMARY_LABELS = {
    "oauth_platform": "platform",
    "broadcast_targets": "targets",
    "broadcast_status": "broadcast",
}


def _status_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def broadcast_fields(request: Request) -> Dict[str, Any]:
    """What the route recorded about the platforms it touched."""
    fields: Dict[str, Any] = {}
    for attr in SUMMARY_LABELS:
        value = getattr(request.state, attr, None)
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(value)
        fields[attr] = value
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One access log line per request.

    A publish request logs as e.g.
    ``POST /api/publish 403 (812.40ms) targets=linkedin,mastodon broadcast=partial``.
    """

    def __init__(self, app, quiet_paths: FrozenSet[str] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = quiet_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_context(request_id=request_id)
        request.state.request_id = request_id

        method = request.method
        path = request.url.path
        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            status_code = response.status_code
            if path not in self.quiet_paths or status_code >= 400:
                fields = broadcast_fields(request)
                summary = "".join(f" {SUMMARY_LABELS[k]}={v}" for k, v in fields.items())
                logger.log(
                    _status_level(status_code),
                    f"{method} {path} {status_code} ({duration_ms:.2f}ms){summary}",
                    extra={
                        "event": "http_request",
                        "http_method": method,
                        "http_path": path,
                        "http_status": status_code,
                        "duration_ms": round(duration_ms, 2),
                        "caller": getattr(request.state, "user_id", "-"),
                        **fields,
                    },
                )
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"{method} {path} FAILED ({duration_ms:.2f}ms): {type(exc).__name__}",
                extra={
                    "event": "http_request_error",
                    "http_method": method,
                    "http_path": path,
                    "duration_ms": round(duration_ms, 2),
                    "error_type": type(exc).__name__,
                    **broadcast_fields(request),
                },
                exc_info=True,
            )
            raise

        finally:
            clear_request_context()


def get_request_id_from_request(request: Request) -> Optional[str]:
    """Request ID stored by the middleware, if any."""
    return getattr(request.state, "request_id", None)
