"""
FastAPI exception handlers for the broadcaster API.

This module provides centralized exception handling that:
- Maps broadcaster exceptions to appropriate HTTP responses
- Handles request validation errors with clean messages
- Renders composite broadcast failures with every per-target response
- Prevents sensitive information leakage

Single error responses follow the format:
{
    "success": false,
    "error": "Human-readable message",
    "error_code": "MACHINE_READABLE_CODE",
    "details": {}  # Optional additional context
}
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from broadcaster.config import get_settings
from broadcaster.exceptions import BroadcasterException, CompositeError, ErrorCode

logger = logging.getLogger(__name__)

# Patterns that indicate sensitive information
SENSITIVE_PATTERNS = [
    r"api[_-]?key",
    r"secret",
    r"password",
    r"access[_-]?token",
    r"refresh[_-]?token",
    r"code[_-]?verifier",
    r"bearer\s",
    r"basic\s+[A-Za-z0-9+/=]{8,}",
    r"cookie",
    # Credentials embedded in URLs
    r"://[^/\s:@]+:[^/\s@]+@",
    # File paths that might be sensitive
    r"/home/",
    r"/Users/",
    r"/var/",
    r"/etc/",
    # Environment variable references
    r"\$\{\w+\}",
]

SENSITIVE_REGEX = re.compile("|".join(SENSITIVE_PATTERNS), re.IGNORECASE)

GENERIC_MESSAGE = "An error occurred while processing your request"

SAFE_DETAIL_KEYS = {
    "field",
    "value",
    "platform",
    "operation",
    "upstream_status",
    "length",
    "max_length",
    "count",
    "max_images",
    "error",
    "errors",
    "error_reference",
}


def sanitize_error_message(message: str) -> str:
    """
    Remove potentially sensitive information from error messages.

    Args:
        message: The error message to sanitize.

    Returns:
        Sanitized message with sensitive data redacted.
    """
    if not message:
        return message

    if SENSITIVE_REGEX.search(message):
        return GENERIC_MESSAGE

    # Remove any file paths
    message = re.sub(r"[/\\][\w.-]+[/\\][\w./\\-]+\.\w+", "[path]", message)

    # Remove IP addresses
    message = re.sub(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b", "[ip]", message)

    # Remove UUIDs (but keep shorter IDs)
    message = re.sub(
        r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b",
        "[id]",
        message,
        flags=re.IGNORECASE,
    )

    if len(message) > 500:
        message = message[:500] + "..."

    return message


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_error_message(value)
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {
            str(k): _sanitize_value(v)
            for k, v in value.items()
            if isinstance(v, (str, int, float, bool)) or v is None
        }
    return None


def sanitize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """
    Sanitize error details to remove sensitive information.

    Only whitelisted keys survive. Lists keep at most ten primitive or flat
    dictionary items.
    """
    if not details:
        return {}

    sanitized: Dict[str, Any] = {}
    for key, value in details.items():
        if key not in SAFE_DETAIL_KEYS:
            continue

        if isinstance(value, list):
            items = [_sanitize_value(v) for v in value]
            sanitized[key] = [v for v in items if v is not None][:10]
        elif isinstance(value, (str, int, float, bool, dict)):
            sanitized[key] = _sanitize_value(value)
        # Skip anything else

    return sanitized


def format_pydantic_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Format Pydantic validation errors into a clean, consistent format.

    Args:
        errors: List of Pydantic error dictionaries.

    Returns:
        List of formatted error dictionaries with field and message.
    """
    formatted = []
    for error in errors:
        loc = error.get("loc", [])
        field_parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
        field = ".".join(field_parts) if field_parts else "request"

        error_type = error.get("type", "")
        msg = error.get("msg", "Invalid value")

        if error_type == "missing":
            msg = f"Field '{field}' is required"
        elif error_type == "string_type":
            msg = f"Field '{field}' must be a string"
        elif error_type == "list_type":
            msg = f"Field '{field}' must be a list"
        elif error_type == "bool_type" or error_type == "bool_parsing":
            msg = f"Field '{field}' must be a boolean"
        elif "enum" in error_type.lower():
            msg = f"Field '{field}' has an invalid value"
        else:
            msg = sanitize_error_message(msg)

        formatted.append({"field": field, "message": msg})

    return formatted[:10]


def create_error_response(
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Create a standardized error response.

    Args:
        status_code: HTTP status code.
        error: Human-readable error message.
        error_code: Machine-readable error code.
        details: Optional additional details.
        headers: Optional response headers.

    Returns:
        JSONResponse with consistent error format.
    """
    content: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(error),
        "error_code": error_code,
    }

    if details:
        sanitized_details = sanitize_details(details)
        if sanitized_details:
            content["details"] = sanitized_details

    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _sanitize_responses(responses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    sanitized = []
    for entry in responses:
        entry = dict(entry)
        if isinstance(entry.get("error"), str):
            entry["error"] = sanitize_error_message(entry["error"])
        sanitized.append(entry)
    return sanitized


# =============================================================================
# Exception Handlers
# =============================================================================


async def composite_exception_handler(request: Request, exc: CompositeError) -> JSONResponse:
    """
    Render a partially or totally failed broadcast.

    The body lists every target's response, successes included.
    """
    logger.warning(
        f"CompositeError on {request.method} {request.url.path}: {exc.message}",
        extra={"http_status": exc.status_code, "result": exc.broadcast_status},
    )
    content = exc.to_dict()
    content["error"] = sanitize_error_message(exc.message)
    content["responses"] = _sanitize_responses(exc.responses)
    return JSONResponse(status_code=exc.status_code, content=content)


async def broadcaster_exception_handler(
    request: Request,
    exc: BroadcasterException,
) -> JSONResponse:
    """
    Handle BroadcasterException and subclasses.

    Internal details are logged, never returned.
    """
    log_message = f"{exc.__class__.__name__}: {exc.message}"
    if exc.internal_message:
        log_message += f" | Internal: {exc.internal_message}"

    if exc.status_code >= 500:
        logger.error(log_message, exc_info=exc)
    elif exc.status_code >= 400:
        logger.warning(log_message)
    else:
        logger.info(log_message)

    return create_error_response(
        status_code=exc.status_code,
        error=exc.message,
        error_code=exc.error_code.value,
        details=exc.details,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle FastAPI request validation errors.

    Malformed publish and callback requests are client errors (400).
    """
    errors = format_pydantic_errors(exc.errors())

    logger.warning(
        f"Validation error on {request.method} {request.url.path}: {len(errors)} error(s)"
    )

    if len(errors) == 1:
        error_message = errors[0]["message"]
    else:
        error_message = f"Validation failed with {len(errors)} error(s)"

    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        error=error_message,
        error_code=ErrorCode.VALIDATION_ERROR.value,
        details={"errors": errors},
    )


async def pydantic_validation_handler(
    request: Request,
    exc: PydanticValidationError,
) -> JSONResponse:
    """
    Handle direct Pydantic ValidationError (not wrapped by FastAPI).
    """
    errors = format_pydantic_errors(exc.errors())

    logger.warning(
        f"Pydantic validation error on {request.method} {request.url.path}: "
        f"{len(errors)} error(s)"
    )

    if len(errors) == 1:
        error_message = errors[0]["message"]
    else:
        error_message = f"Validation failed with {len(errors)} error(s)"

    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        error=error_message,
        error_code=ErrorCode.VALIDATION_ERROR.value,
        details={"errors": errors},
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle Starlette/FastAPI HTTPException in the standard error format.
    """
    status_code_mapping = {
        400: ErrorCode.VALIDATION_ERROR,
        401: ErrorCode.AUTHENTICATION_REQUIRED,
        404: ErrorCode.INVALID_INPUT,
        405: ErrorCode.VALIDATION_ERROR,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.UPSTREAM_ERROR,
        503: ErrorCode.PLATFORM_NOT_CONFIGURED,
    }
    error_code = status_code_mapping.get(exc.status_code, ErrorCode.UNEXPECTED_ERROR)

    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    if exc.status_code == 401 and detail == "Invalid API key":
        error_code = ErrorCode.INVALID_API_KEY

    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code}: {detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code}: {detail}")

    headers = None
    if exc.headers and "Retry-After" in exc.headers:
        headers = {"Retry-After": exc.headers["Retry-After"]}

    return create_error_response(
        status_code=exc.status_code,
        error=detail,
        error_code=error_code.value,
        headers=headers,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all for unexpected errors.

    Logs the full traceback and returns a generic message with a short
    reference for correlating the log entry.
    """
    error_reference = str(uuid.uuid4())[:8]

    logger.error(
        f"Unhandled exception [ref:{error_reference}] on "
        f"{request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )

    if not get_settings().is_production:
        message = f"Internal server error: {type(exc).__name__}"
    else:
        message = "An unexpected error occurred. Please try again later."

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=message,
        error_code=ErrorCode.INTERNAL_ERROR.value,
        details={"error_reference": error_reference},
    )


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(CompositeError, composite_exception_handler)
    app.add_exception_handler(BroadcasterException, broadcaster_exception_handler)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_handler)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.add_exception_handler(Exception, unhandled_exception_handler)

    logger.info("Exception handlers registered successfully")
