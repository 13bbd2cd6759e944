"""
Custom exception classes for the broadcaster.

This module provides a hierarchy of exceptions that map to HTTP status codes
and to the per-target failure kinds reported by a broadcast. All exceptions
inherit from BroadcasterException so the API layer can render them through a
single handler.

Exception Hierarchy:
    BroadcasterException (base)
    ├── ValidationError (400)
    ├── UnauthenticatedError (401)
    ├── UpstreamError (upstream status, 502 when the upstream said 2xx)
    ├── TransportError (500)
    ├── CredentialStoreError (500)
    ├── PlatformNotConfiguredError (503)
    └── CompositeError (max status of the failed targets)
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """
    Standardized error codes for API responses.

    These codes provide machine-readable identifiers for error conditions,
    enabling clients to programmatically handle specific error scenarios.
    """

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    CONTENT_TOO_LONG = "CONTENT_TOO_LONG"
    NO_TARGETS = "NO_TARGETS"
    UNKNOWN_MEDIA = "UNKNOWN_MEDIA"
    INVALID_OAUTH_STATE = "INVALID_OAUTH_STATE"
    OAUTH_DENIED = "OAUTH_DENIED"

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_API_KEY = "INVALID_API_KEY"
    CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
    CREDENTIAL_EXPIRED = "CREDENTIAL_EXPIRED"

    # Platform errors
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    MISSING_POST_ID = "MISSING_POST_ID"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    PLATFORM_NOT_CONFIGURED = "PLATFORM_NOT_CONFIGURED"

    # Storage errors (500)
    STORAGE_ERROR = "STORAGE_ERROR"

    # Broadcast errors
    COMPOSITE_ERROR = "COMPOSITE_ERROR"


class BroadcasterException(Exception):
    """
    Base exception class for all broadcaster errors.

    Attributes:
        message: Human-readable error message (sanitized for external display).
        error_code: Machine-readable error code from ErrorCode enum.
        status_code: HTTP status code to return.
        details: Additional context about the error (optional).
        internal_message: Detailed message for logging (not exposed to clients).
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message for the client.
            error_code: Machine-readable error code.
            details: Additional context (must not contain sensitive data).
            internal_message: Detailed message for logging only.
        """
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to a dictionary for API response.

        Returns:
            Dictionary with error information suitable for JSON serialization.
        """
        response = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            response["details"] = self.details
        return response

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code.value!r}, "
            f"status_code={self.status_code})"
        )


# =============================================================================
# Validation Errors (400 Bad Request)
# =============================================================================


class ValidationError(BroadcasterException):
    """
    Raised when a request fails validation.

    Use this for:
    - Blank or oversized post content
    - Malformed links
    - An empty resolved target set
    - Unknown media handles
    - OAuth callbacks with a missing or mismatched state
    """

    status_code = 400
    default_error_code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request data"

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            str_value = str(value)
            details["value"] = str_value[:100] + "..." if len(str_value) > 100 else str_value

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            internal_message=internal_message,
        )


# =============================================================================
# Authentication Errors (401 Unauthorized)
# =============================================================================


class UnauthenticatedError(BroadcasterException):
    """
    Raised when no usable platform credential exists.

    Covers a missing credential and an expired credential that carries no
    refresh token. The user has to go through the authorization flow again.
    """

    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"

    def __init__(
        self,
        message: Optional[str] = None,
        platform: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        details = details or {}
        if platform:
            details["platform"] = platform

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            internal_message=internal_message,
        )


# =============================================================================
# Platform Errors
# =============================================================================


class UpstreamError(BroadcasterException):
    """
    Raised when a platform API answers with a non-success response.

    The upstream status and raw body are preserved verbatim for diagnostics.
    The HTTP status reported to the caller is the upstream status; responses
    that were 2xx but unusable (no post id, malformed registration) map to 502.
    """

    status_code = 502
    default_error_code = ErrorCode.UPSTREAM_ERROR
    default_message = "Platform request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        upstream_status: Optional[int] = None,
        raw_body: Optional[str] = None,
        platform: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.upstream_status = upstream_status
        self.raw_body = raw_body
        self.platform = platform
        if upstream_status is not None and upstream_status >= 400:
            self.status_code = upstream_status

        details = details or {}
        if platform:
            details["platform"] = platform
        if upstream_status is not None:
            details["upstream_status"] = upstream_status

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            internal_message=internal_message or raw_body,
        )


class TransportError(BroadcasterException):
    """
    Raised when a platform could not be reached or its response not parsed.

    The client-facing message never contains the underlying exception text;
    that goes to internal_message for logging.
    """

    status_code = 500
    default_error_code = ErrorCode.TRANSPORT_ERROR
    default_message = "Could not communicate with the platform"

    def __init__(
        self,
        message: Optional[str] = None,
        platform: Optional[str] = None,
        original_error: Optional[Exception] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.original_error = original_error
        self.platform = platform

        details = details or {}
        if platform:
            details["platform"] = platform

        if original_error and not internal_message:
            internal_message = f"{type(original_error).__name__}: {original_error}"

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            internal_message=internal_message,
        )


class PlatformNotConfiguredError(BroadcasterException):
    """Raised when a platform has no client credentials in this deployment."""

    status_code = 503
    default_error_code = ErrorCode.PLATFORM_NOT_CONFIGURED
    default_message = "Platform is not configured"

    def __init__(
        self,
        platform: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["platform"] = platform
        super().__init__(
            message=message or f"{platform} is not configured",
            details=details,
        )


# =============================================================================
# Storage Errors (500 Internal Server Error)
# =============================================================================


class CredentialStoreError(BroadcasterException):
    """
    Raised when the credential store cannot be read or written.

    This is an infrastructure failure and is never reported as a missing
    credential.
    """

    status_code = 500
    default_error_code = ErrorCode.STORAGE_ERROR
    default_message = "Credential storage is unavailable"

    def __init__(
        self,
        message: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.original_error = original_error

        details = details or {}
        if operation:
            details["operation"] = operation

        if original_error and not internal_message:
            internal_message = f"{type(original_error).__name__}: {original_error}"

        super().__init__(
            message=message,
            details=details,
            internal_message=internal_message,
        )


# =============================================================================
# Broadcast Errors
# =============================================================================


class CompositeError(BroadcasterException):
    """
    Raised when at least one target of a broadcast failed.

    Carries every per-target response, successes included, so the caller
    always learns about the posts that did go out. The status code is the
    highest status among the failed targets.
    """

    default_error_code = ErrorCode.COMPOSITE_ERROR
    default_message = "Failed to publish to one or more platforms"

    def __init__(
        self,
        responses: List[Dict[str, Any]],
        status_code: int = 500,
        message: Optional[str] = None,
        broadcast_status: Optional[str] = None,
    ):
        self.responses = responses
        self.status_code = status_code
        self.broadcast_status = broadcast_status
        super().__init__(message=message)

    def to_dict(self) -> Dict[str, Any]:
        response = super().to_dict()
        response["status"] = self.status_code
        if self.broadcast_status:
            response["result"] = self.broadcast_status
        response["responses"] = self.responses
        return response
