"""Authentication components for the broadcaster API."""

from .api_key import (
    API_KEY_HEADER,
    DEV_USER_ID,
    APIKeyStore,
    get_api_key_store,
    verify_api_key,
)

__all__ = [
    "APIKeyStore",
    "API_KEY_HEADER",
    "DEV_USER_ID",
    "get_api_key_store",
    "verify_api_key",
]
