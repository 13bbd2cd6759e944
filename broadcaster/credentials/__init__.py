"""Credential storage and token lifecycle."""

from .lifecycle import TokenLifecycleManager
from .store import (
    CredentialStore,
    FileCredentialStore,
    InMemoryCredentialStore,
    OAuthStateStore,
)

__all__ = [
    "CredentialStore",
    "FileCredentialStore",
    "InMemoryCredentialStore",
    "OAuthStateStore",
    "TokenLifecycleManager",
]
