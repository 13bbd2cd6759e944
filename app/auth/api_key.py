"""
API key authentication for broadcaster callers.

Each caller (user) holds one API key; the X-API-Key header identifies the
user whose platform credentials a request acts on.
"""

import hashlib
import json
import logging
import os
import secrets
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from broadcaster.config import get_settings
from broadcaster.utils.logging import set_request_context

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

DEV_USER_ID = "dev_user"


class APIKeyStore:
    """
    File-based API key storage with SHA-256 hashing.

    The plain-text key is only returned once when created and cannot be
    retrieved later.
    """

    def __init__(self, storage_path: str):
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._hashes: Dict[str, str] = {}  # user_id -> hashed_key
        self._load()
        logger.info(f"API key storage initialized at: {self.storage_path}")

    @staticmethod
    def _hash_key(api_key: str) -> str:
        return hashlib.sha256(api_key.encode()).hexdigest()

    def _load(self) -> None:
        if not self.storage_path.exists():
            self._hashes = {}
            return
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                self._hashes = json.load(f)
            logger.info(f"Loaded {len(self._hashes)} API keys from storage")
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading API keys: {e}")
            self._hashes = {}

    def _save(self) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_path.parent, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self._hashes, f, indent=2)
        os.replace(tmp_path, self.storage_path)

    def create_key(self, user_id: str) -> str:
        """
        Create (or rotate) the API key of a user.

        Returns:
            The plain-text key. It cannot be retrieved later.
        """
        plain_key = secrets.token_urlsafe(32)
        self._hashes[user_id] = self._hash_key(plain_key)
        self._save()
        logger.info(f"Created new API key for user: {user_id}")
        return plain_key

    def verify_key(self, api_key: str) -> Optional[str]:
        """
        Return the user owning the key, or None.

        Uses constant-time comparison to prevent timing attacks.
        """
        hashed_input = self._hash_key(api_key)
        for user_id, stored_hash in self._hashes.items():
            if secrets.compare_digest(stored_hash, hashed_input):
                return user_id
        return None

    def revoke_key(self, user_id: str) -> bool:
        """Revoke a user's key. Returns False if the user had none."""
        if user_id not in self._hashes:
            return False
        del self._hashes[user_id]
        self._save()
        logger.info(f"Revoked API key for user: {user_id}")
        return True


@lru_cache()
def get_api_key_store() -> APIKeyStore:
    """Key store at the configured path, created on first use."""
    return APIKeyStore(get_settings().storage.api_key_storage_path)


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Depends(API_KEY_HEADER),
) -> str:
    """
    Verify the API key and return the user_id. In dev mode every request
    acts as dev_user.

    Raises:
        HTTPException: If the key is missing or invalid (unless in dev mode).
    """
    # SECURITY: dev mode defaults to off and must be enabled explicitly
    if get_settings().is_dev_mode:
        user_id: Optional[str] = DEV_USER_ID
    elif not api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")
    else:
        user_id = get_api_key_store().verify_key(api_key)

    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    request.state.user_id = user_id
    set_request_context(user_id=user_id)
    return user_id
