"""
Credential persistence, one record per (user, platform).

Records are replaced wholesale on every put. Read and write failures raise
CredentialStoreError so callers never confuse a broken store with a user who
simply has not connected a platform.
"""

import asyncio
import hashlib
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import CredentialStoreError
from ..types.social import Credential, OAuthState, SocialPlatform

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Async storage contract for platform credentials."""

    @abstractmethod
    async def get(self, user_id: str, platform: SocialPlatform) -> Optional[Credential]:
        """Return the stored credential, or None when the user never connected."""

    @abstractmethod
    async def put(self, user_id: str, platform: SocialPlatform, credential: Credential) -> None:
        """Replace the stored credential."""

    @abstractmethod
    async def delete(self, user_id: str, platform: SocialPlatform) -> bool:
        """Remove the credential. Returns False when there was nothing to remove."""

    @abstractmethod
    async def list_platforms(self, user_id: str) -> List[SocialPlatform]:
        """Platforms the user has a stored credential for."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local store for tests and development."""

    def __init__(self):
        self._records: Dict[Tuple[str, SocialPlatform], Credential] = {}

    async def get(self, user_id: str, platform: SocialPlatform) -> Optional[Credential]:
        return self._records.get((user_id, platform))

    async def put(self, user_id: str, platform: SocialPlatform, credential: Credential) -> None:
        self._records[(user_id, platform)] = credential

    async def delete(self, user_id: str, platform: SocialPlatform) -> bool:
        return self._records.pop((user_id, platform), None) is not None

    async def list_platforms(self, user_id: str) -> List[SocialPlatform]:
        return [p for p in SocialPlatform if (user_id, p) in self._records]


class FileCredentialStore(CredentialStore):
    """
    File-based credential storage.

    Layout: <storage_dir>/<sha256(user_id)>/<platform>.json. Writes go to a
    temporary file in the same directory and are moved into place with
    os.replace, so a reader sees either the old record or the new one. A
    record is only returned to the user it was stored for.
    """

    def __init__(self, storage_dir: str):
        """
        Initialize the credential store.

        Args:
            storage_dir: Directory for credential files. Created if missing.
        """
        self.storage_dir = Path(storage_dir)
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CredentialStoreError(operation="init", original_error=e) from e
        logger.info(f"Credential storage initialized at: {self.storage_dir}")

    def _user_dir(self, user_id: str) -> Path:
        # One directory per distinct user id, never outside storage_dir
        if not user_id:
            raise CredentialStoreError(
                message="Invalid user identifier",
                operation="resolve",
                internal_message="empty user id",
            )
        return self.storage_dir / hashlib.sha256(user_id.encode("utf-8")).hexdigest()

    def _file_path(self, user_id: str, platform: SocialPlatform) -> Path:
        return self._user_dir(user_id) / f"{platform.value}.json"

    def _read(self, user_id: str, path: Path) -> Optional[Credential]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                credential = Credential.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Error loading credential {path.name}: {type(e).__name__}")
            raise CredentialStoreError(operation="read", original_error=e) from e
        if credential.user_id != user_id:
            logger.error(f"Credential {path.name} is owned by a different user")
            raise CredentialStoreError(
                operation="read",
                internal_message=f"record in {path.parent.name} belongs to another user",
            )
        return credential

    def _write(self, path: Path, credential: Credential) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(credential.model_dump_json(indent=2))
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Error saving credential {path.name}: {e}")
            raise CredentialStoreError(operation="write", original_error=e) from e

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CredentialStoreError(operation="delete", original_error=e) from e

    def _list(self, user_id: str) -> List[SocialPlatform]:
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return []
        try:
            names = {p.stem for p in user_dir.glob("*.json")}
        except OSError as e:
            raise CredentialStoreError(operation="list", original_error=e) from e
        return [p for p in SocialPlatform if p.value in names]

    async def get(self, user_id: str, platform: SocialPlatform) -> Optional[Credential]:
        return await asyncio.to_thread(self._read, user_id, self._file_path(user_id, platform))

    async def put(self, user_id: str, platform: SocialPlatform, credential: Credential) -> None:
        await asyncio.to_thread(self._write, self._file_path(user_id, platform), credential)
        logger.debug(f"Stored {platform.value} credential")

    async def delete(self, user_id: str, platform: SocialPlatform) -> bool:
        return await asyncio.to_thread(self._remove, self._file_path(user_id, platform))

    async def list_platforms(self, user_id: str) -> List[SocialPlatform]:
        return await asyncio.to_thread(self._list, user_id)


class OAuthStateStore:
    """
    Pending authorization states, kept in process memory.

    A state is single use, bound to the user who started the flow and valid
    for OAUTH_STATE_TTL_SECONDS.
    """

    def __init__(self):
        self._states: Dict[str, OAuthState] = {}

    def save(self, state: OAuthState) -> None:
        self._purge_expired()
        self._states[state.state] = state

    def consume(self, user_id: str, state: str) -> Optional[OAuthState]:
        """
        Take a pending state out of the store.

        Returns None when the state is unknown, expired, or belongs to
        another user. The entry is removed in every case.
        """
        pending = self._states.pop(state, None)
        if pending is None:
            return None
        if pending.user_id != user_id:
            logger.warning("OAuth state presented by a different user")
            return None
        if pending.is_expired():
            return None
        return pending

    def _purge_expired(self) -> None:
        now = time.time()
        for key in [k for k, s in self._states.items() if s.is_expired(now)]:
            del self._states[key]

    def __len__(self) -> int:
        return len(self._states)
