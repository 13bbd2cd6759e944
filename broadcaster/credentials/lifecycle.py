"""
Token lifecycle: authorization, code exchange, expiry checks and refresh.

TokenLifecycleManager is the only component that writes credentials. It
guarantees that concurrent callers for the same (user, platform) share one
refresh instead of racing each other with the same refresh token.
"""

import asyncio
import logging
from typing import Callable, Dict, Mapping, Optional, Tuple

from ..exceptions import (
    ErrorCode,
    PlatformNotConfiguredError,
    UnauthenticatedError,
    ValidationError,
)
from ..oauth import (
    AuthClient,
    OAuth2Client,
    PasswordSessionClient,
    generate_pkce_pair,
    generate_state,
)
from ..types.social import (
    AuthorizeResponse,
    Credential,
    CredentialStatus,
    OAuthState,
    SocialPlatform,
    ValidToken,
)
from .store import CredentialStore, OAuthStateStore

logger = logging.getLogger(__name__)

RefreshKey = Tuple[str, SocialPlatform]


class TokenLifecycleManager:
    """
    Hands out usable access tokens and keeps stored credentials current.

    Args:
        store: Credential persistence.
        oauth_clients: One OAuth2 or session client per enabled platform.
        state_store: Pending authorization states.
        redirect_uri_for: Builds the callback URL registered for a platform.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_clients: Mapping[SocialPlatform, AuthClient],
        state_store: Optional[OAuthStateStore] = None,
        redirect_uri_for: Optional[Callable[[SocialPlatform], str]] = None,
    ):
        self.store = store
        self._clients = dict(oauth_clients)
        self._states = state_store or OAuthStateStore()
        self._redirect_uri_for = redirect_uri_for
        self._in_flight: Dict[RefreshKey, "asyncio.Task[Credential]"] = {}

    def client_for(self, platform: SocialPlatform) -> AuthClient:
        client = self._clients.get(platform)
        if client is None:
            raise PlatformNotConfiguredError(platform.value)
        return client

    def _oauth_client(self, platform: SocialPlatform) -> OAuth2Client:
        client = self.client_for(platform)
        if not isinstance(client, OAuth2Client):
            raise ValidationError(
                message=f"{platform.value} accounts connect with an app password, not OAuth",
                field="platform",
                value=platform.value,
                error_code=ErrorCode.INVALID_INPUT,
            )
        return client

    def _session_client(self, platform: SocialPlatform) -> PasswordSessionClient:
        client = self.client_for(platform)
        if not isinstance(client, PasswordSessionClient):
            raise ValidationError(
                message=f"{platform.value} accounts connect through OAuth authorization",
                field="platform",
                value=platform.value,
                error_code=ErrorCode.INVALID_INPUT,
            )
        return client

    # -------------------------------------------------------------------------
    # Publishing Path
    # -------------------------------------------------------------------------

    async def ensure_valid(
        self,
        user_id: str,
        platform: SocialPlatform,
        on_refresh: Optional[Callable[[], None]] = None,
    ) -> ValidToken:
        """
        Return a usable token for the user, refreshing it when expired.

        on_refresh is called once the stored token is known to be expired,
        before the refresh request goes out.

        Raises:
            UnauthenticatedError: No credential, or expired without refresh token.
            UpstreamError: The platform rejected the refresh.
            TransportError: The platform could not be reached.
            CredentialStoreError: The store failed.
        """
        client = self.client_for(platform)

        credential = await self.store.get(user_id, platform)
        if credential is None:
            raise UnauthenticatedError(
                message=f"No {platform.value} credential, connect the account first",
                platform=platform.value,
                error_code=ErrorCode.CREDENTIAL_MISSING,
            )

        refreshed = False
        if credential.is_expired():
            if not credential.refresh_token:
                raise UnauthenticatedError(
                    message=f"{platform.value} token expired, reauthorize the account",
                    platform=platform.value,
                    error_code=ErrorCode.CREDENTIAL_EXPIRED,
                )
            if on_refresh is not None:
                on_refresh()
            credential = await self._refresh_once(user_id, platform)
            refreshed = True

        identity = credential.identity
        if not identity:
            identity = await client.fetch_identity(credential.access_token)

        return ValidToken(
            access_token=credential.access_token,
            identity=identity,
            refreshed=refreshed,
        )

    async def _refresh_once(self, user_id: str, platform: SocialPlatform) -> Credential:
        key = (user_id, platform)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(self._refresh(user_id, platform))
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug(f"Joining in-flight {platform.value} refresh")
        # Shielded so a cancelled caller does not abort the refresh for the others
        return await asyncio.shield(task)

    def _forget(self, key: RefreshKey, task: "asyncio.Task[Credential]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"{key[1].value} token refresh failed: {task.exception()!r}")

    async def _refresh(self, user_id: str, platform: SocialPlatform) -> Credential:
        current = await self.store.get(user_id, platform)
        if current is None:
            raise UnauthenticatedError(
                message=f"No {platform.value} credential, connect the account first",
                platform=platform.value,
                error_code=ErrorCode.CREDENTIAL_MISSING,
            )
        if not current.is_expired():
            return current
        if not current.refresh_token:
            raise UnauthenticatedError(
                message=f"{platform.value} token expired, reauthorize the account",
                platform=platform.value,
                error_code=ErrorCode.CREDENTIAL_EXPIRED,
            )

        refreshed = await self.client_for(platform).refresh(current)
        await self.store.put(user_id, platform, refreshed)
        return refreshed

    # -------------------------------------------------------------------------
    # Authorization Flow
    # -------------------------------------------------------------------------

    def redirect_uri(self, platform: SocialPlatform) -> str:
        if self._redirect_uri_for is None:
            raise PlatformNotConfiguredError(platform.value, message="No OAuth callback URL configured")
        return self._redirect_uri_for(platform)

    def authorize(self, user_id: str, platform: SocialPlatform) -> AuthorizeResponse:
        """
        Start the authorization flow for a platform.

        The state token (and PKCE verifier) is remembered for the calling
        user until the callback consumes it.
        """
        client = self._oauth_client(platform)
        redirect_uri = self.redirect_uri(platform)
        state = generate_state()

        code_verifier = None
        code_challenge = None
        if client.uses_pkce:
            code_verifier, code_challenge = generate_pkce_pair()

        self._states.save(
            OAuthState(
                user_id=user_id,
                platform=platform,
                state=state,
                redirect_uri=redirect_uri,
                code_verifier=code_verifier,
            )
        )
        url = client.authorization_url(redirect_uri, state=state, code_challenge=code_challenge)
        logger.info(f"Generated {platform.value} authorization URL")
        return AuthorizeResponse(authorization_url=url, state=state)

    async def connect(
        self,
        user_id: str,
        platform: SocialPlatform,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> Credential:
        """
        Complete the authorization flow from the platform callback.

        Raises:
            ValidationError: Missing or mismatched state, a denial reported
                by the platform, or a missing code.
        """
        client = self._oauth_client(platform)

        pending = self._states.consume(user_id, state) if state else None
        if pending is None or pending.platform != platform:
            raise ValidationError(
                message="Invalid or expired OAuth state",
                field="state",
                error_code=ErrorCode.INVALID_OAUTH_STATE,
            )
        if error:
            raise ValidationError(
                message=error_description or f"Authorization failed: {error}",
                error_code=ErrorCode.OAUTH_DENIED,
                details={"error": error},
            )
        if not code:
            raise ValidationError(
                message="Missing authorization code",
                field="code",
                error_code=ErrorCode.MISSING_REQUIRED_FIELD,
            )

        credential = await client.exchange_code(
            user_id,
            code,
            pending.redirect_uri,
            code_verifier=pending.code_verifier,
        )
        identity = await client.fetch_identity(credential.access_token)
        credential = credential.model_copy(update={"identity": identity})

        await self.store.put(user_id, platform, credential)
        logger.info(f"Connected {platform.value} account")
        return credential

    async def sign_in(
        self,
        user_id: str,
        platform: SocialPlatform,
        identifier: str,
        password: str,
    ) -> Credential:
        """
        Connect an app-password platform by creating a session.

        The session replaces any stored one; the password is not kept.

        Raises:
            ValidationError: The platform connects through OAuth instead.
            UpstreamError: The platform rejected the sign-in.
        """
        client = self._session_client(platform)
        credential = await client.create_session(user_id, identifier, password)
        await self.store.put(user_id, platform, credential)
        logger.info(f"Connected {platform.value} account")
        return credential

    async def status(self, user_id: str, platform: SocialPlatform) -> CredentialStatus:
        """Report whether the user can publish to the platform right now."""
        credential = await self.store.get(user_id, platform)
        if credential is None:
            return CredentialStatus(platform=platform, has_credential=False, usable=False)

        usable = not credential.is_expired() or bool(credential.refresh_token)
        return CredentialStatus(
            platform=platform,
            has_credential=True,
            usable=usable,
            created_at=credential.obtained_at_datetime,
            expires_at=credential.expires_at,
        )
