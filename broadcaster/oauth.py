"""
Generic OAuth2 authorization-code client.

Each platform describes itself with an OAuthProvider (endpoints, scopes,
client authentication style, identity lookup). OAuth2Client performs the
authorization URL construction, code exchange, token refresh and identity
lookup against that description using the shared httpx client.
Platforms that sign in with an app password implement
PasswordSessionClient instead.
"""

import base64
import hashlib
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union
from urllib.parse import urlencode

import httpx

from .exceptions import ErrorCode, UpstreamError
from .http import bearer_headers, ensure_success, parse_json, transport_errors
from .types.social import Credential, SocialPlatform

logger = logging.getLogger(__name__)


def generate_pkce_pair() -> Tuple[str, str]:
    """
    Generate PKCE code verifier and S256 challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(verifier.encode()).digest()
    challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")
    return verifier, challenge


def generate_state() -> str:
    """Random CSRF state token."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class OAuthProvider:
    """
    Static description of a platform's OAuth2 endpoints.

    Attributes:
        platform: Platform the provider belongs to.
        client_id: OAuth2 client ID.
        client_secret: OAuth2 client secret.
        authorization_url: Where the user grants access.
        token_url: Code exchange and refresh endpoint.
        scopes: Requested scopes, sent space-separated.
        identity_url: Endpoint returning the token owner's profile.
        identity_extractor: Maps the profile JSON to the canonical identity.
        use_pkce: Send an S256 code challenge and verifier.
        basic_auth: Authenticate to the token endpoint with HTTP Basic
            instead of putting the secret in the form body.
    """

    platform: SocialPlatform
    client_id: str
    client_secret: str
    authorization_url: str
    token_url: str
    scopes: Tuple[str, ...]
    identity_url: str
    identity_extractor: Callable[[Dict[str, Any]], Optional[str]]
    use_pkce: bool = False
    basic_auth: bool = False


class OAuth2Client:
    """OAuth2 code flow for one platform."""

    def __init__(self, provider: OAuthProvider, http_client: httpx.AsyncClient):
        self.provider = provider
        self._http = http_client

    @property
    def platform(self) -> SocialPlatform:
        return self.provider.platform

    @property
    def uses_pkce(self) -> bool:
        return self.provider.use_pkce

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def authorization_url(
        self,
        redirect_uri: str,
        state: Optional[str] = None,
        code_challenge: Optional[str] = None,
    ) -> str:
        """
        Build the URL the user is sent to for granting access.

        Args:
            redirect_uri: Callback URL registered with the platform.
            state: CSRF token echoed back on the callback.
            code_challenge: PKCE S256 challenge, required for PKCE providers.

        Returns:
            Fully encoded authorization URL.
        """
        params = {
            "response_type": "code",
            "client_id": self.provider.client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.provider.scopes),
        }
        if state:
            params["state"] = state
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.provider.authorization_url}?{urlencode(params)}"

    # -------------------------------------------------------------------------
    # Token Endpoint
    # -------------------------------------------------------------------------

    async def exchange_code(
        self,
        user_id: str,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
    ) -> Credential:
        """
        Exchange an authorization code for a credential.

        Raises:
            UpstreamError: The token endpoint rejected the code.
            TransportError: The token endpoint could not be reached.
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        data = await self._token_request(form, "code exchange")
        logger.info(f"Exchanged authorization code for {self.platform.value} token")
        return self._credential_from_token(user_id, data)

    async def refresh(self, credential: Credential) -> Credential:
        """
        Refresh an expired credential.

        The returned credential keeps the previous refresh token when the
        platform does not rotate it.
        """
        if not credential.refresh_token:
            raise ValueError("credential has no refresh token")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        }
        data = await self._token_request(form, "token refresh")
        logger.info(f"Refreshed {self.platform.value} token")
        return self._credential_from_token(credential.user_id, data, previous=credential)

    async def _token_request(self, form: Dict[str, str], action: str) -> Dict[str, Any]:
        auth = None
        if self.provider.basic_auth:
            auth = httpx.BasicAuth(self.provider.client_id, self.provider.client_secret)
            form = {**form, "client_id": self.provider.client_id}
        else:
            form = {
                **form,
                "client_id": self.provider.client_id,
                "client_secret": self.provider.client_secret,
            }

        with transport_errors(self.platform.value, action):
            response = await self._http.post(
                self.provider.token_url,
                data=form,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        ensure_success(response, self.platform.value, action)
        return parse_json(response, self.platform.value, action)

    def _credential_from_token(
        self,
        user_id: str,
        data: Dict[str, Any],
        previous: Optional[Credential] = None,
    ) -> Credential:
        access_token = data.get("access_token")
        if not access_token:
            raise UpstreamError(
                message=f"{self.platform.value} token response has no access_token",
                platform=self.platform.value,
                internal_message="token response without access_token",
            )

        refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else None)
        refresh_expires = data.get("refresh_token_expires_in")
        if refresh_expires is None and previous and not data.get("refresh_token"):
            refresh_expires = previous.refresh_token_expires_in

        return Credential(
            platform=self.platform,
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            obtained_at=time.time(),
            expires_in=_optional_int(data.get("expires_in")),
            refresh_token_expires_in=_optional_int(refresh_expires),
            scope=data.get("scope") or (previous.scope if previous else None),
            identity=previous.identity if previous else None,
        )

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def fetch_identity(self, access_token: str) -> str:
        """
        Look up the platform identity that owns the token.

        Returns:
            Canonical identity string for the platform.
        """
        with transport_errors(self.platform.value, "identity lookup"):
            response = await self._http.get(
                self.provider.identity_url,
                headers=bearer_headers(access_token),
            )
        ensure_success(response, self.platform.value, "identity lookup")
        profile = parse_json(response, self.platform.value, "identity lookup")

        identity = self.provider.identity_extractor(profile)
        if not identity:
            raise UpstreamError(
                message=f"{self.platform.value} profile has no user id",
                platform=self.platform.value,
                error_code=ErrorCode.UPSTREAM_ERROR,
                internal_message=f"profile keys: {sorted(profile)}",
            )
        return identity


class PasswordSessionClient(ABC):
    """
    Sign-in for platforms that hand out sessions for an identifier and app
    password instead of running the authorization-code flow.

    Sessions are stored and refreshed like OAuth2 credentials; the password
    itself is never kept.
    """

    platform: SocialPlatform
    uses_pkce = False

    @abstractmethod
    async def create_session(self, user_id: str, identifier: str, password: str) -> Credential:
        """Sign in and return the new session as a credential."""

    @abstractmethod
    async def refresh(self, credential: Credential) -> Credential:
        """Exchange the session's refresh token for a new session."""

    @abstractmethod
    async def fetch_identity(self, access_token: str) -> str:
        """Canonical identity of the session owner."""


AuthClient = Union[OAuth2Client, PasswordSessionClient]


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
