"""OAuth2 provider abstractions.

Defines the OAuthProvider ABC every identity backend implements, a
storage-backed session base class, and the MockProvider that talks to
the demo identity provider.
"""

from __future__ import annotations

import logging

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from .exceptions import (
    ConfigurationError,
    ExchangeError,
    MissingDataError,
    ProtocolError,
    SessionReadError,
    StorageUnavailableError,
)
from .types import AuthSuccess, Session, TokenSet, UserRecord


if TYPE_CHECKING:
    from collections.abc import Mapping

    from .config import ProviderSettings
    from .storage import Storage


logger = logging.getLogger("oauthkit.auth")


class OAuthProvider(ABC):
    """Abstract base class for identity backends.

    The ``redirect_uri`` handed to ``get_oauth_url`` is always one of the
    two canonical callback URIs and is the final client-side destination,
    even when the backend routes through its own server-side hop.
    """

    @property
    def name(self) -> str:
        """Provider name used in logs and error context."""
        return self.__class__.__name__

    @abstractmethod
    async def get_oauth_url(self, provider_name: str, redirect_uri: str, state: str) -> str:
        """Build the authorization URL.

        Parameters
        ----------
        provider_name : str
            Upstream identity provider requested by the caller
            (e.g. ``google``, ``demo``).
        redirect_uri : str
            Final client-side callback URI.
        state : str
            CSRF state to round-trip.

        Returns
        -------
        str
            The authorization URL.
        """

    @abstractmethod
    async def handle_callback(self, params: Mapping[str, str]) -> AuthSuccess:
        """Resolve callback parameters into tokens.

        Parameters
        ----------
        params : Mapping[str, str]
            Merged query and fragment parameters of the callback.

        Returns
        -------
        AuthSuccess
            The token set and, optionally, the user.

        Raises
        ------
        ProtocolError
            If the callback carries an ``error``.
        MissingDataError
            If the code or token is absent.
        ExchangeError
            If the backend exchange fails.
        """

    @abstractmethod
    async def set_session(self, tokens: TokenSet) -> None:
        """Persist the session for ``tokens``.

        A no-op when no persistence medium is available.
        """

    @abstractmethod
    async def get_session(self) -> Session | None:
        """Return the current session, or None.

        Read failures are reported as None, never raised.
        """

    @abstractmethod
    async def sign_out(self) -> None:
        """Clear the persisted session. Idempotent."""

    async def close(self) -> None:
        """Release provider resources. Call from app shutdown lifecycle."""


class StorageSessionProvider(OAuthProvider):
    """Provider base that keeps its session slot in a ``Storage``.

    Parameters
    ----------
    storage : Storage
        The injected storage capability.
    storage_prefix : str
        Key prefix for this provider's slot (default ``"oauth_"``).
    """

    def __init__(self, storage: Storage, storage_prefix: str = "oauth_") -> None:
        """Initialize the storage-backed provider."""
        self.storage = storage
        self.storage_prefix = storage_prefix

    @property
    def access_token_key(self) -> str:
        """Storage key of the access token."""
        return f"{self.storage_prefix}access_token"

    @property
    def refresh_token_key(self) -> str:
        """Storage key of the refresh token."""
        return f"{self.storage_prefix}refresh_token"

    @property
    def expires_at_key(self) -> str:
        """Storage key of the expiry timestamp (epoch ms)."""
        return f"{self.storage_prefix}expires_at"

    @abstractmethod
    async def fetch_user(self, access_token: str) -> UserRecord | None:
        """Look up the user owning ``access_token``.

        Returns None when the backend rejects the token.
        """

    async def set_session(self, tokens: TokenSet) -> None:
        """Store the tokens and the expiry computed now."""
        try:
            await self.storage.set(self.access_token_key, tokens.access_token)
            if tokens.refresh_token:
                await self.storage.set(self.refresh_token_key, tokens.refresh_token)
            else:
                await self.storage.remove(self.refresh_token_key)
            expires_at = tokens.expires_at_ms()
            if expires_at is not None:
                await self.storage.set(self.expires_at_key, str(expires_at))
            else:
                await self.storage.remove(self.expires_at_key)
        except StorageUnavailableError:
            logger.debug("%s: no storage medium, session not persisted", self.name)
            return
        logger.debug("%s: session stored", self.name)

    async def get_session(self) -> Session | None:
        """Read the stored session and look up its user."""
        try:
            return await self._read_session()
        except SessionReadError as exc:
            logger.warning("%s: treating session as absent: %s", self.name, exc)
            return None

    async def _read_session(self) -> Session | None:
        try:
            access_token = await self.storage.get(self.access_token_key)
            if not access_token:
                return None
            refresh_token = await self.storage.get(self.refresh_token_key)
            expires_raw = await self.storage.get(self.expires_at_key)
        except StorageUnavailableError:
            return None
        except Exception as exc:
            msg = f"Session storage read failed: {exc}"
            raise SessionReadError(msg, provider=self.name) from exc

        expires_at: int | None = None
        if expires_raw:
            try:
                expires_at = int(expires_raw)
            except ValueError as exc:
                msg = f"Corrupt session expiry: {expires_raw!r}"
                raise SessionReadError(msg, provider=self.name) from exc

        try:
            user = await self.fetch_user(access_token)
        except Exception as exc:
            msg = f"Failed to fetch user info: {exc}"
            raise SessionReadError(msg, provider=self.name) from exc

        if user is None:
            # Token rejected by the backend
            await self.sign_out()
            return None

        return Session(
            access_token=access_token,
            user=user,
            refresh_token=refresh_token or None,
            expires_at_ms=expires_at,
        )

    async def sign_out(self) -> None:
        """Remove all keys of this provider's slot."""
        try:
            await self.storage.remove(self.access_token_key)
            await self.storage.remove(self.refresh_token_key)
            await self.storage.remove(self.expires_at_key)
        except StorageUnavailableError:
            logger.debug("%s: no storage medium, nothing to clear", self.name)


class MockProvider(StorageSessionProvider):
    """Provider for the demo identity server.

    Parameters
    ----------
    storage : Storage
        Storage for the session slot.
    base_url : str
        Base URL of the demo provider (e.g. ``http://localhost:3001/demo/provider``).
    client_id : str
        Client ID sent to the demo provider.
    client_secret : str
        Client secret, sent with the exchange when non-empty.
    scopes : list[str], optional
        Requested scopes (defaults to openid, email, profile).
    timeout : float
        HTTP timeout in seconds.
    http_client : httpx.AsyncClient, optional
        Client to use instead of a lazily created one.
    storage_prefix : str
        Key prefix for the session slot.
    """

    def __init__(
        self,
        storage: Storage,
        base_url: str,
        client_id: str = "demo-client-id",
        client_secret: str = "",
        scopes: list[str] | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        storage_prefix: str = "oauth_",
    ) -> None:
        """Initialize the mock provider."""
        super().__init__(storage, storage_prefix=storage_prefix)
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = scopes or ["openid", "email", "profile"]
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client and self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def get_oauth_url(self, provider_name: str, redirect_uri: str, state: str) -> str:
        """Build the demo provider's authorization URL."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.base_url}/authorize?{urlencode(params)}"

    async def handle_callback(self, params: Mapping[str, str]) -> AuthSuccess:
        """Exchange the callback's authorization code for tokens."""
        if params.get("error"):
            raise ProtocolError(
                params.get("error_description") or params["error"],
                error=params["error"],
                provider=self.name,
            )

        code = params.get("code")
        if not code:
            raise MissingDataError("code", provider=self.name)

        data: dict[str, str] = {
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": params.get("redirect_uri", ""),
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            client = await self._get_client()
            resp = await client.post(
                f"{self.base_url}/token",
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise ExchangeError(msg, provider=self.name) from exc

        if not resp.is_success:
            msg = f"Token exchange failed: {resp.text}"
            raise ExchangeError(
                msg, status_code=resp.status_code, body=resp.text, provider=self.name
            )

        raw: dict[str, Any] = resp.json()
        if not raw.get("access_token"):
            raise MissingDataError("access_token", provider=self.name)

        return AuthSuccess(
            tokens=TokenSet(
                access_token=raw["access_token"],
                refresh_token=raw.get("refresh_token"),
                expires_in=raw.get("expires_in"),
            )
        )

    async def fetch_user(self, access_token: str) -> UserRecord | None:
        """Fetch the user from the demo provider's userinfo endpoint."""
        client = await self._get_client()
        resp = await client.get(
            f"{self.base_url}/userinfo",
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=self.timeout,
        )
        if resp.status_code == 401:
            logger.info("%s: access token rejected, clearing session", self.name)
            return None
        resp.raise_for_status()
        return UserRecord.from_dict(resp.json())


def create_provider_from_settings(
    settings: ProviderSettings,
    storage: Storage,
    http_client: httpx.AsyncClient | None = None,
) -> OAuthProvider:
    """Create an OAuthProvider instance from ProviderSettings.

    Parameters
    ----------
    settings : ProviderSettings
        The provider configuration.
    storage : Storage
        Storage for the provider's session slot.
    http_client : httpx.AsyncClient, optional
        Client the provider should use for HTTP calls.

    Returns
    -------
    OAuthProvider
        A configured provider instance.

    Raises
    ------
    ConfigurationError
        If the provider type is unknown.
    """
    provider_type = getattr(settings, "provider", "mock")
    scopes_str = getattr(settings, "scopes", "")
    scopes = [s.strip() for s in scopes_str.split() if s.strip()] if scopes_str else None

    if provider_type == "mock":
        return MockProvider(
            storage=storage,
            base_url=settings.base_url,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            scopes=scopes,
            timeout=settings.timeout,
            http_client=http_client,
            storage_prefix=settings.storage_prefix,
        )

    msg = f"Unknown provider type: {provider_type}"
    raise ConfigurationError(msg, provider=provider_type)
