"""Data types for the oauthkit flow.

Provides dataclasses for flow configuration, tokens, sessions, users
and callback outcomes.
"""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union


if TYPE_CHECKING:
    from .providers import OAuthProvider


WEB_CALLBACK_PATH = "/auth/callback"
NATIVE_CALLBACK_PATH = "/native-callback"
DEFAULT_NATIVE_MARKER = "despia"

CallbackParams = dict[str, str]


class RuntimeEnvironment(str, Enum):
    """Runtime the sign-in flow is dispatched from."""

    WEB = "web"
    NATIVE = "native"


class FlowState(str, Enum):
    """State of an OAuth2 sign-in flow."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    AWAITING_CALLBACK = "awaiting_callback"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class FlowConfig:
    """Immutable configuration for one ``OAuthManager``.

    Attributes
    ----------
    app_url : str
        Base URL of the embedding application (trailing slash removed).
    deeplink_scheme : str
        Scheme the native shell registers (e.g. ``myapp``).
    provider : OAuthProvider
        The identity backend.
    native_marker : str
        Marker looked up in the client identification string.
    verify_state : bool
        Whether callbacks must carry a pending, unexpired ``state``.
    state_max_age : float
        Seconds a stored ``state`` stays valid when verification is on.
    max_pending_states : int
        Upper bound on stored ``state`` records awaiting a callback.
    """

    app_url: str
    deeplink_scheme: str
    provider: OAuthProvider
    native_marker: str = DEFAULT_NATIVE_MARKER
    verify_state: bool = False
    state_max_age: float = 600.0
    max_pending_states: int = 1000

    def __post_init__(self) -> None:
        """Normalize the application URL."""
        object.__setattr__(self, "app_url", self.app_url.rstrip("/"))

    @property
    def web_redirect_uri(self) -> str:
        """Redirect URI used from a plain browser."""
        return f"{self.app_url}{WEB_CALLBACK_PATH}"

    @property
    def native_redirect_uri(self) -> str:
        """Redirect URI used from the native shell."""
        return f"{self.app_url}{NATIVE_CALLBACK_PATH}"

    def redirect_uri_for(self, environment: RuntimeEnvironment) -> str:
        """Return the canonical redirect URI for a runtime environment."""
        if environment is RuntimeEnvironment.NATIVE:
            return self.native_redirect_uri
        return self.web_redirect_uri


@dataclass(frozen=True)
class TokenSet:
    """Tokens produced by one successful callback.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    refresh_token : str or None
        Optional refresh token.
    expires_in : int or None
        Token lifetime in seconds from issuance.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None

    def expires_at_ms(self, now_ms: int | None = None) -> int | None:
        """Compute the absolute expiry in epoch milliseconds, or None."""
        if self.expires_in is None:
            return None
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms + int(self.expires_in) * 1000


_USER_FIELDS = ("id", "email", "name", "avatar_url")


@dataclass
class UserRecord:
    """User profile returned by a provider.

    Known fields are typed; any other key from the provider's JSON is
    kept in ``extra`` so ``from_dict``/``to_dict`` round-trip losslessly.
    """

    id: str
    email: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserRecord:
        """Build a record from provider JSON.

        Parameters
        ----------
        data : dict
            User JSON. ``id`` falls back to ``sub`` (OIDC style).

        Returns
        -------
        UserRecord
            The user record.
        """
        user_id = data.get("id", data.get("sub", ""))
        extra = {k: v for k, v in data.items() if k not in _USER_FIELDS}
        return cls(
            id=str(user_id),
            email=data.get("email"),
            name=data.get("name"),
            avatar_url=data.get("avatar_url"),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to provider-shaped JSON, extension fields included."""
        result: dict[str, Any] = dict(self.extra)
        result["id"] = self.id
        for name in ("email", "name", "avatar_url"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result


@dataclass
class Session:
    """The authenticated session held by a provider.

    Attributes
    ----------
    access_token : str
        The current access token.
    user : UserRecord
        The signed-in user.
    refresh_token : str or None
        Optional refresh token.
    expires_at_ms : int or None
        Expiry in epoch milliseconds, fixed when the session was stored.
    """

    access_token: str
    user: UserRecord
    refresh_token: str | None = None
    expires_at_ms: int | None = None

    @property
    def is_expired(self) -> bool:
        """Check whether the recorded expiry has passed."""
        if self.expires_at_ms is None:
            return False
        return time.time() * 1000 > self.expires_at_ms

    def to_dict(self) -> dict[str, Any]:
        """Serialize the session for JSON responses."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at_ms,
            "user": self.user.to_dict(),
        }


@dataclass(frozen=True)
class AuthSuccess:
    """Successful callback outcome."""

    tokens: TokenSet
    user: UserRecord | None = None


@dataclass(frozen=True)
class AuthFailure:
    """Failed callback outcome with a human-readable message."""

    message: str


AuthOutcome = Union[AuthSuccess, AuthFailure]


@dataclass(frozen=True)
class SignInRequest:
    """What ``OAuthManager.sign_in`` dispatched.

    Attributes
    ----------
    provider_name : str
        Provider name passed by the caller (e.g. ``demo``).
    state : str
        The generated CSRF state.
    redirect_uri : str
        The canonical callback URI handed to the provider.
    authorize_url : str
        The provider's authorization URL.
    dispatch_url : str
        The URL navigated to: the authorize URL on the web, the
        secure-session opener URL in the native shell.
    environment : RuntimeEnvironment
        The detected runtime.
    """

    provider_name: str
    state: str
    redirect_uri: str
    authorize_url: str
    dispatch_url: str
    environment: RuntimeEnvironment


@dataclass(frozen=True)
class CallbackResult:
    """Destination and outcome of a resolved callback."""

    destination: str
    outcome: AuthOutcome

    @property
    def success(self) -> bool:
        """Whether the callback produced a session."""
        return isinstance(self.outcome, AuthSuccess)
