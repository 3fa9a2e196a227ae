"""oauthkit exception hierarchy.

All oauthkit-specific exceptions inherit from OAuthKitException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class OAuthKitException(Exception):
    """Base exception for all oauthkit errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize oauthkit exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, flow_id, field, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(OAuthKitException):
    """Invalid or incomplete configuration.

    Raised when settings name an unknown provider or storage backend.
    """


class StorageUnavailableError(OAuthKitException):
    """The storage medium cannot be used.

    Raised by storage backends when no persistence medium exists
    (the equivalent of a non-browser execution context).
    """


class AuthenticationError(OAuthKitException):
    """Base exception for all authentication failures.

    Raised when an OAuth2 flow step fails: callback interpretation,
    token exchange, or state correlation.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider name or class that raised the error.
        flow_id : str, optional
            The state value of the flow that failed.
        **context : Any
            Additional context.
        """
        if provider is not None:
            context["provider"] = provider
        if flow_id is not None:
            context["flow_id"] = flow_id
        super().__init__(message, **context)
        self.provider = provider
        self.flow_id = flow_id


class ProtocolError(AuthenticationError):
    """The identity server answered the callback with an error.

    The message is the provider's ``error_description`` (or ``error``)
    verbatim, so it can be shown to the user as-is.
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize protocol error.

        Parameters
        ----------
        message : str
            The error description surfaced by the identity server.
        error : str, optional
            The OAuth2 ``error`` code (e.g. ``access_denied``).
        provider : str, optional
            The provider name.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.error = error

    def __str__(self) -> str:
        """Return the provider message without context decoration."""
        return self.message


class MissingDataError(AuthenticationError):
    """A required callback or token field is absent.

    The message names the missing field explicitly.
    """

    def __init__(self, field: str, provider: str | None = None, **context: Any) -> None:
        """Initialize missing data error.

        Parameters
        ----------
        field : str
            Name of the missing field (``code``, ``access_token``, ...).
        provider : str, optional
            The provider name.
        **context : Any
            Additional context.
        """
        super().__init__(f"Missing required field: {field}", provider=provider, **context)
        self.field = field

    def __str__(self) -> str:
        """Return the message naming the missing field."""
        return self.message


class ExchangeError(AuthenticationError):
    """The backend token exchange failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        provider: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint.
        body : str, optional
            Raw response body returned by the token endpoint.
        provider : str, optional
            The provider name.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        """Return the message, which already embeds the backend body."""
        return self.message


class StateMismatchError(AuthenticationError):
    """The callback ``state`` does not match a pending sign-in.

    Only raised when state verification is enabled.
    """


class SignInError(AuthenticationError):
    """Starting the sign-in flow failed.

    Raised by ``OAuthManager.sign_in`` when the provider cannot build an
    authorization URL. The caller must re-initiate the flow.
    """


class SessionReadError(OAuthKitException):
    """Reading the persisted session failed.

    Never propagated to callers of ``get_session``; it is logged
    and downgraded to "no session".
    """
