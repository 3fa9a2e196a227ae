"""OAuth2 sign-in flow orchestrator.

Provides OAuthManager, which runs the same authorization-code flow for
a plain browser and for the web view embedded in a native shell. The
environment decides the redirect URI and how the authorization URL is
opened; the outcome of the callback is turned into a destination URL
(an in-app route or a deeplink back into the shell).
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import secrets
import time
import uuid

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from .deeplink import build_deeplink, build_secure_session_url
from .environment import detect_environment
from .exceptions import (
    MissingDataError,
    OAuthKitException,
    SignInError,
    StateMismatchError,
)
from .log import redact_sensitive_data, redact_url
from .types import (
    AuthFailure,
    AuthSuccess,
    CallbackResult,
    FlowState,
    RuntimeEnvironment,
    SignInRequest,
    WEB_CALLBACK_PATH,
)


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from .providers import OAuthProvider
    from .storage import Storage
    from .types import FlowConfig, Session

    Navigator = Callable[[str], "Awaitable[None] | None"]
    SessionListener = Callable[["Session | None"], "Awaitable[None] | None"]


logger = logging.getLogger("oauthkit.auth")

STATE_KEY_PREFIX = "oauth_state_"
DEEPLINK_CALLBACK_PATH = "callback"
_DEFAULT_ERROR = "Authentication failed"


def generate_state() -> str:
    """Generate an unguessable CSRF state value.

    Uses a random UUID; falls back to a millisecond timestamp joined with
    a random base36 string when UUID generation is unavailable.
    """
    try:
        return str(uuid.uuid4())
    except (NotImplementedError, OSError):
        alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
        suffix = "".join(secrets.choice(alphabet) for _ in range(13))
        return f"{int(time.time() * 1000)}-{suffix}"


def _error_message(exc: BaseException) -> str:
    """Human-readable message for a failed callback."""
    if isinstance(exc, OAuthKitException):
        return exc.message or _DEFAULT_ERROR
    return str(exc) or _DEFAULT_ERROR


class OAuthManager:
    """Orchestrates sign-in, callback handling and sign-out.

    Supports two runtimes:

    - **Web**: the authorization URL is opened with a direct redirect and
      the provider calls back to ``/auth/callback``.

    - **Native shell**: the authorization URL is wrapped in the
      ``oauth://`` opener so the shell runs it in a secure browser
      session; the provider calls back to ``/native-callback`` and the
      result is handed to the shell through a deeplink.

    Parameters
    ----------
    config : FlowConfig
        Application URL, deeplink scheme and provider.
    storage : Storage, optional
        Storage for pending CSRF state records. Without it, state is
        generated but not recorded.
    navigator : callable, optional
        Opens a URL on the client. Signature ``navigator(url) -> None``
        (sync or async). If None, the URL is only returned and logged.
    """

    def __init__(
        self,
        config: FlowConfig,
        storage: Storage | None = None,
        navigator: Navigator | None = None,
    ) -> None:
        """Initialize the flow manager."""
        self.config = config
        self.storage = storage
        self.navigator = navigator

        self._flow_state = FlowState.IDLE
        self._pending: SignInRequest | None = None
        self._issued_states: dict[str, float] = {}
        self._state_lock = asyncio.Lock()
        self._listeners: list[SessionListener] = []

    @property
    def provider(self) -> OAuthProvider:
        """The configured identity backend."""
        return self.config.provider

    @property
    def flow_state(self) -> FlowState:
        """Current state of the sign-in flow."""
        return self._flow_state

    @property
    def pending_sign_in(self) -> SignInRequest | None:
        """The last dispatched sign-in, if any."""
        return self._pending

    # ── Sign in ──────────────────────────────────────────────────────

    async def sign_in(self, provider_name: str, user_agent: str | None = None) -> SignInRequest:
        """Start the authorization-code flow.

        Parameters
        ----------
        provider_name : str
            Upstream identity provider (e.g. ``google``, ``demo``).
        user_agent : str, optional
            Client identification string used to detect the native shell.

        Returns
        -------
        SignInRequest
            The dispatched request. The flow is then awaiting its callback.

        Raises
        ------
        SignInError
            If the provider cannot produce an authorization URL or
            the navigator fails to open it.
        """
        self._flow_state = FlowState.AWAITING_REDIRECT
        self._pending = None

        environment = detect_environment(user_agent, self.config.native_marker)
        redirect_uri = self.config.redirect_uri_for(environment)

        state = generate_state()
        await self._store_state(state, redirect_uri)

        try:
            authorize_url = await self.provider.get_oauth_url(provider_name, redirect_uri, state)
        except Exception as exc:
            self._flow_state = FlowState.FAILED
            msg = f"Could not start sign-in: {_error_message(exc)}"
            raise SignInError(msg, provider=self.provider.name, flow_id=state) from exc

        if environment is RuntimeEnvironment.NATIVE:
            dispatch_url = build_secure_session_url(authorize_url)
        else:
            dispatch_url = authorize_url

        request = SignInRequest(
            provider_name=provider_name,
            state=state,
            redirect_uri=redirect_uri,
            authorize_url=authorize_url,
            dispatch_url=dispatch_url,
            environment=environment,
        )

        if self.navigator is not None:
            try:
                result = self.navigator(dispatch_url)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._flow_state = FlowState.FAILED
                msg = f"Could not open the sign-in page: {_error_message(exc)}"
                raise SignInError(msg, provider=self.provider.name, flow_id=state) from exc
        else:
            logger.info("Open this URL to sign in: %s", dispatch_url)

        self._pending = request
        self._flow_state = FlowState.AWAITING_CALLBACK
        logger.debug(
            "Sign-in %s dispatched (%s) with redirect %s",
            state,
            environment.value,
            redirect_uri,
        )
        return request

    async def _store_state(self, state: str, redirect_uri: str) -> None:
        """Record the state for later correlation. Best-effort.

        Records older than ``state_max_age`` are evicted on every write and
        at most ``max_pending_states`` are kept; at capacity the oldest
        record is dropped.
        """
        if self.storage is None:
            return
        now = time.time()
        record = json.dumps(
            {
                "state": state,
                "timestamp": int(now * 1000),
                "redirect_uri": redirect_uri,
            }
        )

        async with self._state_lock:
            evicted = [
                issued
                for issued, created_at in self._issued_states.items()
                if now - created_at > self.config.state_max_age
            ]
            for issued in evicted:
                del self._issued_states[issued]
            while self._issued_states and (
                len(self._issued_states) >= self.config.max_pending_states
            ):
                oldest = next(iter(self._issued_states))
                del self._issued_states[oldest]
                evicted.append(oldest)
            self._issued_states[state] = now

        for issued in evicted:
            await self._discard_state(issued)

        try:
            await self.storage.set(f"{STATE_KEY_PREFIX}{state}", record)
        except Exception as exc:
            self._issued_states.pop(state, None)
            logger.debug("Could not store sign-in state: %s", exc)

    async def _discard_state(self, state: str) -> None:
        """Remove a stored state record. Best-effort."""
        if self.storage is None:
            return
        try:
            await self.storage.remove(f"{STATE_KEY_PREFIX}{state}")
        except Exception as exc:
            logger.debug("Could not remove sign-in state %s: %s", state, exc)

    async def _consume_state(self, state: str | None) -> None:
        """Check a callback's state against the stored record (single use).

        Raises
        ------
        StateMismatchError
            If the state is missing, unknown or older than ``state_max_age``.
        """
        if not state:
            msg = "Missing state parameter"
            raise StateMismatchError(msg, provider=self.provider.name)
        if self.storage is None:
            msg = "State verification requires storage"
            raise StateMismatchError(msg, provider=self.provider.name, flow_id=state)

        key = f"{STATE_KEY_PREFIX}{state}"
        raw = await self.storage.get(key)
        if raw is None:
            msg = "State parameter mismatch (possible CSRF attack)"
            raise StateMismatchError(msg, provider=self.provider.name, flow_id=state)
        await self.storage.remove(key)
        self._issued_states.pop(state, None)

        try:
            record: dict[str, Any] = json.loads(raw)
        except json.JSONDecodeError as exc:
            msg = "Stored state record is corrupt"
            raise StateMismatchError(msg, provider=self.provider.name, flow_id=state) from exc

        age = time.time() - record.get("timestamp", 0) / 1000
        if record.get("state") != state or age > self.config.state_max_age:
            msg = "State expired or invalid"
            raise StateMismatchError(msg, provider=self.provider.name, flow_id=state)

    # ── Callback ─────────────────────────────────────────────────────

    async def handle_callback(self, params: Mapping[str, str], is_native: bool = False) -> str:
        """Complete the flow and return the destination URL.

        Never raises: every failure is turned into an error destination.

        Parameters
        ----------
        params : Mapping[str, str]
            Merged query and fragment parameters of the callback.
        is_native : bool
            Whether the callback landed on the native callback page.

        Returns
        -------
        str
            A deeplink (native) or the web callback URL.
        """
        result = await self.resolve_callback(params, is_native=is_native)
        return result.destination

    async def resolve_callback(
        self, params: Mapping[str, str], is_native: bool = False
    ) -> CallbackResult:
        """Complete the flow and return destination plus outcome.

        Never raises.
        """
        logger.debug(
            "Callback received (native=%s): %s",
            is_native,
            redact_sensitive_data(dict(params)),
        )
        try:
            if self.config.verify_state:
                await self._consume_state(params.get("state"))

            outcome = await self.provider.handle_callback(params)
            if not outcome.tokens.access_token:
                raise MissingDataError("access_token", provider=self.provider.name)

            await self.provider.set_session(outcome.tokens)
        except Exception as exc:
            self._flow_state = FlowState.FAILED
            message = _error_message(exc)
            logger.warning("Sign-in callback failed: %s", message)
            failure = AuthFailure(message=message)
            return CallbackResult(
                destination=self._failure_destination(message, is_native),
                outcome=failure,
            )

        self._flow_state = FlowState.RESOLVED
        self._pending = None
        destination = self._success_destination(outcome, is_native)
        logger.info("Sign-in completed via %s", self.provider.name)
        logger.debug("Callback destination: %s", redact_url(destination))

        if self._listeners:
            await self._publish(await self.get_session())
        return CallbackResult(destination=destination, outcome=outcome)

    def _success_destination(self, outcome: AuthSuccess, is_native: bool) -> str:
        if is_native:
            deeplink_params = {"access_token": outcome.tokens.access_token}
            if outcome.tokens.refresh_token:
                deeplink_params["refresh_token"] = outcome.tokens.refresh_token
            return self.create_deeplink(DEEPLINK_CALLBACK_PATH, deeplink_params)
        return f"{self.config.app_url}{WEB_CALLBACK_PATH}"

    def _failure_destination(self, message: str, is_native: bool) -> str:
        if is_native:
            return self.create_deeplink(DEEPLINK_CALLBACK_PATH, {"error": message})
        return f"{self.config.app_url}{WEB_CALLBACK_PATH}?{urlencode({'error': message})}"

    # ── Session ──────────────────────────────────────────────────────

    async def sign_out(self) -> None:
        """Sign out. Best-effort: provider failures are logged, not raised."""
        try:
            await self.provider.sign_out()
        except Exception as exc:
            logger.warning("Sign-out failed at %s: %s", self.provider.name, exc)
        self._flow_state = FlowState.IDLE
        self._pending = None
        await self._publish(None)

    async def get_session(self) -> Session | None:
        """Return the provider's current session."""
        return await self.provider.get_session()

    def create_deeplink(self, path: str, params: Mapping[str, str]) -> str:
        """Build a deeplink with the configured scheme."""
        return build_deeplink(path, params, self.config.deeplink_scheme)

    # ── Session change notifications ─────────────────────────────────

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a session-change listener.

        The listener receives the new session after a successful callback
        and None after sign-out.

        Parameters
        ----------
        listener : callable
            ``listener(session) -> None``, sync or async.

        Returns
        -------
        callable
            Call it to unsubscribe.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _publish(self, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Session listener failed")
