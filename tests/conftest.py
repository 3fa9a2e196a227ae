"""Pytest configuration and fixtures."""

from __future__ import annotations

import os

from typing import TYPE_CHECKING, Any

import pytest

from oauthkit.config import clear_settings
from oauthkit.providers import OAuthProvider
from oauthkit.storage import MemoryStorage
from oauthkit.types import AuthSuccess, FlowConfig, Session, TokenSet, UserRecord


if TYPE_CHECKING:
    from collections.abc import Generator, Mapping


@pytest.fixture(autouse=True)
def _isolated_settings(
    tmp_path: Any, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Run every test away from real config files and OAUTHKIT_* variables."""
    for name in list(os.environ):
        if name.startswith("OAUTHKIT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    yield
    clear_settings()


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(OAuthProvider):
    """In-memory provider recording every call.

    ``exchange`` maps authorization codes to the tokens they yield.
    """

    def __init__(
        self,
        exchange: dict[str, TokenSet] | None = None,
        url_error: Exception | None = None,
        sign_out_error: Exception | None = None,
    ) -> None:
        self.exchange = exchange or {}
        self.url_error = url_error
        self.sign_out_error = sign_out_error
        self.session: Session | None = None
        self.set_session_calls: list[TokenSet] = []
        self.url_calls: list[tuple[str, str, str]] = []
        self.callback_calls: list[dict[str, str]] = []

    async def get_oauth_url(self, provider_name: str, redirect_uri: str, state: str) -> str:
        self.url_calls.append((provider_name, redirect_uri, state))
        if self.url_error is not None:
            raise self.url_error
        return f"https://idp.example.com/authorize?provider={provider_name}&state={state}"

    async def handle_callback(self, params: Mapping[str, str]) -> AuthSuccess:
        from oauthkit.exceptions import ExchangeError, MissingDataError, ProtocolError

        self.callback_calls.append(dict(params))
        if params.get("error"):
            raise ProtocolError(
                params.get("error_description") or params["error"], error=params["error"]
            )
        code = params.get("code")
        if not code:
            raise MissingDataError("code")
        if code not in self.exchange:
            raise ExchangeError("Token exchange failed: invalid_grant", status_code=400)
        return AuthSuccess(tokens=self.exchange[code])

    async def set_session(self, tokens: TokenSet) -> None:
        self.set_session_calls.append(tokens)
        self.session = Session(
            access_token=tokens.access_token,
            user=UserRecord(id="u1", email="user@example.com"),
            refresh_token=tokens.refresh_token,
            expires_at_ms=tokens.expires_at_ms(),
        )

    async def get_session(self) -> Session | None:
        return self.session

    async def sign_out(self) -> None:
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.session = None


@pytest.fixture
def clock() -> FakeClock:
    """A controllable clock."""
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    """Fresh in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Provider exchanging code ``abc`` for tokens ``T``/``R``."""
    return FakeProvider(
        exchange={"abc": TokenSet(access_token="T", refresh_token="R", expires_in=3600)}
    )


@pytest.fixture
def flow_config(fake_provider: FakeProvider) -> FlowConfig:
    """Flow configuration for ``https://app.example.com`` with scheme ``myapp``."""
    return FlowConfig(
        app_url="https://app.example.com",
        deeplink_scheme="myapp",
        provider=fake_provider,
    )


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    """The FakeProvider class, for tests that need custom behavior."""
    return FakeProvider
