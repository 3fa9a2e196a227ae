"""Tests for the sign-in flow routes."""

from __future__ import annotations

import asyncio

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from oauthkit.config import OAuthKitSettings
from oauthkit.flow import STATE_KEY_PREFIX, OAuthManager
from oauthkit.providers import MockProvider
from oauthkit.routes import (
    MERGED_MARKER,
    create_app,
    create_oauth_router,
    render_bridge_page,
    render_error_page,
)
from oauthkit.storage import MemoryStorage


NATIVE_UA = "Mozilla/5.0 (iPhone) Despia/1.0"
MERGED = {MERGED_MARKER: "1"}


@pytest.fixture
def manager(flow_config) -> OAuthManager:
    """Manager over the fake provider."""
    return OAuthManager(flow_config, storage=MemoryStorage())


@pytest.fixture
def client(manager) -> TestClient:
    """Client for an app mounting the router."""
    app = FastAPI()
    app.include_router(create_oauth_router(manager))
    return TestClient(app, follow_redirects=False)


class TestSignInRoute:
    """Tests for GET /auth/signin."""

    def test_web_redirect(self, client, fake_provider) -> None:
        """Browsers are redirected to the authorize URL."""
        resp = client.get("/auth/signin", params={"provider": "google"})
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("https://idp.example.com/authorize")
        name, redirect_uri, _state = fake_provider.url_calls[0]
        assert name == "google"
        assert redirect_uri == "https://app.example.com/auth/callback"

    def test_native_redirect(self, client, fake_provider) -> None:
        """The native shell is sent to the secure-session opener."""
        resp = client.get("/auth/signin", headers={"User-Agent": NATIVE_UA})
        location = resp.headers["location"]
        assert location.startswith("oauth://?url=")
        assert unquote(location.split("url=", 1)[1]).startswith("https://idp.example.com/")
        assert fake_provider.url_calls[0][0] == "demo"
        assert fake_provider.url_calls[0][1] == "https://app.example.com/native-callback"

    def test_repeated_sign_ins_keep_state_bounded(self, fake_provider) -> None:
        """Anonymous sign-in requests cannot grow stored state without limit."""
        storage = MemoryStorage()
        settings = OAuthKitSettings(flow={"max_pending_states": 50})
        app = create_app(settings, provider=fake_provider, storage=storage)
        client = TestClient(app, follow_redirects=False)

        for _ in range(200):
            assert client.get("/auth/signin").status_code == 302

        state_keys = [k for k in asyncio.run(storage.keys()) if k.startswith(STATE_KEY_PREFIX)]
        assert len(state_keys) == 50

    def test_provider_failure(self, make_provider) -> None:
        """Sign-in failures answer 502 JSON."""
        from oauthkit.types import FlowConfig

        provider = make_provider(url_error=RuntimeError("idp down"))
        manager = OAuthManager(FlowConfig("https://app.example.com", "myapp", provider))
        app = FastAPI()
        app.include_router(create_oauth_router(manager))
        resp = TestClient(app, follow_redirects=False).get("/auth/signin")
        assert resp.status_code == 502
        assert resp.json()["error"] == "sign_in_failed"
        assert "idp down" in resp.json()["error_description"]


class TestWebCallbackRoute:
    """Tests for GET /auth/callback."""

    def test_bridge_page_without_params(self, client) -> None:
        """No parameters serves the fragment bridge page."""
        resp = client.get("/auth/callback")
        assert resp.status_code == 200
        assert "window.location.hash" in resp.text
        assert resp.headers["cache-control"] == "no-store"

    def test_first_hit_with_query_serves_bridge(self, client, fake_provider) -> None:
        """A query-only first hit still goes through the bridge page.

        The server sees ``?state=xyz`` of ``?state=xyz#code=abc``; the code
        only arrives once the page has merged the fragment.
        """
        resp = client.get("/auth/callback", params={"state": "xyz"})
        assert resp.status_code == 200
        assert f"{MERGED_MARKER}=1" in resp.text
        assert fake_provider.callback_calls == []

    def test_merged_query_and_fragment(self, client, fake_provider) -> None:
        """The merged request completes with query and fragment parameters."""
        resp = client.get(f"/auth/callback?state=xyz&code=abc&{MERGED_MARKER}=1")
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.example.com/auth/callback"
        assert fake_provider.callback_calls == [{"state": "xyz", "code": "abc"}]

    def test_fragment_value_wins(self, client, fake_provider) -> None:
        """Fragment entries are appended after the query and take precedence."""
        client.get(f"/auth/callback?code=stale&code=abc&{MERGED_MARKER}=1")
        assert fake_provider.callback_calls[-1]["code"] == "abc"

    def test_marker_only_serves_bridge(self, client, fake_provider) -> None:
        """A merged request without parameters shows the completion page."""
        resp = client.get(f"/auth/callback?{MERGED_MARKER}=1")
        assert resp.status_code == 200
        assert fake_provider.callback_calls == []

    def test_success_redirects(self, client, manager) -> None:
        """A successful callback redirects to the web destination."""
        resp = client.get("/auth/callback", params={"code": "abc", "state": "s", **MERGED})
        assert resp.status_code == 302
        assert resp.headers["location"] == "https://app.example.com/auth/callback"

    def test_failure_renders_error(self, client) -> None:
        """A failed callback renders the message instead of redirecting."""
        resp = client.get(
            "/auth/callback",
            params={
                "error": "access_denied",
                "error_description": "<b>No</b> thanks",
                **MERGED,
            },
        )
        assert resp.status_code == 400
        assert "&lt;b&gt;No&lt;/b&gt; thanks" in resp.text
        assert "<b>No</b>" not in resp.text


class TestNativeCallbackRoute:
    """Tests for GET /native-callback."""

    def test_success_deeplink(self, client) -> None:
        """Success redirects to the token deeplink."""
        resp = client.get("/native-callback", params={"code": "abc", **MERGED})
        assert resp.status_code == 302
        assert resp.headers["location"] == "myapp://oauth/callback?access_token=T&refresh_token=R"

    def test_failure_deeplink(self, client) -> None:
        """Failure redirects to the error deeplink."""
        resp = client.get("/native-callback", params={"error": "access_denied", **MERGED})
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.scheme == "myapp"
        assert parse_qs(location.query) == {"error": ["access_denied"]}

    def test_bridge_page(self, client) -> None:
        """No parameters serves the bridge page."""
        resp = client.get("/native-callback")
        assert resp.status_code == 200
        assert "Returning to the app" in resp.text

    def test_first_hit_with_query_serves_bridge(self, client, fake_provider) -> None:
        """Native callbacks also merge the fragment before completing."""
        resp = client.get("/native-callback", params={"code": "abc"})
        assert resp.status_code == 200
        assert fake_provider.callback_calls == []


class TestSessionRoutes:
    """Tests for /auth/session and /auth/signout."""

    def test_no_session(self, client) -> None:
        """Anonymous clients are not authenticated."""
        assert client.get("/auth/session").json() == {"authenticated": False}

    def test_session_after_callback(self, client) -> None:
        """The session is reported after a callback."""
        client.get("/auth/callback", params={"code": "abc", **MERGED})
        body = client.get("/auth/session").json()
        assert body["authenticated"] is True
        assert body["access_token"] == "T"
        assert body["user"]["id"] == "u1"

    def test_sign_out(self, client) -> None:
        """Sign-out clears the session."""
        client.get("/auth/callback", params={"code": "abc", **MERGED})
        assert client.post("/auth/signout").json() == {"success": True}
        assert client.get("/auth/session").json() == {"authenticated": False}


class TestPages:
    """Tests for the HTML renderers."""

    def test_error_page_escapes(self) -> None:
        """Messages and retry URLs are escaped."""
        page = render_error_page('<x> & "y"', retry_url='/a?b="c"')
        assert "&lt;x&gt; &amp; &quot;y&quot;" in page
        assert 'href="/a?b=&quot;c&quot;"' in page

    def test_bridge_variants(self) -> None:
        """Web and native bridge pages differ in their completion text."""
        assert "Authentication Complete" in render_bridge_page(native=False)
        assert "Returning to the app" in render_bridge_page(native=True)


class TestCreateApp:
    """Tests for create_app()."""

    def test_from_settings(self) -> None:
        """The app is wired from configuration."""
        settings = OAuthKitSettings(
            flow={"app_url": "https://app.example.com", "deeplink_scheme": "kitapp"},
            provider={"base_url": "https://idp.example.com/demo/provider"},
        )
        app = create_app(settings)
        manager = app.state.oauth_manager
        assert isinstance(manager, OAuthManager)
        assert isinstance(manager.provider, MockProvider)
        assert manager.config.deeplink_scheme == "kitapp"

        resp = TestClient(app, follow_redirects=False).get("/auth/signin")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith(
            "https://idp.example.com/demo/provider/authorize?"
        )

    def test_injected_provider_closed_on_shutdown(self, fake_provider) -> None:
        """The provider is closed with the app lifespan."""
        fake_provider.close = AsyncMock()
        app = create_app(OAuthKitSettings(), provider=fake_provider, storage=MemoryStorage())
        with TestClient(app) as client:
            assert client.get("/auth/session").json() == {"authenticated": False}
        fake_provider.close.assert_awaited_once()
