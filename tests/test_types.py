"""Tests for flow data types."""

from __future__ import annotations

import time

import pytest

from oauthkit.types import (
    AuthFailure,
    AuthSuccess,
    CallbackResult,
    FlowConfig,
    RuntimeEnvironment,
    Session,
    TokenSet,
    UserRecord,
)


class TestFlowConfig:
    """Tests for FlowConfig."""

    def test_trailing_slash_removed(self, fake_provider) -> None:
        """app_url is normalized without a trailing slash."""
        config = FlowConfig("https://app.example.com/", "myapp", fake_provider)
        assert config.app_url == "https://app.example.com"

    def test_redirect_uris(self, flow_config: FlowConfig) -> None:
        """Each environment maps to its fixed callback path."""
        assert flow_config.web_redirect_uri == "https://app.example.com/auth/callback"
        assert flow_config.native_redirect_uri == "https://app.example.com/native-callback"
        assert flow_config.redirect_uri_for(RuntimeEnvironment.WEB).endswith("/auth/callback")
        assert flow_config.redirect_uri_for(RuntimeEnvironment.NATIVE).endswith(
            "/native-callback"
        )

    def test_frozen(self, flow_config: FlowConfig) -> None:
        """FlowConfig is immutable."""
        with pytest.raises(AttributeError):
            flow_config.deeplink_scheme = "other"  # type: ignore[misc]

    def test_defaults(self, flow_config: FlowConfig) -> None:
        """Marker and verification defaults."""
        assert flow_config.native_marker == "despia"
        assert flow_config.verify_state is False
        assert flow_config.state_max_age == 600.0


class TestTokenSet:
    """Tests for TokenSet."""

    def test_expires_at_from_now(self) -> None:
        """Expiry is now plus the lifetime in milliseconds."""
        tokens = TokenSet(access_token="T", expires_in=3600)
        assert tokens.expires_at_ms(now_ms=1_000) == 3_601_000

    def test_expires_at_defaults_to_wall_clock(self) -> None:
        """Without now_ms the current time is used."""
        before = int(time.time() * 1000)
        expires_at = TokenSet(access_token="T", expires_in=60).expires_at_ms()
        after = int(time.time() * 1000)
        assert before + 60_000 <= expires_at <= after + 60_000

    def test_no_lifetime(self) -> None:
        """No lifetime means no expiry."""
        assert TokenSet(access_token="T").expires_at_ms() is None


class TestUserRecord:
    """Tests for UserRecord."""

    def test_known_fields(self) -> None:
        """Known keys map to typed attributes."""
        user = UserRecord.from_dict(
            {"id": "u1", "email": "a@b.c", "name": "A", "avatar_url": "https://x/y.png"}
        )
        assert user.id == "u1"
        assert user.email == "a@b.c"
        assert user.name == "A"
        assert user.avatar_url == "https://x/y.png"
        assert user.extra == {}

    def test_unknown_fields_kept(self) -> None:
        """Unrecognized keys land in extra and serialize back."""
        data = {"id": "u1", "email": "a@b.c", "locale": "en", "groups": ["x"]}
        user = UserRecord.from_dict(data)
        assert user.extra == {"locale": "en", "groups": ["x"]}
        assert user.to_dict() == data

    def test_sub_fallback(self) -> None:
        """OIDC ``sub`` is used when ``id`` is absent."""
        user = UserRecord.from_dict({"sub": "oidc-1"})
        assert user.id == "oidc-1"
        assert user.extra == {"sub": "oidc-1"}

    def test_numeric_id_stringified(self) -> None:
        """Numeric ids are converted to strings."""
        assert UserRecord.from_dict({"id": 42}).id == "42"


class TestSession:
    """Tests for Session."""

    def test_not_expired_without_expiry(self) -> None:
        """Sessions without expiry never expire."""
        assert Session(access_token="T", user=UserRecord(id="u")).is_expired is False

    def test_expired(self) -> None:
        """A past expiry is expired."""
        session = Session(access_token="T", user=UserRecord(id="u"), expires_at_ms=1)
        assert session.is_expired is True

    def test_to_dict(self) -> None:
        """Serialized keys."""
        session = Session(
            access_token="T",
            user=UserRecord(id="u", email="e@x"),
            refresh_token="R",
            expires_at_ms=5,
        )
        assert session.to_dict() == {
            "access_token": "T",
            "refresh_token": "R",
            "expires_at": 5,
            "user": {"id": "u", "email": "e@x"},
        }


class TestCallbackResult:
    """Tests for CallbackResult."""

    def test_success_flag(self) -> None:
        """success reflects the outcome variant."""
        ok = CallbackResult("https://app/auth/callback", AuthSuccess(TokenSet("T")))
        bad = CallbackResult("https://app/auth/callback?error=x", AuthFailure("x"))
        assert ok.success is True
        assert bad.success is False
