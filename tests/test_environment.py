"""Tests for runtime environment detection."""

from __future__ import annotations

import pytest

from oauthkit.environment import detect_environment, is_native_shell
from oauthkit.types import RuntimeEnvironment


DESKTOP_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Safari/605.1.15"
)


class TestIsNativeShell:
    """Tests for is_native_shell()."""

    @pytest.mark.parametrize(
        "user_agent",
        [
            f"{DESKTOP_UA} despia",
            f"{DESKTOP_UA} Despia/2.1",
            "DESPIA",
        ],
    )
    def test_marker_detected_case_insensitive(self, user_agent: str) -> None:
        """The marker is matched regardless of case."""
        assert is_native_shell(user_agent) is True

    @pytest.mark.parametrize("user_agent", [DESKTOP_UA, "", None, 42, b"despia"])
    def test_plain_browser_or_missing_signal(self, user_agent: object) -> None:
        """Anything without the marker, or not a string, is not native."""
        assert is_native_shell(user_agent) is False  # type: ignore[arg-type]

    def test_custom_marker(self) -> None:
        """A custom marker replaces the default."""
        assert is_native_shell("MyShell/1.0", marker="myshell") is True
        assert is_native_shell("despia", marker="myshell") is False

    def test_empty_marker_never_matches(self) -> None:
        """An empty marker does not turn every client native."""
        assert is_native_shell(DESKTOP_UA, marker="") is False


class TestDetectEnvironment:
    """Tests for detect_environment()."""

    def test_native(self) -> None:
        """Marker present yields NATIVE."""
        assert detect_environment("app despia") is RuntimeEnvironment.NATIVE

    def test_web(self) -> None:
        """Marker absent yields WEB."""
        assert detect_environment(DESKTOP_UA) is RuntimeEnvironment.WEB
        assert detect_environment(None) is RuntimeEnvironment.WEB
