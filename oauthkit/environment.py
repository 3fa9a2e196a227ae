"""Runtime environment detection.

The native shell identifies itself with a marker in the client
identification string (the HTTP ``User-Agent``). Anything else is
treated as a plain browser.
"""

from __future__ import annotations

from .types import DEFAULT_NATIVE_MARKER, RuntimeEnvironment


def is_native_shell(user_agent: str | None, marker: str = DEFAULT_NATIVE_MARKER) -> bool:
    """Check whether the client is the native web-view shell.

    Parameters
    ----------
    user_agent : str or None
        The client identification string. None when unavailable
        (e.g. a non-browser execution context).
    marker : str
        Marker to look for, matched case-insensitively.

    Returns
    -------
    bool
        True iff the marker occurs in ``user_agent``. Never raises.
    """
    if not isinstance(user_agent, str) or not user_agent or not marker:
        return False
    return marker.lower() in user_agent.lower()


def detect_environment(
    user_agent: str | None, marker: str = DEFAULT_NATIVE_MARKER
) -> RuntimeEnvironment:
    """Classify the client as ``NATIVE`` or ``WEB``."""
    if is_native_shell(user_agent, marker):
        return RuntimeEnvironment.NATIVE
    return RuntimeEnvironment.WEB
