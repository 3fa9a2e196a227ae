"""Deeplink and callback URL helpers.

Builds the scheme-qualified deeplinks that hand control back to the
native shell, the ``oauth://`` opener URL that asks the shell for a
secure browser session, and merges callback query/fragment parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, quote, urlencode, urlsplit


if TYPE_CHECKING:
    from collections.abc import Mapping


SECURE_SESSION_PREFIX = "oauth://"


def build_deeplink(path: str, params: Mapping[str, str], scheme: str) -> str:
    """Build a deeplink that closes the native browser session.

    Parameters
    ----------
    path : str
        Route inside the shell. One leading slash is stripped.
    params : Mapping[str, str]
        Query parameters, form-urlencoded in insertion order.
    scheme : str
        The app's registered scheme (e.g. ``myapp``).

    Returns
    -------
    str
        ``{scheme}://oauth/{path}?{params}``.
    """
    clean_path = path[1:] if path.startswith("/") else path
    return f"{scheme}://oauth/{clean_path}?{urlencode(dict(params))}"


def build_secure_session_url(url: str) -> str:
    """Wrap an authorization URL for the native secure-session opener.

    The ``oauth://`` prefix tells the shell to open ``url`` in an isolated
    OS browser session instead of the embedded web view.
    """
    return f"{SECURE_SESSION_PREFIX}?url={quote(url, safe='')}"


def merge_callback_params(query: str = "", fragment: str = "") -> dict[str, str]:
    """Flatten callback query and fragment parameters into one mapping.

    Parameters
    ----------
    query : str
        Raw query string (without ``?``).
    fragment : str
        Raw fragment (with or without the leading ``#``).

    Returns
    -------
    dict[str, str]
        Merged parameters; fragment entries are applied last.
    """
    params: dict[str, str] = dict(parse_qsl(query, keep_blank_values=True))
    params.update(parse_qsl(fragment.lstrip("#"), keep_blank_values=True))
    return params


def parse_callback_url(url: str) -> dict[str, str]:
    """Extract callback parameters from a full callback URL."""
    parts = urlsplit(url)
    return merge_callback_params(parts.query, parts.fragment)
