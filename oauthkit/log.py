"""Logging setup and redaction helpers for oauthkit.

Modules log through ``logging.getLogger("oauthkit.<area>")``; the package
logger configured here owns the single stderr handler they propagate to.
"""

from __future__ import annotations

import logging
import sys

from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


PACKAGE_LOGGER = "oauthkit"
REDACTED = "[REDACTED]"
DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"

# Substrings of parameter names whose values never reach the log.
_SENSITIVE_KEYS = ("token", "code", "secret", "password", "authorization", "credential")


def get_logger() -> logging.Logger:
    """Return the ``oauthkit`` package logger, attaching its handler once.

    Returns
    -------
    logging.Logger
        Logger that ``oauthkit.auth``, ``oauthkit.routes`` and
        ``oauthkit.demo`` propagate to.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.WARNING)
    return logger


def configure(level: int | str = logging.WARNING, fmt: str | None = None) -> logging.Logger:
    """Apply ``LogSettings`` to the package logger.

    Parameters
    ----------
    level : int or str
        Level number or name (``"debug"``, ``"INFO"``...).
    fmt : str, optional
        ``logging.Formatter`` format string for the package handlers.

    Returns
    -------
    logging.Logger
        The configured logger.
    """
    logger = get_logger()
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    if fmt:
        formatter = logging.Formatter(fmt)
        for handler in logger.handlers:
            handler.setFormatter(formatter)
    return logger


def _is_sensitive(key: Any) -> bool:
    name = str(key).lower()
    return any(marker in name for marker in _SENSITIVE_KEYS)


def redact_sensitive_data(data: Any) -> Any:
    """Copy callback parameters or payloads with secret values masked.

    Mappings are walked recursively (lists included); values under a
    sensitive key become ``[REDACTED]`` whatever their type.
    """
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive_data(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item) for item in data]
    return data


def redact_url(url: str) -> str:
    """Mask sensitive query values of a URL such as a token deeplink."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    pairs = [
        (key, REDACTED if _is_sensitive(key) else value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(pairs, safe="[]")))
