"""Logging utilities for backup-oauth.

Module loggers live under the ``backup_oauth`` namespace
(``backup_oauth.auth``, ``backup_oauth.store``). This module configures the
shared handler and provides redaction for anything that might carry token
material.
"""

from __future__ import annotations

import hashlib
import logging
import sys

from typing import Any


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the backup_oauth logger instance.

    Returns
    -------
    logging.Logger
        The backup_oauth logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("backup_oauth")
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Enable debug logging for the whole backup_oauth namespace."""
    set_level(logging.DEBUG)


# Field-name fragments whose values never reach a log record. Matching is
# by substring, so ``refresh_token`` and ``client_secret`` are covered.
_SENSITIVE_KEYS = frozenset(
    {
        "token",
        "secret",
        "password",
        "code",
        "verifier",
        "assertion",
        "ciphertext",
        "credential",
        "key",
        "authorization",
    }
)

_REDACTED = "[REDACTED]"


def _is_sensitive(key: object) -> bool:
    name = str(key).lower()
    return any(fragment in name for fragment in _SENSITIVE_KEYS)


def redact_sensitive_data(
    data: dict[str, Any] | list[Any] | str | None, max_depth: int = 5
) -> dict[str, Any] | list[Any] | str | None:
    """Copy a provider response body with token-bearing fields masked.

    Used before an OAuth error body is logged; providers echo parts of
    the request back (``code``, ``refresh_token``) in some error bodies.

    Parameters
    ----------
    data : dict or list or str or None
        Decoded JSON body, or any nested part of one.
    max_depth : int, optional
        Nesting levels to descend before the remainder is replaced by
        ``"[MAX_DEPTH]"`` (default: 5).

    Returns
    -------
    dict or list or str or None
        The masked copy. Scalars are returned unchanged.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            k: _REDACTED if _is_sensitive(k) else redact_sensitive_data(v, max_depth - 1)
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data


def fingerprint(value: str) -> str:
    """Return a short SHA-256 prefix identifying ``value`` in logs.

    Session keys are bearer cookies, so log lines carry this instead.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def strip_query(url: str) -> str:
    """Return ``url`` without its query string or fragment.

    Authorization URLs carry ``state`` and PKCE challenges; only the
    endpoint is logged.
    """
    return url.split("?", 1)[0].split("#", 1)[0]
