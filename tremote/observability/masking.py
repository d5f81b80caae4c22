"""Helpers that hide secrets before they reach a log line."""

from __future__ import annotations

from collections.abc import Mapping

MASK = "••••"
EMPTY = "<empty>"

AUTHORIZATION_HEADER = "Authorization"
SESSION_ID_HEADER = "X-Transmission-Session-Id"


def mask(value: str, visible_count: int = 1) -> str:
    """Keep ``visible_count`` characters at each end and hide the rest.

    >>> mask("password")
    'p••••d'
    """
    if len(value) <= visible_count * 2:
        return EMPTY if not value else MASK
    return f"{value[:visible_count]}{MASK}{value[-visible_count:]}"


def mask_auth_header(header: str) -> str:
    """Mask an ``Authorization`` value, keeping only the scheme name.

    Base64 decodes in independent 4-character groups, so no part of the
    credentials is kept.

    >>> mask_auth_header("Basic dXNlcjpwYXNzd29yZA==")
    'Basic ••••'
    """
    parts = header.split(None, 1)
    if len(parts) != 2:
        return MASK
    scheme, _credentials = parts
    return f"{scheme} {MASK}"


def mask_session_token(token: str) -> str:
    """Mask a Transmission session id."""
    return mask(token, visible_count=4)


def mask_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return a copy of ``headers`` with credentials and session ids masked."""
    masked: dict[str, str] = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered == AUTHORIZATION_HEADER.lower():
            masked[name] = mask_auth_header(value)
        elif lowered == SESSION_ID_HEADER.lower():
            masked[name] = mask_session_token(value)
        else:
            masked[name] = value
    return masked
