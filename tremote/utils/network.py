"""Mapping of low-level network failures onto :class:`TransportError`."""

from __future__ import annotations

import asyncio
import socket
import ssl

import aiohttp

from tremote.utils.exceptions import TransportError, TransportErrorKind


def classify_network_error(
    exc: BaseException,
    host: str | None = None,
) -> TransportError:
    """Wrap a socket, TLS or aiohttp failure in a typed transport error."""
    details = {"host": host} if host else None

    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        kind = TransportErrorKind.CANCELLED
    elif isinstance(exc, (aiohttp.ServerFingerprintMismatch, aiohttp.ClientSSLError, ssl.SSLError)):
        kind = TransportErrorKind.TLS
    elif isinstance(exc, socket.gaierror) or (
        isinstance(exc, aiohttp.ClientConnectorError)
        and isinstance(exc.os_error, socket.gaierror)
    ):
        kind = TransportErrorKind.DNS
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        kind = TransportErrorKind.TIMEOUT
    else:
        kind = TransportErrorKind.CONNECT

    message = f"{kind.value} failure"
    if host:
        message = f"{message} for {host}"
    if not isinstance(exc, (asyncio.CancelledError, asyncio.TimeoutError, TimeoutError)):
        message = f"{message}: {type(exc).__name__}"
    return TransportError(kind, message, details)
