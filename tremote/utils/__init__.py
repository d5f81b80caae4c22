"""Shared utilities and infrastructure.

This module contains common utilities used throughout the application.
"""

from __future__ import annotations

from tremote.utils.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecodingError,
    HTTPStatusError,
    RPCError,
    TremoteError,
    TransportError,
    TransportErrorKind,
    TrustRejectedError,
)
from tremote.utils.logging_config import get_logger, setup_logging

__all__ = [
    # Exceptions
    "AuthenticationError",
    "ConfigurationError",
    "DecodingError",
    "HTTPStatusError",
    "RPCError",
    "TransportError",
    "TransportErrorKind",
    "TremoteError",
    "TrustRejectedError",
    # Logging
    "get_logger",
    "setup_logging",
]
