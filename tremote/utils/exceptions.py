"""Exception hierarchy for tremote.

Every failure the transport, trust and probe layers surface is a subclass of
:class:`TremoteError`, so callers can render context-appropriate messages via
:meth:`TremoteError.user_message` without inspecting strings.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from tremote.i18n import _

if TYPE_CHECKING:  # pragma: no cover
    from tremote.security.trust_models import TrustChallenge


class TremoteError(Exception):
    """Base exception for all tremote errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize tremote error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("Unexpected error while talking to the server.")


class TransportErrorKind(str, Enum):
    """Classes of network-level failures."""

    DNS = "dns"
    CONNECT = "connect"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TLS = "tls"


class TransportError(TremoteError):
    """DNS, connect, TLS, timeout or cancellation failures."""

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """Initialize transport error."""
        super().__init__(message or f"Transport error: {kind.value}", details)
        self.kind = kind

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        if self.kind is TransportErrorKind.TIMEOUT:
            return _("The connection timed out. Check the network or the server and try again.")
        if self.kind is TransportErrorKind.CANCELLED:
            return _("The connection check was cancelled. Please try again.")
        if self.kind is TransportErrorKind.DNS:
            return _("The server address could not be resolved.")
        if self.kind is TransportErrorKind.TLS:
            return _("A secure connection to the server could not be established.")
        return _("Could not connect to the server.")


class HTTPStatusError(TremoteError):
    """Non-2xx HTTP response other than the handled 409 renegotiation."""

    def __init__(self, status_code: int, message: str | None = None):
        """Initialize HTTP status error."""
        super().__init__(message or f"HTTP status code: {status_code}")
        self.status_code = status_code

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("The server responded with HTTP status {status}.").format(
            status=self.status_code
        )


class DecodingError(TremoteError):
    """Malformed payload or missing required fields."""

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("The server response could not be understood.")


class AuthenticationError(TremoteError):
    """Credentials were rejected (HTTP 401/403)."""

    def __init__(self, status_code: int):
        """Initialize authentication error."""
        super().__init__(f"Authentication failed with HTTP {status_code}")
        self.status_code = status_code

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("Authentication failed. Check the username and password.")


class RPCError(TremoteError):
    """Application-level failure reported by the daemon in ``result``."""

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("The server reported an error: {message}").format(message=self.message)


class TrustRejectedError(TremoteError):
    """The certificate was declined by the user or by policy."""

    def __init__(self, challenge: TrustChallenge | None = None, message: str | None = None):
        """Initialize trust rejection."""
        super().__init__(message or "Server certificate was not trusted")
        self.challenge = challenge

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("The server certificate was not trusted. The connection was cancelled.")


class TrustEvaluationError(TremoteError):
    """The trust evaluation itself could not complete."""

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("The server certificate could not be verified.")


class TrustStoreError(TremoteError):
    """Reading or writing persisted trust decisions failed."""


class MissingCredentialsError(TremoteError):
    """A password is required for the server but none is available."""

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("A password is required to connect to this server.")


class CredentialStoreError(TremoteError):
    """The secret store failed to load, save or delete credentials."""


class IncompatibleVersionError(TremoteError):
    """The daemon's RPC version is outside the supported range."""

    def __init__(self, rpc_version: int, server_version: str | None = None):
        """Initialize incompatible version error."""
        super().__init__(f"Unsupported RPC version {rpc_version}")
        self.rpc_version = rpc_version
        self.server_version = server_version

    def user_message(self) -> str:
        """Human-readable message safe to show to the user."""
        return _("This server version ({version}) is not supported.").format(
            version=self.server_version or f"RPC v{self.rpc_version}"
        )


class ValidationError(TremoteError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""
