"""Value types shared by the trust store, evaluator and prompt coordinator."""

from __future__ import annotations

import hashlib
import ipaddress
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cryptography import x509
from cryptography.x509.oid import NameOID


@dataclass(frozen=True, eq=False)
class ServerIdentity:
    """Natural key of a server: host, port and whether TLS is used.

    Two identities are equal when the port and scheme match and the hosts
    match case-insensitively.
    """

    host: str
    port: int
    is_secure: bool

    def __post_init__(self) -> None:
        if not self.host:
            msg = "host must not be empty"
            raise ValueError(msg)
        if not 0 < self.port < 65536:
            msg = f"port out of range: {self.port}"
            raise ValueError(msg)

    def _key(self) -> tuple[str, int, bool]:
        return (self.host.lower(), self.port, self.is_secure)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServerIdentity):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    @property
    def scheme(self) -> str:
        return "https" if self.is_secure else "http"

    @property
    def storage_key(self) -> str:
        """Key used by persisted trust state: ``host:port:true|false``."""
        secure = "true" if self.is_secure else "false"
        return f"{self.host.lower()}:{self.port}:{secure}"

    @property
    def url_host(self) -> str:
        """Host as written in a URL authority; IPv6 literals are bracketed."""
        try:
            address = ipaddress.ip_address(self.host)
        except ValueError:
            return self.host
        return f"[{self.host}]" if address.version == 6 else self.host

    @property
    def address(self) -> str:
        """``host:port`` for display."""
        return f"{self.url_host}:{self.port}"

    @property
    def endpoint(self) -> str:
        return f"{self.scheme}://{self.address}"

    @classmethod
    def from_storage_key(cls, key: str) -> ServerIdentity:
        """Inverse of :attr:`storage_key`."""
        host, port, secure = key.rsplit(":", 2)
        if secure not in ("true", "false"):
            msg = f"Invalid identity key: {key}"
            raise ValueError(msg)
        return cls(host=host, port=int(port), is_secure=secure == "true")

    def __str__(self) -> str:
        return self.endpoint


def fingerprint_of(der: bytes) -> bytes:
    """SHA-256 digest of a DER-encoded certificate."""
    return hashlib.sha256(der).digest()


def format_fingerprint(fingerprint_hex: str) -> str:
    """Colon-separated upper-case form used for display."""
    upper = fingerprint_hex.upper()
    return ":".join(upper[i : i + 2] for i in range(0, len(upper), 2))


@dataclass(frozen=True)
class CertificateInfo:
    """Facts about a peer certificate taken from the TLS handshake."""

    fingerprint: bytes
    common_name: str | None = None
    organization: str | None = None
    not_valid_before: datetime | None = None
    not_valid_after: datetime | None = None

    @property
    def fingerprint_hex(self) -> str:
        return self.fingerprint.hex()

    @classmethod
    def from_der(cls, der: bytes) -> CertificateInfo:
        """Build from a DER leaf certificate.

        The fingerprint is always computed. Subject fields are filled in when
        the certificate parses.
        """
        fingerprint = fingerprint_of(der)
        try:
            cert = x509.load_der_x509_certificate(der)
        except ValueError:
            return cls(fingerprint=fingerprint)

        return cls(
            fingerprint=fingerprint,
            common_name=_name_attribute(cert.subject, NameOID.COMMON_NAME),
            organization=_name_attribute(cert.subject, NameOID.ORGANIZATION_NAME),
            not_valid_before=cert.not_valid_before_utc,
            not_valid_after=cert.not_valid_after_utc,
        )


def _name_attribute(name: x509.Name, oid: x509.ObjectIdentifier) -> str | None:
    attributes = name.get_attributes_for_oid(oid)
    if not attributes:
        return None
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8", "replace")


class ChallengeReason(str, Enum):
    """Why a certificate needs a decision."""

    UNTRUSTED_CERTIFICATE = "untrusted_certificate"
    FINGERPRINT_MISMATCH = "fingerprint_mismatch"


@dataclass(frozen=True)
class TrustChallenge:
    """A pending decision about an unrecognized certificate."""

    identity: ServerIdentity
    certificate: CertificateInfo
    reason: ChallengeReason = ChallengeReason.UNTRUSTED_CERTIFICATE
    previous_fingerprint: str | None = None


class TrustDecision(str, Enum):
    """Answer to a :class:`TrustChallenge`."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"


TrustDecisionHandler = Callable[[TrustChallenge], Awaitable[TrustDecision]]
