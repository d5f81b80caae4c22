"""SSL context management and the TLS gate used by the RPC transport.

The gate runs before the first request over HTTPS: it reads the server's
leaf certificate over a non-verifying handshake, asks the
:class:`TrustEvaluator` whether it may be used, and hands aiohttp the
matching ``ssl`` argument for the real request.
"""

from __future__ import annotations

import asyncio
import ssl
from pathlib import Path

import aiohttp

from tremote.models import TrustConfig
from tremote.security.trust_evaluator import TrustEvaluator, TrustResult
from tremote.security.trust_models import ServerIdentity, TrustDecisionHandler
from tremote.utils.exceptions import TransportError, TransportErrorKind
from tremote.utils.logging_config import get_logger
from tremote.utils.network import classify_network_error

logger = get_logger(__name__)


class SSLContextBuilder:
    """Build SSL contexts for daemon connections."""

    def __init__(self, config: TrustConfig | None = None):
        """Initialize SSL context builder."""
        self.config = config or TrustConfig()

    def create_verifying_context(self) -> ssl.SSLContext:
        """Create a context that validates the chain and hostname.

        Raises:
            ValueError: If the CA path or protocol version is invalid
            OSError: If CA certificates cannot be loaded

        """
        context = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
        context.verify_mode = ssl.CERT_REQUIRED
        context.check_hostname = True

        if self.config.ssl_ca_certificates:
            self._load_ca_certificates(context, self.config.ssl_ca_certificates)

        context.minimum_version = self._get_protocol_version(
            self.config.ssl_protocol_version
        )
        return context

    def create_inspection_context(self) -> ssl.SSLContext:
        """Create a context that accepts any certificate, for reading it only."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        # Must clear check_hostname before verify_mode
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        context.minimum_version = self._get_protocol_version(
            self.config.ssl_protocol_version
        )
        return context

    def _load_ca_certificates(self, context: ssl.SSLContext, path: str) -> None:
        ca_path = Path(path).expanduser()
        if not ca_path.exists():
            msg = f"CA certificates path does not exist: {ca_path}"
            raise ValueError(msg)

        try:
            if ca_path.is_file():
                context.load_verify_locations(cafile=str(ca_path))
            elif ca_path.is_dir():
                context.load_verify_locations(capath=str(ca_path))
            else:
                msg = f"CA certificates path is not a file or directory: {ca_path}"
                raise ValueError(msg)
        except ssl.SSLError as e:
            msg = f"Failed to load CA certificates from {ca_path}: {e}"
            raise OSError(msg) from e
        logger.debug("Loaded custom CA certificates from %s", ca_path)

    def _get_protocol_version(self, version_str: str) -> ssl.TLSVersion:
        """Map protocol version string to ssl.TLSVersion constant.

        Raises:
            ValueError: If version string is invalid

        """
        version_map = {
            "TLSv1.2": ssl.TLSVersion.TLSv1_2,
            "TLSv1.3": ssl.TLSVersion.TLSv1_3,
            "PROTOCOL_TLS": ssl.TLSVersion.MINIMUM_SUPPORTED,
        }

        if version_str not in version_map:
            msg = f"Invalid SSL protocol version: {version_str}"
            raise ValueError(msg)

        return version_map[version_str]


async def _peer_certificate(
    identity: ServerIdentity,
    context: ssl.SSLContext,
    timeout: float,
) -> bytes:
    """Complete a TLS handshake and return the DER leaf certificate."""
    writer = None
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                identity.host,
                identity.port,
                ssl=context,
                server_hostname=identity.host,
            ),
            timeout=timeout,
        )
        ssl_object = writer.get_extra_info("ssl_object")
        der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass

    if not der:
        raise TransportError(
            TransportErrorKind.TLS,
            f"No certificate presented by {identity.host}",
        )
    return der


class PeerCertificateInspector:
    """Read a server's leaf certificate without validating it."""

    def __init__(self, builder: SSLContextBuilder | None = None, timeout: float = 10.0):
        self.builder = builder or SSLContextBuilder()
        self.timeout = timeout

    async def inspect(self, identity: ServerIdentity) -> bytes:
        """Return the DER certificate presented by ``identity``.

        Raises:
            TransportError: DNS, connect, TLS or timeout failure

        """
        try:
            return await _peer_certificate(
                identity, self.builder.create_inspection_context(), self.timeout
            )
        except (OSError, asyncio.TimeoutError, ssl.SSLError) as e:
            raise classify_network_error(e, identity.host) from e


class SystemCertificateValidator:
    """Check a server against the system (or configured) CA store."""

    def __init__(self, builder: SSLContextBuilder | None = None, timeout: float = 10.0):
        self.builder = builder or SSLContextBuilder()
        self.timeout = timeout

    async def __call__(self, identity: ServerIdentity, certificate_der: bytes) -> bool:
        """True when a verifying handshake succeeds with the same certificate."""
        try:
            presented = await _peer_certificate(
                identity, self.builder.create_verifying_context(), self.timeout
            )
        except ssl.SSLCertVerificationError as e:
            logger.debug("System validation failed for %s: %s", identity, e.verify_message)
            return False
        except ssl.SSLError as e:
            logger.debug("System validation handshake failed for %s: %s", identity, e)
            return False
        except (OSError, asyncio.TimeoutError) as e:
            raise classify_network_error(e, identity.host) from e
        return presented == certificate_der


class TLSGate:
    """Per-transport TLS decision, evaluated once and cached."""

    def __init__(
        self,
        identity: ServerIdentity,
        evaluator: TrustEvaluator,
        inspector: PeerCertificateInspector | None = None,
        builder: SSLContextBuilder | None = None,
        pin_certificate: bool = False,
        decision_handler: TrustDecisionHandler | None = None,
    ):
        self.identity = identity
        self.evaluator = evaluator
        self.builder = builder or SSLContextBuilder()
        self.inspector = inspector or PeerCertificateInspector(self.builder)
        self.pin_certificate = pin_certificate
        self.decision_handler = decision_handler
        self._lock = asyncio.Lock()
        self._result: TrustResult | None = None
        self._ssl: ssl.SSLContext | aiohttp.Fingerprint | None = None

    @property
    def result(self) -> TrustResult | None:
        return self._result

    async def ssl_for_request(self) -> ssl.SSLContext | aiohttp.Fingerprint | bool:
        """The ``ssl=`` argument for the next aiohttp request.

        Raises:
            TransportError: The certificate could not be read
            TrustRejectedError: The certificate was declined
            TrustEvaluationError: The trust store failed

        """
        if not self.identity.is_secure:
            return True

        async with self._lock:
            if self._ssl is not None:
                return self._ssl

            der = await self.inspector.inspect(self.identity)
            result = await self.evaluator.evaluate(
                self.identity,
                der,
                pin_certificate=self.pin_certificate,
                decision_handler=self.decision_handler,
            )
            if result.is_pinned:
                ssl_arg: ssl.SSLContext | aiohttp.Fingerprint = aiohttp.Fingerprint(
                    result.certificate.fingerprint
                )
            else:
                ssl_arg = self.builder.create_verifying_context()

            self._result = result
            self._ssl = ssl_arg
            return ssl_arg

    def invalidate(self) -> None:
        """Forget the cached decision so the next request re-evaluates."""
        self._result = None
        self._ssl = None
