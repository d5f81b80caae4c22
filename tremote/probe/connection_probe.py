"""Connection probe: can we reach this daemon, and is it compatible?

A probe resolves credentials, opens a transport whose TLS gate consults the
trust evaluator, runs the ``session-get`` handshake and reports a
:class:`TransmissionHandshakeResult`. :class:`ProbeRegistry` keeps at most one
probe in flight per server id and the resulting :class:`ConnectionStatus`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from tremote.models import RPCConfig, ServerConfig, TrustConfig
from tremote.observability.audit import AuditEventType, AuditLogger
from tremote.observability.rpc_logger import (
    DefaultTransmissionLogger,
    NoOpTransmissionLogger,
    TransmissionLogger,
)
from tremote.rpc.client import TransmissionClient
from tremote.rpc.protocol import TransmissionHandshakeResult
from tremote.rpc.transport import HTTPRPCTransport, RPCTransport
from tremote.security.credentials import CredentialStore
from tremote.security.ssl_context import (
    PeerCertificateInspector,
    SSLContextBuilder,
    SystemCertificateValidator,
    TLSGate,
)
from tremote.security.trust_evaluator import TrustEvaluator
from tremote.security.trust_models import TrustDecisionHandler
from tremote.security.trust_store import InMemoryTrustStore
from tremote.utils.exceptions import (
    CredentialStoreError,
    MissingCredentialsError,
    TransportError,
    TransportErrorKind,
)
from tremote.utils.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)

TransportFactory = Callable[
    [ServerConfig, str | None, TrustDecisionHandler | None], RPCTransport
]


class ConnectionState(str, Enum):
    """Lifecycle of a server's connection status."""

    IDLE = "idle"
    PROBING = "probing"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionStatus:
    """Latest known connection status of one server."""

    state: ConnectionState = ConnectionState.IDLE
    handshake: TransmissionHandshakeResult | None = None
    error: BaseException | None = None

    @classmethod
    def idle(cls) -> ConnectionStatus:
        return cls()

    @classmethod
    def probing(cls) -> ConnectionStatus:
        return cls(ConnectionState.PROBING)

    @classmethod
    def connected(cls, handshake: TransmissionHandshakeResult) -> ConnectionStatus:
        return cls(ConnectionState.CONNECTED, handshake=handshake)

    @classmethod
    def failed(cls, error: BaseException) -> ConnectionStatus:
        return cls(ConnectionState.FAILED, error=error)


@dataclass(frozen=True)
class ProbeRequest:
    """What to probe, with an optional explicit password."""

    server: ServerConfig
    password: str | None = field(default=None, repr=False)


class ConnectionProbe:
    """Performs single probes. Holds no per-server state."""

    def __init__(
        self,
        trust_evaluator: TrustEvaluator | None = None,
        credential_store: CredentialStore | None = None,
        transport_factory: TransportFactory | None = None,
        rpc_config: RPCConfig | None = None,
        trust_config: TrustConfig | None = None,
        audit: AuditLogger | None = None,
        transmission_logger: TransmissionLogger | None = None,
    ):
        """Initialize connection probe.

        Args:
            trust_evaluator: Gate for HTTPS servers (in-memory store if omitted)
            credential_store: Where stored passwords are looked up
            transport_factory: Builds a transport per probe (HTTP by default)
            rpc_config: Timeouts and supported version range
            trust_config: TLS settings for the default transport
            audit: Audit log receiving probe events
            transmission_logger: Receiver of masked RPC logs

        """
        self.rpc_config = rpc_config or RPCConfig()
        self.trust_config = trust_config or TrustConfig()
        self.audit = audit or AuditLogger()
        self.ssl_builder = SSLContextBuilder(self.trust_config)
        self.trust_evaluator = trust_evaluator or TrustEvaluator(
            InMemoryTrustStore(),
            SystemCertificateValidator(self.ssl_builder, self.trust_config.inspect_timeout),
            audit=self.audit,
        )
        self.credential_store = credential_store
        self.transport_factory = transport_factory or self._default_transport
        if transmission_logger is not None:
            self.transmission_logger = transmission_logger
        elif self.rpc_config.enable_logging:
            self.transmission_logger = DefaultTransmissionLogger()
        else:
            self.transmission_logger = NoOpTransmissionLogger()

    def _default_transport(
        self,
        server: ServerConfig,
        password: str | None,
        trust_handler: TrustDecisionHandler | None,
    ) -> RPCTransport:
        identity = server.identity
        gate = None
        if identity.is_secure:
            gate = TLSGate(
                identity,
                self.trust_evaluator,
                inspector=PeerCertificateInspector(
                    self.ssl_builder, self.trust_config.inspect_timeout
                ),
                builder=self.ssl_builder,
                pin_certificate=server.pin_certificate,
                decision_handler=trust_handler,
            )
        return HTTPRPCTransport(
            identity,
            server.path,
            username=server.username,
            password=password,
            timeout=self.rpc_config.request_timeout,
            tls_gate=gate,
            logger=self.transmission_logger,
            server_id=server.id,
            user_agent=self.rpc_config.user_agent,
        )

    async def resolve_password(
        self,
        server: ServerConfig,
        password: str | None = None,
    ) -> str | None:
        """Pick the password for ``server``.

        An explicit password wins, then the credential store. Servers without
        a username need no password.

        Raises:
            MissingCredentialsError: A username is set but no password is available

        """
        if password is not None:
            return password

        key = server.credentials_key
        if key is None:
            return None

        if self.credential_store is None:
            msg = f"No password available for {server.display_address}"
            raise MissingCredentialsError(msg)

        try:
            credentials = await self.credential_store.load(key)
        except CredentialStoreError as e:
            msg = f"Stored password for {server.display_address} could not be read"
            raise MissingCredentialsError(msg) from e

        if credentials is None:
            msg = f"No password stored for {server.display_address}"
            raise MissingCredentialsError(msg)
        return credentials.password

    async def run(
        self,
        request: ProbeRequest,
        trust_handler: TrustDecisionHandler | None = None,
    ) -> TransmissionHandshakeResult:
        """Run one probe to completion.

        Incompatible versions are returned with ``is_compatible=False``.

        Raises:
            MissingCredentialsError: Password required but absent
            TrustRejectedError: The server certificate was declined
            TremoteError: Any transport failure, unchanged

        """
        server = request.server
        identity = server.identity
        self.audit.probe_event(AuditEventType.PROBE_STARTED, identity, server.id)

        try:
            with LoggingContext(
                "probe",
                logger=logger,
                server=server.id[:8],
                endpoint=identity.endpoint,
            ):
                password = await self.resolve_password(server, request.password)
                transport = self.transport_factory(server, password, trust_handler)
                try:
                    client = TransmissionClient(
                        transport,
                        self.rpc_config.min_rpc_version,
                        self.rpc_config.max_rpc_version,
                    )
                    result = await client.perform_handshake()
                finally:
                    await transport.close()
        except asyncio.CancelledError:
            self.audit.probe_event(AuditEventType.PROBE_CANCELLED, identity, server.id)
            raise
        except Exception as e:
            self.audit.probe_event(
                AuditEventType.PROBE_FAILED, identity, server.id, type(e).__name__
            )
            raise

        self.audit.probe_event(
            AuditEventType.PROBE_SUCCEEDED,
            identity,
            server.id,
            f"rpc-version {result.rpc_version}"
            + ("" if result.is_compatible else " (incompatible)"),
        )
        return result


class ProbeHandle:
    """Cancellation handle for one probe execution."""

    def __init__(self, server_id: str):
        self.server_id = server_id
        self.task: asyncio.Task[TransmissionHandshakeResult] | None = None

    def cancel(self) -> None:
        """Cancel the probe. Calling it again is a no-op."""
        if self.task is not None and not self.task.done():
            self.task.cancel()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    @property
    def cancelled(self) -> bool:
        return self.task is not None and self.task.cancelled()

    async def result(self) -> TransmissionHandshakeResult:
        """Wait for the outcome.

        Raises:
            TransportError: With kind ``cancelled`` if the probe was cancelled
            TremoteError: Whatever the probe failed with

        """
        if self.task is None:
            raise TransportError(TransportErrorKind.CANCELLED, "Probe was never started")
        await asyncio.wait({self.task})
        if self.task.cancelled():
            raise TransportError(TransportErrorKind.CANCELLED, "Probe was cancelled")
        return self.task.result()


def _retrieve_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class ProbeRegistry:
    """Single-flight probes and connection status per server id."""

    def __init__(self, probe: ConnectionProbe):
        self.probe = probe
        self._handles: dict[str, ProbeHandle] = {}
        self._statuses: dict[str, ConnectionStatus] = {}

    def status(self, server_id: str) -> ConnectionStatus:
        return self._statuses.get(server_id, ConnectionStatus.idle())

    def statuses(self) -> dict[str, ConnectionStatus]:
        return dict(self._statuses)

    def current(self, server_id: str) -> ProbeHandle | None:
        return self._handles.get(server_id)

    def start(
        self,
        request: ProbeRequest,
        trust_handler: TrustDecisionHandler | None = None,
    ) -> ProbeHandle:
        """Start a probe for ``request.server.id``, cancelling any previous one."""
        server_id = request.server.id
        previous = self._handles.pop(server_id, None)
        if previous is not None:
            logger.debug("Superseding probe for server %s", server_id[:8])
            previous.cancel()

        handle = ProbeHandle(server_id)
        self._handles[server_id] = handle
        self._statuses[server_id] = ConnectionStatus.probing()
        handle.task = asyncio.create_task(self._execute(handle, request, trust_handler))
        handle.task.add_done_callback(_retrieve_exception)
        return handle

    async def _execute(
        self,
        handle: ProbeHandle,
        request: ProbeRequest,
        trust_handler: TrustDecisionHandler | None,
    ) -> TransmissionHandshakeResult:
        try:
            result = await self.probe.run(request, trust_handler)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._handles.get(handle.server_id) is handle:
                self._statuses[handle.server_id] = ConnectionStatus.failed(e)
            raise

        if self._handles.get(handle.server_id) is handle:
            self._statuses[handle.server_id] = ConnectionStatus.connected(result)
        return result

    def cancel(self, server_id: str) -> None:
        """Cancel the in-flight probe for ``server_id``.

        The status becomes ``failed(cancelled)``. Idempotent.
        """
        handle = self._handles.get(server_id)
        if handle is None or handle.done:
            return
        handle.cancel()
        self._statuses[server_id] = ConnectionStatus.failed(
            TransportError(TransportErrorKind.CANCELLED, "Probe was cancelled")
        )

    def teardown(self, server_id: str) -> None:
        """Cancel any probe and forget the server's status (back to idle)."""
        handle = self._handles.pop(server_id, None)
        if handle is not None:
            handle.cancel()
        self._statuses.pop(server_id, None)

    async def shutdown(self) -> None:
        """Tear down every server and wait for cancelled probes to finish."""
        tasks = [h.task for h in self._handles.values() if h.task is not None]
        for server_id in list(self._handles):
            self.teardown(server_id)
        if tasks:
            await asyncio.wait(tasks)
