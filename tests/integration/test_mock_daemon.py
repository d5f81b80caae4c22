"""End-to-end tests against a mock Transmission daemon served by aiohttp."""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass, field

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from tremote.models import RPCConfig, ServerConfig
from tremote.probe.connection_probe import (
    ConnectionProbe,
    ConnectionState,
    ProbeRegistry,
    ProbeRequest,
)
from tremote.rpc.client import TransmissionClient
from tremote.rpc.protocol import SESSION_ID_HEADER
from tremote.rpc.transport import HTTPRPCTransport
from tremote.security.credentials import InMemoryCredentialStore
from tremote.security.trust_models import ServerIdentity
from tremote.utils.exceptions import (
    AuthenticationError,
    DecodingError,
    HTTPStatusError,
    TransportError,
    TransportErrorKind,
)

pytestmark = [pytest.mark.integration, pytest.mark.protocols]


@dataclass
class MockDaemon:
    """Minimal Transmission RPC endpoint."""

    token: str = "abc123"
    mode: str = "normal"
    rpc_version: int = 17
    delay: float = 0.0
    requests: list[dict[str, str]] = field(default_factory=list)
    port: int = 0

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(dict(request.headers))
        await request.read()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.mode == "unauthorized":
            return web.Response(status=401)
        if self.mode == "always_conflict" or request.headers.get(SESSION_ID_HEADER) != self.token:
            return web.Response(status=409, headers={SESSION_ID_HEADER: self.token})
        if self.mode == "garbage":
            return web.Response(text="<html>proxy error</html>", content_type="text/html")
        return web.json_response(
            {
                "result": "success",
                "arguments": {
                    "rpc-version": self.rpc_version,
                    "rpc-version-minimum": 14,
                    "version": "4.0.5 (a6fe2a64aa)",
                },
            }
        )


@pytest_asyncio.fixture
async def daemon():
    mock = MockDaemon()
    app = web.Application()
    app.router.add_post("/transmission/rpc", mock.handle)
    server = test_utils.TestServer(app, host="127.0.0.1")
    await server.start_server()
    mock.port = server.port
    try:
        yield mock
    finally:
        await server.close()


def _transport(daemon: MockDaemon, **kwargs) -> HTTPRPCTransport:
    return HTTPRPCTransport(ServerIdentity("127.0.0.1", daemon.port, False), **kwargs)


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_handshake_negotiates_session(daemon):
    async with _transport(daemon) as transport:
        result = await TransmissionClient(transport).perform_handshake()

    assert result.session_token == "abc123"
    assert result.rpc_version == 17
    assert result.is_compatible
    assert len(daemon.requests) == 2
    assert SESSION_ID_HEADER not in daemon.requests[0]
    assert daemon.requests[1][SESSION_ID_HEADER] == "abc123"


@pytest.mark.asyncio
async def test_basic_auth_header_is_sent(daemon):
    async with _transport(daemon, username="admin", password="secret") as transport:
        await transport.send("session-get")

    expected = aiohttp.BasicAuth("admin", "secret").encode()
    assert daemon.requests[-1]["Authorization"] == expected
    assert daemon.requests[-1]["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_repeated_conflict(daemon):
    daemon.mode = "always_conflict"

    async with _transport(daemon) as transport:
        with pytest.raises(HTTPStatusError) as exc_info:
            await transport.send("session-get")

    assert exc_info.value.status_code == 409
    assert len(daemon.requests) == 2


@pytest.mark.asyncio
async def test_unauthorized(daemon):
    daemon.mode = "unauthorized"

    async with _transport(daemon) as transport:
        with pytest.raises(AuthenticationError):
            await transport.send("session-get")


@pytest.mark.asyncio
async def test_non_json_response(daemon):
    daemon.mode = "garbage"

    async with _transport(daemon) as transport:
        with pytest.raises(DecodingError):
            await transport.send("session-get")


@pytest.mark.asyncio
async def test_timeout(daemon):
    daemon.delay = 1.0

    async with _transport(daemon, timeout=0.2) as transport:
        with pytest.raises(TransportError) as exc_info:
            await transport.send("session-get")

    assert exc_info.value.kind is TransportErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_connection_refused():
    identity = ServerIdentity("127.0.0.1", _unused_port(), False)

    async with HTTPRPCTransport(identity, timeout=5.0) as transport:
        with pytest.raises(TransportError) as exc_info:
            await transport.send("session-get")

    assert exc_info.value.kind is TransportErrorKind.CONNECT


@pytest.mark.asyncio
async def test_probe_registry_against_daemon(daemon, audit):
    server = ServerConfig(host="127.0.0.1", port=daemon.port, username="admin")
    credentials = InMemoryCredentialStore({server.credentials_key: "secret"}, audit=audit)
    registry = ProbeRegistry(
        ConnectionProbe(credential_store=credentials, rpc_config=RPCConfig(), audit=audit)
    )

    handle = registry.start(ProbeRequest(server))
    result = await handle.result()

    status = registry.status(server.id)
    assert status.state is ConnectionState.CONNECTED
    assert status.handshake == result
    assert result.session_token == "abc123"
    assert daemon.requests[-1]["Authorization"] == aiohttp.BasicAuth("admin", "secret").encode()


@pytest.mark.asyncio
async def test_incompatible_daemon_reports_without_raising(daemon, audit):
    daemon.rpc_version = 12
    server = ServerConfig(host="127.0.0.1", port=daemon.port)
    registry = ProbeRegistry(ConnectionProbe(audit=audit))

    result = await registry.start(ProbeRequest(server)).result()

    assert not result.is_compatible
    assert registry.status(server.id).state is ConnectionState.CONNECTED
