"""Transmission RPC transport.

Sends one JSON-RPC request per :meth:`send` call and handles the daemon's
session-id protocol: a ``409 Conflict`` carries a fresh
``X-Transmission-Session-Id`` header, the token is stored and the identical
body is sent exactly once more. Every attempt is reported to the
:class:`TransmissionLogger`.

Cancellation propagates as :class:`asyncio.CancelledError`.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, Union, runtime_checkable

import aiohttp

from tremote.observability.rpc_logger import (
    DefaultTransmissionLogger,
    LogContext,
    TransmissionLogger,
)
from tremote.rpc.protocol import DEFAULT_RPC_PATH, SESSION_ID_HEADER, RPCRequest, RPCResponse
from tremote.security.ssl_context import TLSGate
from tremote.security.trust_models import ServerIdentity
from tremote.utils.exceptions import (
    AuthenticationError,
    HTTPStatusError,
    RPCError,
    TremoteError,
    TransportError,
    TransportErrorKind,
)
from tremote.utils.logging_config import get_logger
from tremote.utils.network import classify_network_error

logger = get_logger(__name__)

CONFLICT = 409
MAX_SESSION_RETRIES = 1


@runtime_checkable
class RPCTransport(Protocol):
    """Anything that can carry an RPC request to a daemon."""

    @property
    def session_token(self) -> str | None: ...

    async def send(
        self,
        method: str,
        arguments: dict[str, Any] | None = None,
        tag: int | None = None,
    ) -> RPCResponse: ...

    async def close(self) -> None: ...


@dataclass
class RawResponse:
    """Status, headers and body of one HTTP exchange."""

    status: int
    body: bytes = b""
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class BaseRPCTransport(ABC):
    """Session-token handling, classification and logging shared by transports."""

    def __init__(
        self,
        logger: TransmissionLogger | None = None,
        log_context: LogContext | None = None,
    ):
        self.logger: TransmissionLogger = logger or DefaultTransmissionLogger()
        self.log_context = log_context or LogContext()
        self._session_token: str | None = None
        self._lock = asyncio.Lock()

    @property
    @abstractmethod
    def url(self) -> str:
        """Endpoint the requests are posted to."""

    @abstractmethod
    async def _exchange(self, body: bytes, headers: dict[str, str]) -> RawResponse:
        """Perform one HTTP exchange.

        Raises:
            TransportError: Network level failure
            TremoteError: TLS trust failures

        """

    def _auth_headers(self) -> dict[str, str]:
        return {}

    @property
    def session_token(self) -> str | None:
        return self._session_token

    def reset_session(self) -> None:
        """Drop the known session token."""
        self._session_token = None

    async def close(self) -> None:
        """Release resources held by the transport."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def send(
        self,
        method: str,
        arguments: dict[str, Any] | None = None,
        tag: int | None = None,
    ) -> RPCResponse:
        """Send one RPC call and return the decoded successful response.

        Raises:
            ValueError: ``method`` is empty
            TransportError: DNS, connect, TLS or timeout failure
            HTTPStatusError: Non-2xx status, including a repeated 409
            AuthenticationError: HTTP 401 or 403
            DecodingError: Malformed response body
            RPCError: ``result`` other than ``success``

        """
        if not method:
            msg = "RPC method must not be empty"
            raise ValueError(msg)

        body = RPCRequest(method=method, arguments=arguments or {}, tag=tag).to_body()

        async with self._lock:
            raw = await self._attempt(method, body, attempt=0)
            if raw.status == CONFLICT:
                token = raw.header(SESSION_ID_HEADER)
                if not token:
                    msg = "HTTP 409 without a session id header"
                    raise HTTPStatusError(CONFLICT, msg)
                self._session_token = token
                raw = await self._attempt(method, body, attempt=1)
                if raw.status == CONFLICT:
                    msg = "Session id rejected after renegotiation"
                    raise HTTPStatusError(CONFLICT, msg)

        return self._interpret(raw)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self._auth_headers())
        if self._session_token:
            headers[SESSION_ID_HEADER] = self._session_token
        return headers

    async def _attempt(self, method: str, body: bytes, attempt: int) -> RawResponse:
        headers = self._headers()
        context = self.log_context.merge(
            LogContext(method=method, retry_attempt=attempt, max_retries=MAX_SESSION_RETRIES)
        )
        self._safe_log(self.logger.log_request, method, headers, self.url, context)

        start = time.monotonic()
        try:
            raw = await self._exchange(body, headers)
        except asyncio.CancelledError:
            self._safe_log(
                self.logger.log_error,
                method,
                TransportError(TransportErrorKind.CANCELLED),
                context,
            )
            raise
        except TremoteError as e:
            self._safe_log(self.logger.log_error, method, e, context)
            raise

        elapsed_ms = (time.monotonic() - start) * 1000
        self._safe_log(
            self.logger.log_response,
            method,
            raw.status,
            raw.body,
            context.merge(LogContext(status_code=raw.status, duration_ms=elapsed_ms)),
        )
        return raw

    @staticmethod
    def _safe_log(func: Callable[..., None], *args: Any) -> None:
        try:
            func(*args)
        except Exception:
            logger.debug("Transmission logger raised", exc_info=True)

    @staticmethod
    def _interpret(raw: RawResponse) -> RPCResponse:
        if raw.status in (401, 403):
            raise AuthenticationError(raw.status)
        if not 200 <= raw.status < 300:
            raise HTTPStatusError(raw.status)
        response = RPCResponse.from_body(raw.body)
        if not response.is_success:
            raise RPCError(response.result)
        return response


class HTTPRPCTransport(BaseRPCTransport):
    """Transport over aiohttp, one instance per server connection."""

    def __init__(
        self,
        identity: ServerIdentity,
        path: str = DEFAULT_RPC_PATH,
        *,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        tls_gate: TLSGate | None = None,
        logger: TransmissionLogger | None = None,
        server_id: str | None = None,
        user_agent: str = "tremote/0.1",
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize HTTP RPC transport.

        Args:
            identity: Server to talk to
            path: RPC endpoint path
            username: Basic auth user, if the daemon requires one
            password: Basic auth password
            timeout: Per-request timeout in seconds
            tls_gate: Trust gate consulted before HTTPS requests
            logger: Receiver of masked request/response events
            server_id: Identifier attached to log context
            user_agent: User-Agent header value
            session: Existing aiohttp session to reuse (not closed by ``close``)

        """
        if not path.startswith("/"):
            path = f"/{path}"
        super().__init__(
            logger,
            LogContext(server_id=server_id, host=identity.host, path=path),
        )
        self.identity = identity
        self.path = path
        self.username = username
        self.password = password
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.tls_gate = tls_gate
        self.user_agent = user_agent
        self._session = session
        self._owns_session = session is None

    @property
    def url(self) -> str:
        return f"{self.identity.endpoint}{self.path}"

    def _auth_headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if self.username:
            auth = aiohttp.BasicAuth(self.username, self.password or "")
            headers["Authorization"] = auth.encode()
        return headers

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _exchange(self, body: bytes, headers: dict[str, str]) -> RawResponse:
        if self.tls_gate is not None:
            ssl_arg = await self.tls_gate.ssl_for_request()
        else:
            ssl_arg = True

        session = self._ensure_session()
        try:
            async with session.post(
                self.url,
                data=body,
                headers=headers,
                ssl=ssl_arg,
                timeout=self.timeout,
            ) as resp:
                payload = await resp.read()
                return RawResponse(resp.status, payload, dict(resp.headers))
        except aiohttp.ServerFingerprintMismatch as e:
            logger.warning("Certificate for %s changed since it was trusted", self.identity)
            if self.tls_gate is not None:
                self.tls_gate.invalidate()
            raise classify_network_error(e, self.identity.host) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise classify_network_error(e, self.identity.host) from e

    async def close(self) -> None:
        """Close the aiohttp session if this transport created it."""
        session, self._session = self._session, None
        if session is not None and self._owns_session and not session.closed:
            await session.close()


Script = Union[RawResponse, BaseException, Callable[[RPCRequest, Mapping[str, str]], RawResponse]]


class InMemoryRPCTransport(BaseRPCTransport):
    """Transport answering from a script of canned responses.

    Each exchange consumes the next item: a :class:`RawResponse`, an
    exception to raise, or a callable receiving the decoded request and the
    headers sent.
    """

    def __init__(
        self,
        script: Iterable[Script] = (),
        *,
        url: str = f"http://localhost:9091{DEFAULT_RPC_PATH}",
        logger: TransmissionLogger | None = None,
        log_context: LogContext | None = None,
    ):
        super().__init__(logger, log_context)
        self._url = url
        self.script: deque[Script] = deque(script)
        self.requests: list[tuple[RPCRequest, dict[str, str]]] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    async def _exchange(self, body: bytes, headers: dict[str, str]) -> RawResponse:
        request = RPCRequest.model_validate_json(body)
        self.requests.append((request, dict(headers)))
        await asyncio.sleep(0)

        if not self.script:
            msg = "no scripted response left"
            raise TransportError(TransportErrorKind.CONNECT, msg)

        item = self.script.popleft()
        if isinstance(item, TremoteError):
            raise item
        if isinstance(item, BaseException):
            raise classify_network_error(item) from item
        if callable(item):
            return item(request, headers)
        return item

    async def close(self) -> None:
        self.closed = True
