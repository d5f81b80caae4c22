"""Transmission JSON-RPC protocol, transport and client."""

from tremote.rpc.client import TransmissionClient
from tremote.rpc.protocol import (
    SESSION_ID_HEADER,
    RPCMethod,
    RPCRequest,
    RPCResponse,
    TransmissionHandshakeResult,
)
from tremote.rpc.transport import (
    HTTPRPCTransport,
    InMemoryRPCTransport,
    RawResponse,
    RPCTransport,
)

__all__ = [
    "SESSION_ID_HEADER",
    "HTTPRPCTransport",
    "InMemoryRPCTransport",
    "RPCMethod",
    "RPCRequest",
    "RPCResponse",
    "RPCTransport",
    "RawResponse",
    "TransmissionClient",
    "TransmissionHandshakeResult",
]
