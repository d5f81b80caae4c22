"""Transmission RPC protocol definitions.

Defines constants, request/response models and the handshake result.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from tremote.utils.exceptions import DecodingError, IncompatibleVersionError

# Protocol constants
SESSION_ID_HEADER = "X-Transmission-Session-Id"
DEFAULT_RPC_PATH = "/transmission/rpc"
RESULT_SUCCESS = "success"

# Supported RPC version range (Transmission 3.0 .. 4.0)
MIN_SUPPORTED_RPC_VERSION = 14
MAX_SUPPORTED_RPC_VERSION = 17


class RPCMethod(str, Enum):
    """RPC method names."""

    SESSION_GET = "session-get"
    SESSION_SET = "session-set"
    SESSION_STATS = "session-stats"
    FREE_SPACE = "free-space"
    TORRENT_GET = "torrent-get"
    TORRENT_SET = "torrent-set"
    TORRENT_ADD = "torrent-add"
    TORRENT_REMOVE = "torrent-remove"
    TORRENT_START = "torrent-start"
    TORRENT_STOP = "torrent-stop"
    TORRENT_VERIFY = "torrent-verify"


class RPCRequest(BaseModel):
    """RPC request body."""

    method: str = Field(..., min_length=1, description="RPC method name")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Method arguments")
    tag: int | None = Field(None, description="Correlation tag echoed by the daemon")

    def to_body(self) -> bytes:
        return json.dumps(self.model_dump(exclude_none=True)).encode("utf-8")


class RPCResponse(BaseModel):
    """RPC response body."""

    result: str = Field(..., description="'success' or a daemon error string")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Method results")
    tag: int | None = Field(None, description="Echoed correlation tag")

    @property
    def is_success(self) -> bool:
        return self.result == RESULT_SUCCESS

    @classmethod
    def from_body(cls, body: bytes) -> RPCResponse:
        """Decode a raw response body.

        Raises:
            DecodingError: Malformed JSON, missing ``result`` or non-object ``arguments``

        """
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            msg = "Response body is not valid JSON"
            raise DecodingError(msg) from e
        if not isinstance(payload, dict):
            msg = "Response body is not a JSON object"
            raise DecodingError(msg)
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            msg = f"Response is missing or has invalid fields: {fields or 'unknown'}"
            raise DecodingError(msg) from e


@dataclass(frozen=True)
class TransmissionHandshakeResult:
    """Outcome of a successful handshake with a daemon."""

    session_token: str | None
    rpc_version: int
    minimum_supported_rpc_version: int
    server_version_description: str | None = None
    is_compatible: bool = True

    def require_compatible(self) -> TransmissionHandshakeResult:
        """Return self, or raise when the daemon's version is unsupported.

        Raises:
            IncompatibleVersionError: ``is_compatible`` is False

        """
        if not self.is_compatible:
            raise IncompatibleVersionError(self.rpc_version, self.server_version_description)
        return self


def is_version_compatible(
    rpc_version: int,
    minimum_supported_rpc_version: int,
    client_min: int = MIN_SUPPORTED_RPC_VERSION,
    client_max: int = MAX_SUPPORTED_RPC_VERSION,
) -> bool:
    """True when the daemon and client version ranges overlap as required.

    The daemon must speak at least ``client_min`` and must still accept
    clients speaking ``client_max`` or lower.
    """
    return rpc_version >= client_min and minimum_supported_rpc_version <= client_max
