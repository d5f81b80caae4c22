"""High-level Transmission client layered on an :class:`RPCTransport`."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from tremote.rpc.protocol import (
    MAX_SUPPORTED_RPC_VERSION,
    MIN_SUPPORTED_RPC_VERSION,
    RPCMethod,
    RPCResponse,
    TransmissionHandshakeResult,
    is_version_compatible,
)
from tremote.rpc.transport import RPCTransport
from tremote.utils.exceptions import DecodingError
from tremote.utils.logging_config import get_logger

logger = get_logger(__name__)

TorrentIds = Sequence[int | str] | int | str | None


def _int_field(arguments: dict[str, Any], name: str) -> int | None:
    value = arguments.get(name)
    if value is None:
        return None
    # bool is an int subclass and never a valid version
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Field '{name}' must be an integer"
        raise DecodingError(msg)
    return value


def _ids_argument(ids: TorrentIds) -> dict[str, Any]:
    if ids is None:
        return {}
    if isinstance(ids, (int, str)):
        return {"ids": ids}
    return {"ids": list(ids)}


class TransmissionClient:
    """Handshake and pass-through RPC calls for one daemon."""

    def __init__(
        self,
        transport: RPCTransport,
        min_rpc_version: int = MIN_SUPPORTED_RPC_VERSION,
        max_rpc_version: int = MAX_SUPPORTED_RPC_VERSION,
    ):
        if min_rpc_version > max_rpc_version:
            msg = "min_rpc_version must not exceed max_rpc_version"
            raise ValueError(msg)
        self.transport = transport
        self.min_rpc_version = min_rpc_version
        self.max_rpc_version = max_rpc_version

    async def perform_handshake(self) -> TransmissionHandshakeResult:
        """Call ``session-get`` and evaluate version compatibility.

        An unsupported version is reported through ``is_compatible``.

        Raises:
            DecodingError: ``rpc-version`` is missing or not an integer

        """
        response = await self.transport.send(RPCMethod.SESSION_GET.value)
        arguments = response.arguments

        rpc_version = _int_field(arguments, "rpc-version")
        if rpc_version is None:
            msg = "Handshake response is missing 'rpc-version'"
            raise DecodingError(msg)
        minimum = _int_field(arguments, "rpc-version-minimum")
        if minimum is None:
            minimum = rpc_version

        version = arguments.get("version")
        if version is not None and not isinstance(version, str):
            msg = "Field 'version' must be a string"
            raise DecodingError(msg)

        compatible = is_version_compatible(
            rpc_version, minimum, self.min_rpc_version, self.max_rpc_version
        )
        if not compatible:
            logger.warning(
                "Daemon RPC version %d (minimum %d) outside supported range %d-%d",
                rpc_version,
                minimum,
                self.min_rpc_version,
                self.max_rpc_version,
            )

        return TransmissionHandshakeResult(
            session_token=self.transport.session_token,
            rpc_version=rpc_version,
            minimum_supported_rpc_version=minimum,
            server_version_description=version,
            is_compatible=compatible,
        )

    async def check_server_version(self) -> TransmissionHandshakeResult:
        """Handshake and raise :class:`IncompatibleVersionError` if unsupported."""
        result = await self.perform_handshake()
        return result.require_compatible()

    async def session_get(self, fields: Iterable[str] | None = None) -> dict[str, Any]:
        arguments = {"fields": list(fields)} if fields else None
        return (await self._call(RPCMethod.SESSION_GET, arguments)).arguments

    async def session_set(self, **settings: Any) -> None:
        await self._call(RPCMethod.SESSION_SET, settings)

    async def session_stats(self) -> dict[str, Any]:
        return (await self._call(RPCMethod.SESSION_STATS)).arguments

    async def free_space(self, path: str) -> dict[str, Any]:
        return (await self._call(RPCMethod.FREE_SPACE, {"path": path})).arguments

    async def torrent_get(
        self,
        fields: Iterable[str],
        ids: TorrentIds = None,
    ) -> list[dict[str, Any]]:
        arguments = {"fields": list(fields), **_ids_argument(ids)}
        response = await self._call(RPCMethod.TORRENT_GET, arguments)
        torrents = response.arguments.get("torrents", [])
        if not isinstance(torrents, list):
            msg = "Field 'torrents' must be an array"
            raise DecodingError(msg)
        return torrents

    async def torrent_start(self, ids: TorrentIds) -> None:
        await self._call(RPCMethod.TORRENT_START, _ids_argument(ids))

    async def torrent_stop(self, ids: TorrentIds) -> None:
        await self._call(RPCMethod.TORRENT_STOP, _ids_argument(ids))

    async def _call(
        self,
        method: RPCMethod,
        arguments: dict[str, Any] | None = None,
    ) -> RPCResponse:
        return await self.transport.send(method.value, arguments)
