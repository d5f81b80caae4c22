"""Cancellable, single-flight connection probes."""

from tremote.probe.connection_probe import (
    ConnectionProbe,
    ConnectionState,
    ConnectionStatus,
    ProbeHandle,
    ProbeRegistry,
    ProbeRequest,
)

__all__ = [
    "ConnectionProbe",
    "ConnectionState",
    "ConnectionStatus",
    "ProbeHandle",
    "ProbeRegistry",
    "ProbeRequest",
]
