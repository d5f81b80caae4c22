"""Audit trail for trust, credential and probe events.

Events carry the endpoint and a masked username only. They are written to
the ``tremote.audit`` logger, kept in a bounded in-memory history and
forwarded to an optional sink.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from tremote.observability.masking import mask
from tremote.utils.logging_config import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from tremote.security.credentials import ServerCredentialsKey
    from tremote.security.trust_models import ServerIdentity


class AuditEventType(str, Enum):
    """Kinds of audited events."""

    TRUST_ACCEPTED = "trust.accepted"
    TRUST_REJECTED = "trust.rejected"
    TRUST_AUTO_REJECTED = "trust.auto_rejected"
    TRUST_MISMATCH = "trust.mismatch"
    TRUST_DELETED = "trust.deleted"
    CREDENTIALS_SAVE_SUCCEEDED = "credentials.save_succeeded"
    CREDENTIALS_SAVE_FAILED = "credentials.save_failed"
    CREDENTIALS_LOAD_SUCCEEDED = "credentials.load_succeeded"
    CREDENTIALS_LOAD_MISSING = "credentials.load_missing"
    CREDENTIALS_LOAD_FAILED = "credentials.load_failed"
    CREDENTIALS_DELETE_SUCCEEDED = "credentials.delete_succeeded"
    CREDENTIALS_DELETE_FAILED = "credentials.delete_failed"
    PROBE_STARTED = "probe.started"
    PROBE_SUCCEEDED = "probe.succeeded"
    PROBE_FAILED = "probe.failed"
    PROBE_CANCELLED = "probe.cancelled"


_WARNING_EVENTS = {
    AuditEventType.TRUST_REJECTED,
    AuditEventType.TRUST_AUTO_REJECTED,
    AuditEventType.TRUST_MISMATCH,
    AuditEventType.CREDENTIALS_SAVE_FAILED,
    AuditEventType.CREDENTIALS_LOAD_FAILED,
    AuditEventType.CREDENTIALS_DELETE_FAILED,
    AuditEventType.PROBE_FAILED,
}


@dataclass(frozen=True)
class AuditEvent:
    """A single audited occurrence."""

    event_type: AuditEventType
    endpoint: str
    user: str | None = None
    description: str = ""
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)


AuditSink = Callable[[AuditEvent], None]


class RecordingAuditSink:
    """Sink that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def __call__(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: AuditEventType) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type is event_type]

    @property
    def types(self) -> list[AuditEventType]:
        return [e.event_type for e in self.events]

    def clear(self) -> None:
        self.events.clear()


class AuditLogger:
    """Process-wide audit log, shared by reference between components."""

    def __init__(
        self,
        sink: AuditSink | None = None,
        logger: logging.Logger | None = None,
        history_size: int = 1000,
    ):
        self.sink = sink
        self.logger = logger or get_logger("audit")
        self.history: deque[AuditEvent] = deque(maxlen=history_size)

    def record(self, event: AuditEvent) -> None:
        """Store, log and forward ``event``. Never raises."""
        self.history.append(event)
        level = logging.WARNING if event.event_type in _WARNING_EVENTS else logging.INFO
        extra = {"audit_event": event.event_type.value, "endpoint": event.endpoint}
        if event.user is not None:
            extra["user"] = event.user
        try:
            self.logger.log(
                level,
                "[%s] %s %s",
                event.event_type.value,
                event.endpoint,
                event.description,
                extra=extra,
            )
        except Exception:  # noqa: S110
            pass

        if self.sink is not None:
            try:
                self.sink(event)
            except Exception:
                self.logger.debug("Audit sink failed", exc_info=True)

    def get_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, oldest first."""
        return list(self.history)[-limit:]

    # Trust

    def trust_accepted(
        self,
        identity: ServerIdentity,
        fingerprint_hex: str,
        persisted: bool,
    ) -> None:
        self.record(
            AuditEvent(
                AuditEventType.TRUST_ACCEPTED,
                identity.endpoint,
                description="certificate accepted"
                + (" and stored" if persisted else " by system validation"),
                metadata={"fingerprint": fingerprint_hex, "persisted": persisted},
            )
        )

    def trust_rejected(self, identity: ServerIdentity, fingerprint_hex: str) -> None:
        self.record(
            AuditEvent(
                AuditEventType.TRUST_REJECTED,
                identity.endpoint,
                description="certificate rejected",
                metadata={"fingerprint": fingerprint_hex},
            )
        )

    def trust_auto_rejected(
        self,
        identity: ServerIdentity,
        fingerprint_hex: str,
        reason: str,
    ) -> None:
        self.record(
            AuditEvent(
                AuditEventType.TRUST_AUTO_REJECTED,
                identity.endpoint,
                description=f"certificate rejected automatically: {reason}",
                metadata={"fingerprint": fingerprint_hex},
            )
        )

    def trust_mismatch(
        self,
        identity: ServerIdentity,
        previous_hex: str,
        current_hex: str,
    ) -> None:
        self.record(
            AuditEvent(
                AuditEventType.TRUST_MISMATCH,
                identity.endpoint,
                description="certificate differs from the stored fingerprint",
                metadata={"previous": previous_hex, "fingerprint": current_hex},
            )
        )

    def trust_deleted(self, identity: ServerIdentity) -> None:
        self.record(
            AuditEvent(
                AuditEventType.TRUST_DELETED,
                identity.endpoint,
                description="stored certificate removed",
            )
        )

    # Credentials

    def credentials(
        self,
        event_type: AuditEventType,
        key: ServerCredentialsKey,
        reason: str | None = None,
    ) -> None:
        description = event_type.value.split(".", 1)[1].replace("_", " ")
        if reason:
            description = f"{description}: {reason}"
        self.record(
            AuditEvent(
                event_type,
                key.identity.endpoint,
                user=mask(key.username),
                description=description,
            )
        )

    # Probe

    def probe_event(
        self,
        event_type: AuditEventType,
        identity: ServerIdentity,
        server_id: str,
        description: str = "",
    ) -> None:
        self.record(
            AuditEvent(
                event_type,
                identity.endpoint,
                description=description,
                metadata={"server": server_id[:8]},
            )
        )
