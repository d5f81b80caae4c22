"""Masked RPC logging and audit trail."""

from tremote.observability.audit import (
    AuditEvent,
    AuditEventType,
    AuditLogger,
    RecordingAuditSink,
)
from tremote.observability.masking import mask, mask_auth_header, mask_session_token
from tremote.observability.rpc_logger import (
    DefaultTransmissionLogger,
    LogContext,
    NoOpTransmissionLogger,
    TransmissionLogger,
)

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "DefaultTransmissionLogger",
    "LogContext",
    "NoOpTransmissionLogger",
    "RecordingAuditSink",
    "TransmissionLogger",
    "mask",
    "mask_auth_header",
    "mask_session_token",
]
