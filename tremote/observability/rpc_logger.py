"""Request/response logging for Transmission RPC calls.

Only masked headers and structural summaries of JSON bodies are ever handed
to the logging system. Passwords, session ids and field values stay out of
log records.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from typing import Any, Protocol, runtime_checkable

from tremote.observability.masking import mask_headers
from tremote.utils.logging_config import get_logger

BODY_SUMMARY_LIMIT = 200
ERROR_SUMMARY_LIMIT = 180
SUMMARY_DEPTH = 2


@dataclass(frozen=True)
class LogContext:
    """Correlation fields attached to every RPC log line."""

    server_id: str | None = None
    host: str | None = None
    path: str | None = None
    method: str | None = None
    status_code: int | None = None
    duration_ms: float | None = None
    retry_attempt: int | None = None
    max_retries: int | None = None

    def merge(self, other: LogContext | None) -> LogContext:
        """Return a context where non-None fields of ``other`` win."""
        if other is None:
            return self
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) is not None
        }
        return replace(self, **updates)

    def masked_server_id(self) -> str:
        if not self.server_id:
            return "<unknown>"
        return self.server_id[:8]

    def metadata(self) -> dict[str, str]:
        """Flatten into string fields suitable for ``extra=``."""
        result: dict[str, str] = {}
        if self.host is not None:
            result["host"] = self.host
        if self.path is not None:
            result["path"] = self.path
        if self.method is not None:
            result["method"] = self.method
        if self.status_code is not None:
            result["status"] = str(self.status_code)
        if self.duration_ms is not None:
            result["elapsed_ms"] = str(round(self.duration_ms))
        if self.retry_attempt is not None:
            result["retry_attempt"] = str(self.retry_attempt)
        if self.max_retries is not None:
            result["max_retries"] = str(self.max_retries)
        result["server"] = self.masked_server_id()
        return result


@runtime_checkable
class TransmissionLogger(Protocol):
    """Receiver of per-attempt RPC log events."""

    def log_request(
        self,
        method: str,
        headers: Mapping[str, str],
        url: str,
        context: LogContext,
    ) -> None: ...

    def log_response(
        self,
        method: str,
        status_code: int,
        body: bytes,
        context: LogContext,
    ) -> None: ...

    def log_error(
        self,
        method: str,
        error: BaseException,
        context: LogContext,
    ) -> None: ...


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... (truncated)"


def _describe_shallow(value: Any) -> str:
    if isinstance(value, list):
        return f"array(count: {len(value)})"
    if isinstance(value, dict):
        return f"{{keys: {sorted(value)}}}"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "<redacted bool>"
    if isinstance(value, str):
        return "<redacted string>"
    if isinstance(value, (int, float)):
        return "<redacted number>"
    if value is None:
        return "null"
    return f"<{type(value).__name__}>"


def _summarize_json(value: Any, depth: int = 0) -> str:
    if depth >= SUMMARY_DEPTH:
        return _describe_shallow(value)
    if isinstance(value, dict):
        parts = [
            f"{key}: {_summarize_json(value[key], depth + 1)}" for key in sorted(value)
        ]
        return "{" + ", ".join(parts) + "}"
    return _describe_shallow(value)


def summarize_body(body: bytes) -> str:
    """Describe a response body by structure only."""
    if not body:
        return "<empty body>"
    try:
        decoded = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return f"<{len(body)} bytes>"
    return _truncate(_summarize_json(decoded), BODY_SUMMARY_LIMIT)


def summarize_error(error: BaseException) -> str:
    description = f"{type(error).__name__}: {error}".replace("\n", " ")
    return _truncate(description, ERROR_SUMMARY_LIMIT)


def _format_metadata(context: LogContext) -> str:
    meta = context.metadata()
    if not meta:
        return "<none>"
    return " ".join(f"{key}={meta[key]}" for key in sorted(meta))


class DefaultTransmissionLogger:
    """Writes masked RPC events to a stdlib logger.

    Requests are logged at DEBUG, 2xx responses at INFO, everything else at
    WARNING, and errors at ERROR.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        base_context: LogContext | None = None,
    ):
        self.logger = logger or get_logger("rpc")
        self.base_context = base_context or LogContext()

    def log_request(
        self,
        method: str,
        headers: Mapping[str, str],
        url: str,
        context: LogContext,
    ) -> None:
        merged = self.base_context.merge(context)
        masked = mask_headers(headers)
        header_text = "[" + ", ".join(f"{k}: {v}" for k, v in masked.items()) + "]"
        self.logger.debug(
            "request method=%s url=%s headers=%s meta=%s",
            method,
            url,
            header_text,
            _format_metadata(merged),
            extra=merged.metadata(),
        )

    def log_response(
        self,
        method: str,
        status_code: int,
        body: bytes,
        context: LogContext,
    ) -> None:
        merged = self.base_context.merge(context)
        level = logging.INFO if 200 <= status_code < 300 else logging.WARNING
        self.logger.log(
            level,
            "response method=%s status=%s body=%s meta=%s",
            method,
            status_code,
            summarize_body(body),
            _format_metadata(merged),
            extra=merged.metadata(),
        )

    def log_error(
        self,
        method: str,
        error: BaseException,
        context: LogContext,
    ) -> None:
        merged = self.base_context.merge(context)
        self.logger.error(
            "error method=%s message=%s meta=%s",
            method,
            summarize_error(error),
            _format_metadata(merged),
            extra=merged.metadata(),
        )


class NoOpTransmissionLogger:
    """Discards every event."""

    def log_request(self, method, headers, url, context) -> None:
        pass

    def log_response(self, method, status_code, body, context) -> None:
        pass

    def log_error(self, method, error, context) -> None:
        pass
