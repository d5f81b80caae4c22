"""Data models for tremote.

Configuration models validated by :class:`tremote.config.config.ConfigManager`
and the per-server connection settings.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:  # pragma: no cover
    from tremote.security.credentials import ServerCredentialsKey
    from tremote.security.trust_models import ServerIdentity


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RPCConfig(BaseModel):
    """Transmission RPC transport configuration."""

    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Per-request timeout in seconds",
    )
    min_rpc_version: int = Field(
        default=14,
        ge=1,
        description="Lowest daemon RPC version this client can talk to (Transmission 3.0)",
    )
    max_rpc_version: int = Field(
        default=17,
        ge=1,
        description="Highest daemon RPC version this client was built against",
    )
    rpc_path: str = Field(
        default="/transmission/rpc",
        description="Default RPC endpoint path",
    )
    enable_logging: bool = Field(
        default=True,
        description="Log masked RPC requests and responses",
    )
    user_agent: str = Field(
        default="tremote/0.1",
        description="User-Agent header sent with RPC requests",
    )

    @model_validator(mode="after")
    def _check_version_range(self) -> RPCConfig:
        if self.min_rpc_version > self.max_rpc_version:
            msg = "min_rpc_version must not exceed max_rpc_version"
            raise ValueError(msg)
        return self


class TrustConfig(BaseModel):
    """TLS trust and secret storage configuration."""

    trust_store_path: str = Field(
        default="~/.tremote/trust.json",
        description="File holding accepted certificate fingerprints",
    )
    credentials_path: str = Field(
        default="~/.tremote/credentials.json",
        description="File holding encrypted server passwords",
    )
    ssl_protocol_version: str = Field(
        default="TLSv1.2",
        description="Minimum TLS protocol version (TLSv1.2, TLSv1.3, PROTOCOL_TLS)",
    )
    ssl_ca_certificates: str | None = Field(
        default=None,
        description="Path to CA certificates file or directory (system default if unset)",
    )
    inspect_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Timeout for the certificate inspection handshake in seconds",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Use structured JSON logging"
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Root configuration."""

    rpc: RPCConfig = Field(default_factory=RPCConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


class ServerConfig(BaseModel):
    """Connection settings for one Transmission daemon."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Stable server id")
    name: str = Field(default="", description="Display name")
    host: str = Field(..., min_length=1, description="Hostname or IP address")
    port: int = Field(default=9091, ge=1, le=65535, description="RPC port")
    path: str = Field(default="/transmission/rpc", description="RPC endpoint path")
    is_secure: bool = Field(default=False, description="Use HTTPS")
    pin_certificate: bool = Field(
        default=False,
        description="Trust only stored fingerprints, skipping system CA validation",
    )
    username: str | None = Field(default=None, description="Basic auth username")

    @property
    def identity(self) -> ServerIdentity:
        from tremote.security.trust_models import ServerIdentity

        return ServerIdentity(self.host, self.port, self.is_secure)

    @property
    def credentials_key(self) -> ServerCredentialsKey | None:
        if not self.username:
            return None
        from tremote.security.credentials import ServerCredentialsKey

        return ServerCredentialsKey(self.identity, self.username)

    @property
    def base_url(self) -> str:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"{self.identity.endpoint}{path}"

    @property
    def display_address(self) -> str:
        return self.identity.address
