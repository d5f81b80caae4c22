"""Configuration management for tremote.

Provides centralized configuration with TOML support, validation and
hierarchical loading from defaults → config file → environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import toml

from tremote.models import Config
from tremote.utils.exceptions import ConfigurationError
from tremote.utils.logging_config import setup_logging

# Global configuration instance
_config_manager: ConfigManager | None = None

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    # RPC
    "TREMOTE_REQUEST_TIMEOUT": "rpc.request_timeout",
    "TREMOTE_MIN_RPC_VERSION": "rpc.min_rpc_version",
    "TREMOTE_MAX_RPC_VERSION": "rpc.max_rpc_version",
    "TREMOTE_RPC_PATH": "rpc.rpc_path",
    "TREMOTE_RPC_LOGGING": "rpc.enable_logging",
    # Trust
    "TREMOTE_TRUST_STORE_PATH": "trust.trust_store_path",
    "TREMOTE_CREDENTIALS_PATH": "trust.credentials_path",
    "TREMOTE_SSL_PROTOCOL_VERSION": "trust.ssl_protocol_version",
    "TREMOTE_SSL_CA_CERTIFICATES": "trust.ssl_ca_certificates",
    "TREMOTE_INSPECT_TIMEOUT": "trust.inspect_timeout",
    # Observability
    "TREMOTE_LOG_LEVEL": "observability.log_level",
    "TREMOTE_LOG_FILE": "observability.log_file",
    "TREMOTE_STRUCTURED_LOGGING": "observability.structured_logging",
    "TREMOTE_LOG_CORRELATION_ID": "observability.log_correlation_id",
}

# Values that must stay strings even when they look numeric or boolean
_STRING_PATHS = {
    "rpc.rpc_path",
    "trust.trust_store_path",
    "trust.credentials_path",
    "trust.ssl_protocol_version",
    "trust.ssl_ca_certificates",
    "observability.log_level",
    "observability.log_file",
}


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for tremote.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / "tremote.toml",
            Path.home() / ".config" / "tremote" / "tremote.toml",
            Path.home() / ".tremote.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                logging.warning(
                    "Failed to load config file %s: %s", self.config_file, e
                )

        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Config(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}

        def _parse_env_value(raw: str, path: str) -> bool | int | float | str:
            if path in _STRING_PATHS:
                return raw

            low = raw.lower()
            if low in {"true", "1", "yes", "on"}:
                return True
            if low in {"false", "0", "no", "off"}:
                return False
            try:
                if "." in raw:
                    return float(raw)
                return int(raw)
            except ValueError:
                return raw

        def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
            parts = path.split(".")
            cur = d
            for p in parts[:-1]:
                cur = cur.setdefault(p, {})
            cur[parts[-1]] = value

        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))

        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self) -> str:
        """Export current configuration as a TOML string."""
        data = self.config.model_dump(mode="json", exclude_none=True)
        return toml.dumps(data)

    def save(self, path: str | Path | None = None) -> Path:
        """Write current configuration to ``path`` (or the loaded file).

        Raises:
            ConfigurationError: If no target path is known

        """
        target = Path(path) if path else self.config_file
        if target is None:
            msg = "No configuration file to save to"
            raise ConfigurationError(msg)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.export(), encoding="utf-8")
        self.config_file = target
        return target

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def reload_config() -> Config:
    """Reload configuration from file."""
    if _config_manager is None:
        msg = "Configuration not initialized"
        raise ConfigurationError(msg)

    _config_manager.config = _config_manager._load_config()  # noqa: SLF001
    _config_manager._setup_logging()  # noqa: SLF001
    return _config_manager.config


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime.

    Reconfigures logging based on the new config.
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(None)
    _config_manager.config = new_config
    _config_manager._setup_logging()  # noqa: SLF001
