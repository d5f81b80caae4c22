"""Configuration management.

This module handles configuration loading and validation.
"""

from __future__ import annotations

from tremote.config.config import ConfigManager, get_config, init_config, set_config
from tremote.models import Config

__all__ = [
    "Config",
    "ConfigManager",
    "get_config",
    "init_config",
    "set_config",
]
