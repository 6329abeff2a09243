"""Configuration management using pydantic-settings.

Provides environment-based configuration with type safety and validation.
"""

from .settings import (
    DEFAULT_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    LoggingSettings,
    LoopSettings,
    ServerSettings,
    ToolrelaySettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "DEFAULT_PROTOCOL_VERSION",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LoggingSettings",
    "LoopSettings",
    "ServerSettings",
    "ToolrelaySettings",
    "clear_settings_cache",
    "get_settings",
]
