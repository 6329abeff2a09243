"""Environment-based configuration using pydantic-settings.

Example:
    >>> from toolrelay.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.loop.max_iterations
    10
    >>> settings.server.path
    '/mcp'

    # Or with environment variables:
    # TOOLRELAY_LOOP_MAX_ITERATIONS=4
    # TOOLRELAY_SERVER_PORT=9000
    # TOOLRELAY_LOG_FORMAT=json
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, PositiveFloat, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")


class LoopSettings(BaseSettings):
    """Tool loop defaults."""

    model_config = SettingsConfigDict(env_prefix="TOOLRELAY_LOOP_", extra="ignore")

    model: str = Field(default="default", description="Model identifier passed to the client")
    max_iterations: PositiveInt = Field(default=10, description="Max model round trips per invocation")
    parallel_tools: bool = Field(default=False, description="Run one turn's tool calls concurrently")


class ServerSettings(BaseSettings):
    """Protocol server configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLRELAY_SERVER_", extra="ignore")

    name: str = "toolrelay"
    version: str = "0.1.0"
    host: str = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535)] = 8000
    path: str = "/mcp"
    session_header: str = "Mcp-Session-Id"
    session_ttl: PositiveFloat = Field(default=1800.0, description="Idle seconds before a session is reaped")
    reap_interval: PositiveFloat = Field(default=60.0, description="Seconds between reaper sweeps")
    sse_keepalive: PositiveFloat = Field(default=15.0, description="Seconds between SSE keepalive comments")
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    supported_versions: tuple[str, ...] = SUPPORTED_PROTOCOL_VERSIONS

    @field_validator("path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @model_validator(mode="after")
    def _default_supported(self) -> ServerSettings:
        if self.protocol_version not in self.supported_versions:
            raise ValueError(f"protocol_version {self.protocol_version!r} is not in supported_versions")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="TOOLRELAY_LOG_", extra="ignore")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class ToolrelaySettings(BaseSettings):
    """Root settings.

    Loads configuration from environment variables with TOOLRELAY_ prefix.
    Supports nested configuration and .env files.

    Example environment variables:
        TOOLRELAY_LOOP_MODEL=gpt-4o
        TOOLRELAY_SERVER_SESSION_TTL=600
        TOOLRELAY_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLRELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    debug: bool = Field(default=False, description="Include error details in tool output")

    loop: LoopSettings = Field(default_factory=LoopSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> ToolrelaySettings:
    """Get the global settings instance (cached)."""
    return ToolrelaySettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()
