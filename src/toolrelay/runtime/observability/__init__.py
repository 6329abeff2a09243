"""Observability: structured logging for loop and server activity."""

from .logging import (
    BoundLogger,
    CaptureRenderer,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    NoOpRenderer,
    configure_from_settings,
    configure_logging,
    get_logger,
    log_context,
)

__all__ = [
    "BoundLogger", "LogEntry", "LogRenderer",
    "ConsoleRenderer", "JsonRenderer", "NoOpRenderer", "CaptureRenderer",
    "configure_logging", "configure_from_settings", "get_logger", "log_context",
]
