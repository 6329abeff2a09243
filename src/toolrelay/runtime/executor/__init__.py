"""Tool execution: validation, authorization, invocation and lifecycle callbacks."""

from .callbacks import (
    CompositeCallbacks,
    LoggingCallbacks,
    ToolCallbacks,
    ToolEndEvent,
    ToolStartEvent,
    compose_callbacks,
)
from .executor import AuthorizeHook, ToolExecutor, decode_arguments

__all__ = [
    "ToolExecutor", "AuthorizeHook", "decode_arguments",
    "ToolCallbacks", "ToolStartEvent", "ToolEndEvent",
    "CompositeCallbacks", "LoggingCallbacks", "compose_callbacks",
]
