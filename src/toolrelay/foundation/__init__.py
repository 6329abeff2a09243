"""Foundation - Core building blocks for toolrelay.

Contains: core types, error handling, registry, testing, config.
"""

from __future__ import annotations

__all__ = [
    # Core
    "Tool", "ToolOutput", "ToolResult", "ToolStatus", "InvocationContext",
    "Message", "Role", "ContentPart", "ToolCallRequest", "SchemaValidator", "compile_schema",
    # Errors
    "ErrorCode", "ToolError", "ToolException", "classify_exception",
    "ToolrelayError", "DuplicateToolName", "UnknownTool", "SchemaValidationError",
    "LoopFailure", "ModelError", "MaxIterationsExceeded", "LoopCancelled", "OutputValidationError",
    "ProtocolError", "TerminationReason",
    # Registry
    "ToolRegistry", "ToolProvider", "register",
    # Testing
    "ScriptedModelClient", "RecordingCallbacks", "make_tool",
    # Config
    "ToolrelaySettings", "LoopSettings", "ServerSettings", "LoggingSettings", "get_settings", "clear_settings_cache",
]

_MODULES = {
    "core": ("Tool", "ToolOutput", "ToolResult", "ToolStatus", "InvocationContext",
             "Message", "Role", "ContentPart", "ToolCallRequest", "SchemaValidator", "compile_schema"),
    "errors": ("ErrorCode", "ToolError", "ToolException", "classify_exception",
               "ToolrelayError", "DuplicateToolName", "UnknownTool", "SchemaValidationError",
               "LoopFailure", "ModelError", "MaxIterationsExceeded", "LoopCancelled", "OutputValidationError",
               "ProtocolError", "TerminationReason"),
    "registry": ("ToolRegistry", "ToolProvider", "register"),
    "testing": ("ScriptedModelClient", "RecordingCallbacks", "make_tool"),
    "config": ("ToolrelaySettings", "LoopSettings", "ServerSettings", "LoggingSettings",
               "get_settings", "clear_settings_cache"),
}


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    for module, names in _MODULES.items():
        if name in names:
            from importlib import import_module
            return getattr(import_module(f"{__name__}.{module}"), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
