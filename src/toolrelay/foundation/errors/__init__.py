"""Unified error handling for toolrelay.

- ErrorCode: Standard error codes for tool failures
- ToolError/ToolException: Structured tool errors, returned or raised by callbacks
- Exception hierarchy: registry, schema, loop and protocol failures
"""

from .errors import (
    DuplicateToolName,
    ErrorCode,
    LoopCancelled,
    LoopFailure,
    MaxIterationsExceeded,
    ModelError,
    OutputValidationError,
    ProtocolError,
    SchemaValidationError,
    TerminationReason,
    ToolError,
    ToolException,
    ToolrelayError,
    UnknownTool,
    classify_exception,
    format_validation_error,
)
from .types import JsonDict, JsonMapping, JsonPrimitive, JsonValue

__all__ = [
    # Core errors
    "ErrorCode", "ToolError", "ToolException", "classify_exception", "format_validation_error",
    # Exceptions
    "ToolrelayError", "DuplicateToolName", "UnknownTool", "SchemaValidationError",
    "LoopFailure", "ModelError", "MaxIterationsExceeded", "LoopCancelled", "OutputValidationError",
    "ProtocolError", "TerminationReason",
    # JSON aliases
    "JsonDict", "JsonMapping", "JsonPrimitive", "JsonValue",
]
