"""Core types: messages, tools, results and JSON Schema validation."""

from .messages import ContentPart, Message, Role, ToolCallRequest, new_call_id
from .schema import SchemaValidator, compile_schema
from .tool import (
    TOOL_NAME_PATTERN,
    InvocationContext,
    Tool,
    ToolCallback,
    ToolOutput,
    ToolResult,
    ToolStatus,
    empty_parameters,
)

__all__ = [
    # Messages
    "Role", "ContentPart", "Message", "ToolCallRequest", "new_call_id",
    # Tools
    "Tool", "ToolCallback", "ToolOutput", "ToolResult", "ToolStatus", "InvocationContext",
    "TOOL_NAME_PATTERN", "empty_parameters",
    # Schema
    "SchemaValidator", "compile_schema",
]
