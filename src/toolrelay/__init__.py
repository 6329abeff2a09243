"""Toolrelay - tool-calling loop and MCP server for LLM agents.

Registers tools described by JSON Schema, drives a model through tool calls
until it answers, and exposes the same tools to MCP clients over HTTP.

Quick Start:
    >>> from toolrelay import Message, Tool, ToolLoop, ToolRegistry
    >>>
    >>> async def echo(args, ctx):
    ...     return args["text"]
    >>>
    >>> registry = ToolRegistry([Tool(
    ...     name="echo",
    ...     description="Echo the text back",
    ...     parameter_schema={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
    ...     callback=echo,
    ... )])
    >>> loop = ToolLoop(client, registry, model="gpt-4o")
    >>> result = await loop.run([Message.user("Say hi via echo")])

Structured Output:
    >>> loop = ToolLoop(client, registry, model="gpt-4o", result_schema={"type": "object", ...})
    >>> (await loop.run(messages)).structured

MCP Server:
    >>> from toolrelay import serve_mcp
    >>> serve_mcp(registry, port=8080)
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core
from .foundation.core import (
    ContentPart,
    InvocationContext,
    Message,
    Role,
    SchemaValidator,
    Tool,
    ToolCallRequest,
    ToolOutput,
    ToolResult,
    ToolStatus,
)

# Errors
from .foundation.errors import (
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
)

# Registry & config
from .foundation.registry import ToolProvider, ToolRegistry, register
from .foundation.config import ToolrelaySettings, get_settings

# Runtime
from .runtime.executor import LoggingCallbacks, ToolCallbacks, ToolEndEvent, ToolExecutor, ToolStartEvent, compose_callbacks
from .runtime.loop import (
    ContentDelta,
    LoopEvent,
    LoopEventKind,
    LoopResult,
    ModelClient,
    StreamError,
    ToolCallArgsDelta,
    ToolCallDelta,
    ToolLoop,
)
from .runtime.observability import configure_logging, get_logger

# Server
from .ext.mcp import MCPServer, SessionStore, create_app, serve_mcp

__all__ = [
    "__version__",
    # Core
    "Tool", "ToolOutput", "ToolResult", "ToolStatus", "InvocationContext",
    "Message", "Role", "ContentPart", "ToolCallRequest", "SchemaValidator",
    # Errors
    "ErrorCode", "ToolError", "ToolException", "ToolrelayError", "DuplicateToolName", "UnknownTool",
    "SchemaValidationError", "LoopFailure", "ModelError", "MaxIterationsExceeded", "LoopCancelled",
    "OutputValidationError", "ProtocolError", "TerminationReason",
    # Registry & config
    "ToolRegistry", "ToolProvider", "register", "ToolrelaySettings", "get_settings",
    # Runtime
    "ToolExecutor", "ToolCallbacks", "ToolStartEvent", "ToolEndEvent", "LoggingCallbacks", "compose_callbacks",
    "ToolLoop", "LoopResult", "LoopEvent", "LoopEventKind",
    "ModelClient", "ContentDelta", "ToolCallDelta", "ToolCallArgsDelta", "StreamError",
    "configure_logging", "get_logger",
    # Server
    "MCPServer", "SessionStore", "create_app", "serve_mcp",
]
