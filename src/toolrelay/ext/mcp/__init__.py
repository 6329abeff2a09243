"""MCP protocol server: JSON-RPC over HTTP with sessions and SSE.

Example:
    >>> from toolrelay.ext.mcp import MCPServer
    >>> app = MCPServer(registry).app  # mount or run with uvicorn
"""

from .protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    InternalError,
    InvalidParams,
    InvalidRequest,
    JsonRpcRequest,
    MethodNotFound,
    ParseError,
    SessionNotFound,
    SessionRequired,
    SessionStateError,
)
from .server import IdentifyHook, MCPServer, create_app, serve_mcp
from .session import Session, SessionState, SessionStore

__all__ = [
    # Server
    "MCPServer", "IdentifyHook", "create_app", "serve_mcp",
    # Sessions
    "Session", "SessionState", "SessionStore",
    # Protocol
    "JsonRpcRequest",
    "ParseError", "InvalidRequest", "MethodNotFound", "InvalidParams", "InternalError",
    "SessionRequired", "SessionNotFound", "SessionStateError",
    "PARSE_ERROR", "INVALID_REQUEST", "METHOD_NOT_FOUND", "INVALID_PARAMS", "INTERNAL_ERROR", "SESSION_NOT_FOUND",
]
