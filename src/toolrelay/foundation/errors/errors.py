"""Error values and exceptions for tools, the tool loop and the protocol server.

A failing tool call is not an exception to the caller: it becomes a
``ToolError`` that is rendered into the tool-result message the model reads.
Loop and protocol failures are raised.
"""

from __future__ import annotations

import json
import traceback
from enum import StrEnum
from typing import TYPE_CHECKING, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from collections.abc import Sequence

    from toolrelay.foundation.core import Message, ToolCallRequest


class ErrorCode(StrEnum):
    """Classification carried by every ToolError."""
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    INVALID_PARAMS = "INVALID_PARAMS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN = "UNKNOWN"


# Checked in order; the first isinstance match wins
_TYPE_CODES: tuple[tuple[type[BaseException] | tuple[type[BaseException], ...], ErrorCode], ...] = (
    (TimeoutError, ErrorCode.TIMEOUT),
    (ConnectionError, ErrorCode.NETWORK_ERROR),
    (PermissionError, ErrorCode.PERMISSION_DENIED),
    (ValidationError, ErrorCode.INVALID_PARAMS),
    ((json.JSONDecodeError, UnicodeDecodeError), ErrorCode.PARSE_ERROR),
    ((KeyError, FileNotFoundError), ErrorCode.NOT_FOUND),
)

# Fallback for third-party exception types: keyword in "<TypeName> <message>"
_KEYWORD_CODES: tuple[tuple[str, ErrorCode], ...] = (
    ("timeout", ErrorCode.TIMEOUT),
    ("timed out", ErrorCode.TIMEOUT),
    ("rate limit", ErrorCode.RATE_LIMITED),
    ("ratelimit", ErrorCode.RATE_LIMITED),
    ("too many requests", ErrorCode.RATE_LIMITED),
    ("connection", ErrorCode.NETWORK_ERROR),
    ("forbidden", ErrorCode.PERMISSION_DENIED),
    ("unauthorized", ErrorCode.PERMISSION_DENIED),
    ("notfound", ErrorCode.NOT_FOUND),
    ("not found", ErrorCode.NOT_FOUND),
    ("decode", ErrorCode.PARSE_ERROR),
)


def classify_exception(exc: BaseException) -> ErrorCode:
    """Pick an ErrorCode for an exception raised inside a tool callback."""
    for types, code in _TYPE_CODES:
        if isinstance(exc, types):
            return code
    signature = f"{type(exc).__name__} {exc}".lower()
    return next((code for keyword, code in _KEYWORD_CODES if keyword in signature), ErrorCode.EXECUTION_ERROR)


def format_validation_error(exc: ValidationError, *, tool_name: str | None = None) -> str:
    """One-line summary of a pydantic ValidationError: ``loc: msg; loc: msg``."""
    problems = "; ".join(
        f"{'.'.join(map(str, err['loc'])) or '<root>'}: {err['msg']}" for err in exc.errors(include_url=False)
    )
    head = f"Invalid arguments for '{tool_name}'" if tool_name else "Invalid arguments"
    return f"{head}: {problems}" if problems else head


class ToolError(BaseModel):
    """Failure outcome of one tool call.

    ``recoverable`` tells the model whether retrying with different arguments
    could work; ``details`` holds a traceback that is only rendered on request.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    tool_name: str = Field(min_length=1)
    message: str = Field(min_length=1)
    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = True
    details: str | None = None

    @field_validator("message", mode="before")
    @classmethod
    def _message_from_exception(cls, v: object) -> object:
        return (str(v) or type(v).__name__) if isinstance(v, BaseException) else v

    @classmethod
    def create(
        cls,
        tool_name: str,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        recoverable: bool = True,
        details: str | None = None,
    ) -> Self:
        return cls(tool_name=tool_name, message=message, code=code, recoverable=recoverable, details=details)

    @classmethod
    def from_exception(
        cls,
        tool_name: str,
        exc: BaseException,
        context: str = "",
        *,
        recoverable: bool = True,
    ) -> Self:
        """Classify ``exc`` and keep its traceback in ``details``."""
        text = str(exc) or type(exc).__name__
        return cls(
            tool_name=tool_name,
            message=f"{context}: {text}" if context else text,
            code=classify_exception(exc),
            recoverable=recoverable,
            details="".join(traceback.format_exception(exc)),
        )

    def render(self, *, include_details: bool = False) -> str:
        """Text placed in the tool-result message."""
        text = f"Error [{self.code}] from tool '{self.tool_name}': {self.message}"
        if self.recoverable:
            text += "\nThe call may succeed with corrected arguments or a different approach."
        if include_details and self.details:
            text += f"\n\n{self.details.rstrip()}"
        return text

    __str__ = render


class ToolException(Exception):
    """Raise from a tool callback to fail with a specific ToolError."""

    __slots__ = ("error",)

    def __init__(self, error: ToolError) -> None:
        super().__init__(error.message)
        self.error = error

    @classmethod
    def create(cls, tool_name: str, message: str, code: ErrorCode = ErrorCode.UNKNOWN, *, recoverable: bool = True) -> Self:
        return cls(ToolError.create(tool_name, message, code, recoverable=recoverable))


# ═══════════════════════════════════════════════════════════════════════════════
# Exception hierarchy
# ═══════════════════════════════════════════════════════════════════════════════


class ToolrelayError(Exception):
    """Base class for all toolrelay exceptions."""


class DuplicateToolName(ToolrelayError, ValueError):
    """Two tools in one registry share a name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class UnknownTool(ToolrelayError, LookupError):
    """A tool name is absent from the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found in registry")


class SchemaValidationError(ToolrelayError, ValueError):
    """A value failed validation against a JSON Schema.

    ``errors`` holds ``{"loc": ..., "msg": ...}`` items for each failed field.
    """

    def __init__(self, message: str, errors: Sequence[dict[str, object]] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.errors = tuple(errors)

    @classmethod
    def from_pydantic(cls, exc: ValidationError, *, tool_name: str | None = None) -> Self:
        errors = [
            {"loc": ".".join(str(p) for p in e.get("loc", ())), "msg": e.get("msg", "")}
            for e in exc.errors(include_url=False)
        ]
        return cls(format_validation_error(exc, tool_name=tool_name), errors)


class TerminationReason(StrEnum):
    """How a tool loop invocation ended."""
    DONE = "done"
    MAX_ITERATIONS = "max_iterations"
    MODEL_ERROR = "model_error"
    CANCELLED = "cancelled"
    SCHEMA_INVALID = "schema_invalid"


class LoopFailure(ToolrelayError):
    """Terminal failure of a tool loop invocation.

    The partial message trace is preserved for diagnostics.
    """

    reason: TerminationReason = TerminationReason.MODEL_ERROR

    def __init__(
        self,
        message: str,
        *,
        messages: Sequence[Message] = (),
        iterations: int = 0,
        tool_calls: Sequence[ToolCallRequest] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.messages = list(messages)
        self.iterations = iterations
        self.tool_calls = list(tool_calls)


class ModelError(LoopFailure):
    """Transport or stream failure from the model provider."""

    reason = TerminationReason.MODEL_ERROR


class MaxIterationsExceeded(LoopFailure):
    """The loop needed more model round trips than allowed."""

    reason = TerminationReason.MAX_ITERATIONS


class LoopCancelled(LoopFailure):
    """Deadline passed or cancellation was requested mid-invocation."""

    reason = TerminationReason.CANCELLED


class OutputValidationError(LoopFailure, SchemaValidationError):
    """Final model output did not match the required result schema."""

    reason = TerminationReason.SCHEMA_INVALID

    def __init__(self, message: str, *, errors: Sequence[dict[str, object]] = (), **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.errors = tuple(errors)


class ProtocolError(ToolrelayError):
    """JSON-RPC level failure, surfaced to the client as an error object."""

    code: int = -32603
    http_status: int = 200

    def __init__(self, message: str, *, data: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data
