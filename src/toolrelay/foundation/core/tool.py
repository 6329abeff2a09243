"""Tool definitions and execution results.

A Tool pairs a JSON Schema parameter description with an async or sync
callback. Callbacks receive the decoded arguments plus an InvocationContext
and may return a ToolOutput, a plain string, None, a ToolError, or any
JSON-serializable value (see ``ToolExecutor`` for normalization).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Any, Self, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from toolrelay.foundation.errors import ErrorCode, JsonDict, ToolError

from .messages import Message

if TYPE_CHECKING:
    from toolrelay.runtime.executor import ToolCallbacks

TOOL_NAME_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


def empty_parameters() -> JsonDict:
    return {"type": "object", "properties": {}, "additionalProperties": False}


# ═══════════════════════════════════════════════════════════════════════════════
# Invocation Context
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class InvocationContext:
    """Per-call context handed to tool callbacks.

    Attributes:
        actor: Identity on whose behalf the call runs (user, service, session)
        tenant: Optional tenant scope
        shared_context: Caller-supplied values shared across every tool call
        callbacks: Lifecycle callbacks active for this invocation
    """

    actor: str | None = None
    tenant: str | None = None
    shared_context: dict[str, Any] = field(default_factory=dict)
    callbacks: ToolCallbacks | None = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.shared_context.get(key, default)


@dataclass(slots=True)
class ToolOutput:
    """Explicit callback return: text for the model, raw value for structured consumers."""

    text: str
    raw: Any = None


ToolCallback: TypeAlias = Callable[[dict[str, Any], InvocationContext], "Awaitable[Any] | Any"]


# ═══════════════════════════════════════════════════════════════════════════════
# Tool
# ═══════════════════════════════════════════════════════════════════════════════


class Tool(BaseModel):
    """A named, schema-described capability the model can invoke.

    Example:
        >>> async def echo(args, ctx):
        ...     return args["text"]
        >>> tool = Tool(
        ...     name="echo",
        ...     description="Echo the text back",
        ...     parameter_schema={
        ...         "type": "object",
        ...         "properties": {"text": {"type": "string"}},
        ...         "required": ["text"],
        ...     },
        ...     callback=echo,
        ... )
        >>> tool.spec()["name"]
        'echo'
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    name: Annotated[str, Field(pattern=TOOL_NAME_PATTERN, description="Unique tool identifier")]
    description: Annotated[str, Field(min_length=1, description="What the tool does, shown to the model")]
    parameter_schema: JsonDict = Field(default_factory=empty_parameters, description="JSON Schema for arguments")
    strict: bool = Field(default=True, description="Validate arguments against parameter_schema before invoking")
    callback: Callable[..., Any] = Field(exclude=True, repr=False)
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form annotations (category, tags)")

    @field_validator("parameter_schema")
    @classmethod
    def _object_schema(cls, v: JsonDict) -> JsonDict:
        if v.get("type", "object") != "object":
            raise ValueError("parameter_schema must describe an object")
        return v

    @model_validator(mode="after")
    def _callable(self) -> Self:
        if not callable(self.callback):
            raise ValueError(f"Tool '{self.name}' callback is not callable")
        return self

    def spec(self) -> JsonDict:
        """Provider-facing tool description (function-calling format)."""
        return {"name": self.name, "description": self.description, "parameters": self.parameter_schema}

    def mcp_descriptor(self) -> JsonDict:
        """Protocol-facing tool description (tools/list item)."""
        return {"name": self.name, "description": self.description, "inputSchema": self.parameter_schema}


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


class ToolStatus(StrEnum):
    OK = "ok"
    ERROR = "error"


class ToolResult(BaseModel):
    """Outcome of exactly one tool call.

    ``text`` is what the model sees. For failures it is the rendered ToolError.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tool_call_id: str
    tool_name: str
    status: ToolStatus
    text: str
    raw: Any = None
    error: ToolError | None = None

    @property
    def is_ok(self) -> bool:
        return self.status is ToolStatus.OK

    @property
    def code(self) -> ErrorCode | None:
        return self.error.code if self.error else None

    @classmethod
    def ok(cls, tool_call_id: str, tool_name: str, text: str, raw: Any = None) -> Self:
        return cls(tool_call_id=tool_call_id, tool_name=tool_name, status=ToolStatus.OK, text=text, raw=raw)

    @classmethod
    def failure(cls, tool_call_id: str, error: ToolError) -> Self:
        return cls(
            tool_call_id=tool_call_id,
            tool_name=error.tool_name,
            status=ToolStatus.ERROR,
            text=error.render(),
            error=error,
        )

    def to_message(self) -> Message:
        """Tool-role message carrying this result back to the model."""
        return Message.tool(self.tool_call_id, self.text, name=self.tool_name)
