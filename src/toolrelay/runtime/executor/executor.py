"""Single tool-call execution: lookup, validation, authorization, invocation.

``ToolExecutor.execute`` never raises for tool-level problems. Unknown tools,
malformed or schema-violating arguments, denied calls and callback failures
all become error ToolResults that the loop feeds back to the model. Only
cancellation propagates.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

from toolrelay.foundation.core import InvocationContext, SchemaValidator, Tool, ToolOutput, ToolResult, new_call_id
from toolrelay.foundation.errors import ErrorCode, SchemaValidationError, ToolError, ToolException
from toolrelay.foundation.registry import ToolRegistry
from toolrelay.io.streaming import DecodeError, decode, encode_str

from .callbacks import ToolCallbacks, ToolEndEvent, ToolStartEvent, notify

AuthorizeHook: TypeAlias = Callable[
    [Tool, Any, InvocationContext],
    "bool | ToolError | None | Awaitable[bool | ToolError | None]",
]

SUCCESS_TEXT = "success"


class ToolExecutor:
    """Runs tool calls against one registry.

    Compiled argument validators are cached per tool name for the executor's
    lifetime (the registry is immutable).

    Example:
        >>> executor = ToolExecutor(registry)
        >>> result = await executor.execute("echo", {"text": "hi"}, InvocationContext())
        >>> result.text
        'hi'
    """

    __slots__ = ("registry", "callbacks", "authorize", "include_details", "_validators")

    def __init__(
        self,
        registry: ToolRegistry,
        callbacks: ToolCallbacks | None = None,
        *,
        authorize: AuthorizeHook | None = None,
        include_details: bool = False,
    ) -> None:
        self.registry = registry
        self.callbacks = callbacks
        self.authorize = authorize
        self.include_details = include_details
        self._validators: dict[str, SchemaValidator] = {}

    def validator(self, tool: Tool) -> SchemaValidator:
        if (cached := self._validators.get(tool.name)) is None:
            cached = self._validators[tool.name] = SchemaValidator(tool.parameter_schema, name=f"{tool.name}_args")
        return cached

    async def execute(
        self,
        name: str,
        arguments: Any,
        context: InvocationContext,
        *,
        tool_call_id: str | None = None,
    ) -> ToolResult:
        """Execute one tool call and return its normalized result."""
        call_id = tool_call_id or new_call_id()

        if (tool := self.registry.get(name)) is None:
            return self._fail(call_id, ToolError.create(
                name or "<unnamed>", f"Tool '{name}' not found. Available: {', '.join(self.registry.names()) or 'none'}",
                ErrorCode.UNKNOWN_TOOL,
            ))

        try:
            arguments = decode_arguments(arguments)
        except DecodeError as e:
            return self._fail(call_id, ToolError.create(
                name, f"Arguments are not valid JSON: {e}", ErrorCode.INVALID_PARAMS,
            ))

        if tool.strict:
            try:
                self.validator(tool).validate(arguments, tool_name=name)
            except SchemaValidationError as e:
                return self._fail(call_id, ToolError.create(name, e.message, ErrorCode.INVALID_PARAMS))

        if self.authorize is not None:
            if (denied := await self._check_permission(tool, arguments, context)) is not None:
                return self._fail(call_id, denied)

        callbacks = context.callbacks if context.callbacks is not None else self.callbacks
        await notify(callbacks, "on_tool_start", ToolStartEvent(
            tool_name=name, arguments=arguments, tool_call_id=call_id, actor=context.actor, tenant=context.tenant,
        ))

        start = time.perf_counter()
        result = await self._invoke(tool, arguments, context, call_id)
        duration_ms = (time.perf_counter() - start) * 1000

        await notify(callbacks, "on_tool_end", ToolEndEvent(
            tool_name=name, arguments=arguments, tool_call_id=call_id, result=result, duration_ms=duration_ms,
        ))
        return result

    async def _check_permission(self, tool: Tool, arguments: Any, context: InvocationContext) -> ToolError | None:
        try:
            verdict = self.authorize(tool, arguments, context)  # type: ignore[misc]
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception as e:
            return ToolError.from_exception(tool.name, e, "Authorization failed", recoverable=False)
        if isinstance(verdict, ToolError):
            return verdict.model_copy(update={"code": ErrorCode.PERMISSION_DENIED})
        if not verdict:
            return ToolError.create(
                tool.name, f"Not permitted to call '{tool.name}'", ErrorCode.PERMISSION_DENIED, recoverable=False,
            )
        return None

    async def _invoke(self, tool: Tool, arguments: Any, context: InvocationContext, call_id: str) -> ToolResult:
        try:
            if inspect.iscoroutinefunction(tool.callback):
                outcome = await tool.callback(arguments, context)
            else:
                outcome = await asyncio.to_thread(tool.callback, arguments, context)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
        except ToolException as e:
            return self._fail(call_id, e.error)
        except Exception as e:
            return self._fail(call_id, ToolError.from_exception(tool.name, e, f"Error executing {tool.name}"))
        return self._normalize(tool.name, call_id, outcome)

    def _normalize(self, name: str, call_id: str, outcome: Any) -> ToolResult:
        match outcome:
            case ToolOutput(text=text, raw=raw):
                return ToolResult.ok(call_id, name, text, raw)
            case ToolError():
                return self._fail(call_id, outcome)
            case str():
                return ToolResult.ok(call_id, name, outcome)
            case None:
                return ToolResult.ok(call_id, name, SUCCESS_TEXT)
        try:
            text = encode_str(outcome)
        except TypeError as e:
            return self._fail(call_id, ToolError.from_exception(name, e, "Tool returned an unserializable value"))
        return ToolResult.ok(call_id, name, text, outcome)

    def _fail(self, call_id: str, error: ToolError) -> ToolResult:
        result = ToolResult.failure(call_id, error)
        if self.include_details and error.details:
            return result.model_copy(update={"text": error.render(include_details=True)})
        return result


def decode_arguments(arguments: Any) -> Any:
    """JSON strings are decoded; None means no arguments."""
    if arguments is None:
        return {}
    if isinstance(arguments, (str, bytes, bytearray)):
        return decode(arguments) if arguments.strip() else {}
    return arguments
