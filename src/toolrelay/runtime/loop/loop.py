"""The tool loop: drive a model through tool calls until it produces an answer.

State machine per invocation::

    AwaitingModel -> ExecutingTools -> AwaitingModel
    AwaitingModel -> Done
    any           -> Failed(MaxIterationsExceeded | ModelError | LoopCancelled | OutputValidationError)

``stream`` exposes each step as a LoopEvent; ``run`` consumes the stream and
returns the LoopResult or raises the LoopFailure.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import AsyncIterator, Awaitable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from toolrelay.foundation.core import InvocationContext, Message, SchemaValidator, ToolCallRequest, ToolResult, new_call_id
from toolrelay.foundation.errors import (
    JsonDict,
    LoopCancelled,
    LoopFailure,
    MaxIterationsExceeded,
    ModelError,
    OutputValidationError,
    SchemaValidationError,
    TerminationReason,
)
from toolrelay.foundation.registry import ToolRegistry
from toolrelay.io.streaming import DecodeError, decode, encode_str
from toolrelay.runtime.executor import AuthorizeHook, ToolCallbacks, ToolExecutor
from toolrelay.runtime.observability import BoundLogger, get_logger

from .client import ContentDelta, ModelClient, StreamError, ToolCallArgsDelta, ToolCallDelta

if TYPE_CHECKING:
    from toolrelay.foundation.config import ToolrelaySettings

T = TypeVar("T")

_END = object()

REPROMPT = (
    "Your previous reply did not match the required output format. "
    "Respond again with only a JSON document that validates against this JSON Schema:\n{schema}"
)


# ═══════════════════════════════════════════════════════════════════════════════
# Results & Events
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class LoopResult:
    """Successful outcome of one invocation.

    Attributes:
        messages: Full conversation, including every assistant and tool message added
        final_text: The model's final answer ("" for an empty final turn)
        iterations: Model round trips made, re-prompts included
        tool_calls: Every tool call requested, in execution order
        structured: Parsed final answer when a result schema was set
    """

    messages: tuple[Message, ...]
    final_text: str
    iterations: int
    tool_calls: tuple[ToolCallRequest, ...] = ()
    structured: Any = None
    reason: TerminationReason = TerminationReason.DONE


class LoopEventKind(StrEnum):
    ITERATION = "iteration"
    CONTENT = "content"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class LoopEvent:
    kind: LoopEventKind
    iteration: int = 0
    text: str | None = None
    tool_call: ToolCallRequest | None = None
    tool_result: ToolResult | None = None
    result: LoopResult | None = None
    error: LoopFailure | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Per-invocation state
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class _State:
    messages: list[Message]
    iterations: int = 0
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    reprompted: bool = False

    def trace(self) -> dict[str, Any]:
        return {"messages": self.messages, "iterations": self.iterations, "tool_calls": self.tool_calls}


@dataclass(slots=True)
class _PendingCall:
    index: int
    id: str | None = None
    name: str | None = None
    arguments: Any = None
    fragments: list[str] = field(default_factory=list)

    def finish(self) -> ToolCallRequest:
        args = self.arguments
        if self.fragments:
            if isinstance(args, dict) and args:
                raise ValueError(f"tool call {self.index} mixes object arguments with fragments")
            args = (args if isinstance(args, str) else "") + "".join(self.fragments)
        if isinstance(args, (str, bytes)):
            try:
                args = decode(args) if args.strip() else {}
            except DecodeError as e:
                raise ValueError(f"tool call {self.index} ({self.name}) arguments are not valid JSON: {e}") from e
        elif args is None:
            args = {}
        if not self.name:
            raise ValueError(f"tool call {self.index} has no tool name")
        return ToolCallRequest(id=self.id or new_call_id(), name=self.name, arguments=args)


@dataclass(slots=True)
class _Turn:
    """Accumulates one model response."""

    parts: list[str] = field(default_factory=list)
    calls: dict[int, _PendingCall] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def call(self, index: int) -> _PendingCall:
        if (pending := self.calls.get(index)) is None:
            pending = self.calls[index] = _PendingCall(index)
        return pending

    def tool_calls(self) -> list[ToolCallRequest]:
        return [self.calls[i].finish() for i in sorted(self.calls)]


# ═══════════════════════════════════════════════════════════════════════════════
# Tool Loop
# ═══════════════════════════════════════════════════════════════════════════════


class ToolLoop:
    """Runs a conversation through a model client and a tool registry.

    Example:
        >>> loop = ToolLoop(client, registry, model="gpt-4o", max_iterations=5)
        >>> result = await loop.run([Message.user("What's 2+2? Use the calculator.")])
        >>> result.final_text
        '4'

    Streaming:
        >>> async for event in loop.stream(messages):
        ...     if event.kind is LoopEventKind.CONTENT:
        ...         print(event.text, end="")
    """

    __slots__ = (
        "client", "registry", "model", "max_iterations", "tools_enabled", "result_schema",
        "actor", "tenant", "context", "parallel_tools", "executor", "_result_validator", "_log",
    )

    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        *,
        model: str,
        max_iterations: int | None = 10,
        tools_enabled: bool = True,
        result_schema: JsonDict | None = None,
        callbacks: ToolCallbacks | None = None,
        actor: str | None = None,
        tenant: str | None = None,
        context: dict[str, Any] | None = None,
        parallel_tools: bool = False,
        authorize: AuthorizeHook | None = None,
        include_details: bool = False,
    ) -> None:
        if max_iterations is not None and max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1 or None, got {max_iterations}")
        self.client = client
        self.registry = registry
        self.model = model
        self.max_iterations = max_iterations
        self.tools_enabled = tools_enabled
        self.result_schema = result_schema
        self.actor = actor
        self.tenant = tenant
        self.context = dict(context or {})
        self.parallel_tools = parallel_tools
        self.executor = ToolExecutor(registry, callbacks, authorize=authorize, include_details=include_details)
        self._result_validator = SchemaValidator(result_schema, name="Result") if result_schema is not None else None
        self._log = get_logger("toolrelay.loop")

    @classmethod
    def from_settings(
        cls,
        client: ModelClient,
        registry: ToolRegistry,
        settings: ToolrelaySettings | None = None,
        **overrides: Any,
    ) -> ToolLoop:
        """Build with defaults from ToolrelaySettings; keyword overrides win."""
        if settings is None:
            from toolrelay.foundation.config import get_settings
            settings = get_settings()
        options: dict[str, Any] = {
            "model": settings.loop.model,
            "max_iterations": settings.loop.max_iterations,
            "parallel_tools": settings.loop.parallel_tools,
            "include_details": settings.debug,
        }
        return cls(client, registry, **{**options, **overrides})

    # ─────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────

    async def run(
        self,
        messages: Iterable[Message],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> LoopResult:
        """Run to completion. Raises the LoopFailure subclass on failure."""
        async for event in self.stream(messages, timeout=timeout, cancel=cancel):
            if event.kind is LoopEventKind.DONE and event.result is not None:
                return event.result
            if event.kind is LoopEventKind.FAILED and event.error is not None:
                raise event.error
        raise ModelError("Loop ended without a result")  # unreachable for a well-formed stream

    async def stream(
        self,
        messages: Iterable[Message],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """Run the loop, yielding progress events. ``failed`` is always the last event."""
        state = _State(list(messages))
        deadline = asyncio.get_running_loop().time() + timeout if timeout is not None else None
        log = self._log.bind_loop(uuid.uuid4().hex[:8], self.model)
        try:
            async for event in self._drive(state, deadline, cancel, log):
                yield event
        except LoopFailure as failure:
            log.warning("loop failed", reason=str(failure.reason), iterations=state.iterations, error=failure.message)
            yield LoopEvent(LoopEventKind.FAILED, iteration=state.iterations, error=failure)

    # ─────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────

    async def _drive(
        self,
        state: _State,
        deadline: float | None,
        cancel: asyncio.Event | None,
        log: BoundLogger,
    ) -> AsyncIterator[LoopEvent]:
        context = InvocationContext(
            actor=self.actor, tenant=self.tenant, shared_context=dict(self.context), callbacks=self.executor.callbacks,
        )
        while True:
            if self.max_iterations is not None and state.iterations >= self.max_iterations:
                raise MaxIterationsExceeded(
                    f"Iteration limit of {self.max_iterations} model round trips reached", **state.trace(),
                )
            state.iterations += 1
            log.debug("iteration started", iteration=state.iterations, messages=len(state.messages))
            yield LoopEvent(LoopEventKind.ITERATION, iteration=state.iterations)

            turn = _Turn()
            async for event in self._model_turn(state, turn, deadline, cancel):
                yield event
            try:
                calls = turn.tool_calls()
            except ValueError as e:
                raise ModelError(str(e), **state.trace()) from e

            if calls:
                state.messages.append(Message.assistant(turn.text, tool_calls=calls))
                state.tool_calls.extend(calls)
                for call in calls:
                    log.info("tool call", tool=call.name, call_id=call.id, iteration=state.iterations)
                    yield LoopEvent(LoopEventKind.TOOL_CALL, iteration=state.iterations, tool_call=call)
                results = await self._guard(self._execute(calls, context), state, deadline, cancel)
                for result in results:
                    state.messages.append(result.to_message())
                    yield LoopEvent(LoopEventKind.TOOL_RESULT, iteration=state.iterations, tool_result=result)
                continue

            text = turn.text
            structured = None
            if self._result_validator is not None:
                try:
                    structured = self._parse_structured(text)
                except SchemaValidationError as e:
                    if state.reprompted:
                        raise OutputValidationError(
                            f"Final answer does not match the result schema: {e.message}",
                            errors=e.errors, **state.trace(),
                        ) from e
                    log.info("re-prompting for structured output", iteration=state.iterations)
                    state.reprompted = True
                    state.messages.append(Message.assistant(text))
                    state.messages.append(Message.user(REPROMPT.format(schema=encode_str(self.result_schema))))
                    continue

            if text:
                state.messages.append(Message.assistant(text))
            result = LoopResult(
                messages=tuple(state.messages),
                final_text=text,
                iterations=state.iterations,
                tool_calls=tuple(state.tool_calls),
                structured=structured,
            )
            log.info("loop done", iterations=state.iterations, tool_calls=len(state.tool_calls))
            yield LoopEvent(LoopEventKind.DONE, iteration=state.iterations, result=result)
            return

    async def _model_turn(
        self,
        state: _State,
        turn: _Turn,
        deadline: float | None,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[LoopEvent]:
        self._check_stop(state, deadline, cancel)
        tools = self.registry.schemas() if self.tools_enabled else []
        try:
            stream = self.client.generate(
                self.model, tuple(state.messages), tools=tools, response_schema=self.result_schema,
            ).__aiter__()
        except Exception as e:
            raise ModelError(f"Model request failed: {e}", **state.trace()) from e

        try:
            while True:
                try:
                    event = await self._guard(_next(stream), state, deadline, cancel)
                except LoopFailure:
                    raise
                except Exception as e:
                    raise ModelError(f"Model stream failed: {e}", **state.trace()) from e
                if event is _END:
                    return
                match event:
                    case ContentDelta(text=text):
                        if text:
                            turn.parts.append(text)
                            yield LoopEvent(LoopEventKind.CONTENT, iteration=state.iterations, text=text)
                    case ToolCallDelta(index=index, id=call_id, name=name, arguments=arguments):
                        pending = turn.call(index)
                        pending.id = call_id or pending.id
                        pending.name = name or pending.name
                        if arguments is not None:
                            pending.arguments = arguments
                    case ToolCallArgsDelta(index=index, fragment=fragment):
                        turn.call(index).fragments.append(fragment)
                    case StreamError(message=message):
                        raise ModelError(f"Model stream error: {message}", **state.trace())
                    case _:
                        raise ModelError(f"Unrecognized model event: {type(event).__name__}", **state.trace())
        finally:
            if (aclose := getattr(stream, "aclose", None)) is not None:
                await aclose()

    async def _execute(self, calls: Sequence[ToolCallRequest], context: InvocationContext) -> list[ToolResult]:
        if self.parallel_tools and len(calls) > 1:
            return list(await asyncio.gather(*(
                self.executor.execute(c.name, c.arguments, context, tool_call_id=c.id) for c in calls
            )))
        return [await self.executor.execute(c.name, c.arguments, context, tool_call_id=c.id) for c in calls]

    def _parse_structured(self, text: str) -> Any:
        assert self._result_validator is not None
        try:
            value = decode(text)
        except DecodeError as e:
            raise SchemaValidationError("Final answer is not valid JSON", [{"loc": "", "msg": str(e)}]) from e
        self._result_validator.validate(value)
        return value

    @staticmethod
    def _check_stop(state: _State, deadline: float | None, cancel: asyncio.Event | None) -> None:
        """Raise LoopCancelled if the run was cancelled or is past its deadline."""
        if cancel is not None and cancel.is_set():
            raise LoopCancelled("Cancelled", **state.trace())
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise LoopCancelled("Deadline exceeded", **state.trace())

    @staticmethod
    async def _guard(
        awaitable: Awaitable[T],
        state: _State,
        deadline: float | None,
        cancel: asyncio.Event | None,
    ) -> T:
        """Await ``awaitable`` unless the deadline passes or ``cancel`` is set first."""
        if deadline is None and cancel is None:
            return await awaitable
        if cancel is not None and cancel.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise LoopCancelled("Cancelled", **state.trace())

        task = asyncio.ensure_future(awaitable)
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_wait = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        if cancel_wait is not None:
            waiters.add(cancel_wait)
        remaining = None if deadline is None else max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            done, _ = await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if task in done:
            return task.result()
        if cancel_wait is not None and cancel_wait in done:
            raise LoopCancelled("Cancelled", **state.trace())
        raise LoopCancelled("Deadline exceeded", **state.trace())


async def _next(stream: AsyncIterator[Any]) -> Any:
    try:
        return await anext(stream)
    except StopAsyncIteration:
        return _END
