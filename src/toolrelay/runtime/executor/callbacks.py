"""Tool lifecycle callbacks.

Observers receive a ToolStartEvent before a callback runs and a ToolEndEvent
after it finishes. They observe only: failures inside them are logged by the
executor and never change the tool result.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from toolrelay.foundation.core import ToolResult

logger = logging.getLogger("toolrelay.executor")


@dataclass(slots=True, frozen=True)
class ToolStartEvent:
    tool_name: str
    arguments: Any
    tool_call_id: str
    actor: str | None = None
    tenant: str | None = None


@dataclass(slots=True, frozen=True)
class ToolEndEvent:
    tool_name: str
    arguments: Any
    tool_call_id: str
    result: ToolResult
    duration_ms: float


@runtime_checkable
class ToolCallbacks(Protocol):
    """Lifecycle observer. Methods may be sync or async."""

    def on_tool_start(self, event: ToolStartEvent) -> Any: ...
    def on_tool_end(self, event: ToolEndEvent) -> Any: ...


async def notify(callbacks: ToolCallbacks | None, method: str, event: ToolStartEvent | ToolEndEvent) -> None:
    """Invoke one callback method, logging and discarding its failures."""
    hook = getattr(callbacks, method, None)
    if hook is None:
        return
    try:
        outcome = hook(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        logger.exception("Tool callback %s failed for %s", method, event.tool_name)


@dataclass(slots=True)
class CompositeCallbacks:
    """Fans each event out to its members, in order."""

    members: tuple[ToolCallbacks, ...] = ()

    async def on_tool_start(self, event: ToolStartEvent) -> None:
        for member in self.members:
            await notify(member, "on_tool_start", event)

    async def on_tool_end(self, event: ToolEndEvent) -> None:
        for member in self.members:
            await notify(member, "on_tool_end", event)


def compose_callbacks(*callbacks: ToolCallbacks | None) -> ToolCallbacks | None:
    """Combine callbacks, skipping None. Returns None when nothing is left."""
    members = tuple(c for c in callbacks if c is not None)
    if not members:
        return None
    return members[0] if len(members) == 1 else CompositeCallbacks(members)


@dataclass(slots=True)
class LoggingCallbacks:
    """Log tool starts and ends with timing and result status.

    Logs at INFO level for successful calls, WARNING for errors.

    Args:
        log: Logger instance to use (defaults to toolrelay.executor)
        log_arguments: Whether to include arguments in the log (default False for privacy)

    Example:
        >>> loop = ToolLoop(client, registry, model="m", callbacks=LoggingCallbacks(log_arguments=True))
    """

    log: logging.Logger = field(default_factory=lambda: logger)
    log_arguments: bool = False

    def on_tool_start(self, event: ToolStartEvent) -> None:
        args = f" arguments={event.arguments!r}" if self.log_arguments else ""
        self.log.info(f"[{event.tool_name}] Starting call={event.tool_call_id}{args}")

    def on_tool_end(self, event: ToolEndEvent) -> None:
        result = event.result
        if result.is_ok:
            self.log.info(f"[{event.tool_name}] OK ({event.duration_ms:.1f}ms)")
        else:
            self.log.warning(f"[{event.tool_name}] ERROR ({event.duration_ms:.1f}ms) [{result.code}]")
