"""Model client boundary: the streaming events a provider adapter yields.

Adapters translate a provider's wire format into these events; the loop never
sees provider specifics.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias, runtime_checkable

from toolrelay.foundation.core import Message
from toolrelay.foundation.errors import JsonDict


@dataclass(slots=True, frozen=True)
class ContentDelta:
    """A fragment of assistant text."""

    text: str


@dataclass(slots=True, frozen=True)
class ToolCallDelta:
    """A tool-call request at ``index``.

    ``arguments`` is a dict, a JSON string, or None when ToolCallArgsDelta
    fragments follow. A repeated index updates the same call.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments: Any = None


@dataclass(slots=True, frozen=True)
class ToolCallArgsDelta:
    """A streamed JSON fragment appended to the arguments of the call at ``index``."""

    index: int
    fragment: str


@dataclass(slots=True, frozen=True)
class StreamError:
    """Terminal provider error reported inside the stream."""

    message: str


ModelEvent: TypeAlias = ContentDelta | ToolCallDelta | ToolCallArgsDelta | StreamError


@runtime_checkable
class ModelClient(Protocol):
    """Streaming chat-completion adapter.

    Example:
        >>> class MyClient:
        ...     async def generate(self, model, messages, *, tools, response_schema):
        ...         yield ContentDelta("Hello")
    """

    def generate(
        self,
        model: str,
        messages: Sequence[Message],
        *,
        tools: Sequence[JsonDict],
        response_schema: JsonDict | None,
    ) -> AsyncIterator[ModelEvent]: ...
