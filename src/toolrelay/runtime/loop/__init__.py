"""Tool loop: model round trips, tool execution and structured output."""

from .client import ContentDelta, ModelClient, ModelEvent, StreamError, ToolCallArgsDelta, ToolCallDelta
from .loop import REPROMPT, LoopEvent, LoopEventKind, LoopResult, ToolLoop

__all__ = [
    # Model boundary
    "ModelClient", "ModelEvent", "ContentDelta", "ToolCallDelta", "ToolCallArgsDelta", "StreamError",
    # Loop
    "ToolLoop", "LoopResult", "LoopEvent", "LoopEventKind", "REPROMPT",
]
