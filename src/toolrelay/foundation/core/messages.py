"""Conversation messages and tool-call requests.

Messages are frozen; a conversation grows by appending, never by mutation.
"""

from __future__ import annotations

import uuid
from enum import StrEnum
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentPart(BaseModel):
    """One structured content part (text or image reference)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text", "image_url"] = "text"
    text: str | None = None
    url: str | None = None

    @classmethod
    def of_text(cls, text: str) -> Self:
        return cls(type="text", text=text)

    @classmethod
    def image_url(cls, url: str) -> Self:
        return cls(type="image_url", url=url)


def new_call_id() -> str:
    """Generate a tool-call id for providers that omit one."""
    return f"call_{uuid.uuid4().hex[:24]}"


class ToolCallRequest(BaseModel):
    """A model's request to invoke a tool.

    ``arguments`` is passed through untyped; the executor validates it.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_call_id, min_length=1)
    name: str
    arguments: Any = Field(default_factory=dict)


class Message(BaseModel):
    """One turn in a conversation.

    Example:
        >>> msgs = [Message.system("Be brief."), Message.user("hi")]
        >>> msgs[1].text
        'hi'
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | tuple[ContentPart, ...] = ""
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None

    @property
    def text(self) -> str:
        """Text content, joining text parts for structured content."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text or "" for p in self.content if p.type == "text")

    @classmethod
    def system(cls, content: str) -> Self:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str | list[ContentPart] | tuple[ContentPart, ...]) -> Self:
        return cls(role=Role.USER, content=content if isinstance(content, str) else tuple(content))

    @classmethod
    def assistant(cls, content: str = "", *, tool_calls: list[ToolCallRequest] | tuple[ToolCallRequest, ...] = ()) -> Self:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, tool_call_id: str, content: str, *, name: str | None = None) -> Self:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)
