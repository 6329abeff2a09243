"""Shared fixtures: captured logs, an echo tool and a small registry."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from toolrelay.foundation.core import InvocationContext, Tool
from toolrelay.foundation.registry import ToolRegistry
from toolrelay.foundation.testing import make_tool
from toolrelay.runtime.observability import CaptureRenderer, configure_logging


@pytest.fixture(autouse=True)
def captured_logs() -> Iterator[CaptureRenderer]:
    renderer = CaptureRenderer()
    configure_logging(renderer=renderer, level="DEBUG")
    yield renderer
    configure_logging(format="none")


async def _echo(args: dict, ctx: InvocationContext) -> str:
    return args["text"]


def _add(args: dict, ctx: InvocationContext) -> dict:
    return {"sum": args["a"] + args["b"]}


@pytest.fixture
def echo_tool() -> Tool:
    return make_tool(
        "echo", _echo,
        description="Echo the text back",
        properties={"text": {"type": "string"}},
        required=["text"],
    )


@pytest.fixture
def add_tool() -> Tool:
    return make_tool(
        "add", _add,
        description="Add two integers",
        properties={"a": {"type": "integer"}, "b": {"type": "integer"}},
        required=["a", "b"],
    )


@pytest.fixture
def registry(echo_tool: Tool, add_tool: Tool) -> ToolRegistry:
    return ToolRegistry([echo_tool, add_tool])
