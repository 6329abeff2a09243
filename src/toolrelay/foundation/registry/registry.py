"""Immutable registry of tools available to one loop or server.

The registry provides:
- Construction from tools or an external ToolProvider
- Duplicate-name rejection at construction time
- Lookup by name, in construction order iteration
- Provider-neutral function specs for the model client
- Narrowed sub-registries via ``select``
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Protocol, runtime_checkable

from toolrelay.foundation.core import Tool
from toolrelay.foundation.errors import DuplicateToolName, JsonDict, UnknownTool


@runtime_checkable
class ToolProvider(Protocol):
    """Anything that can hand over a set of tool definitions."""

    def tools(self) -> Iterable[Tool]: ...


class ToolRegistry:
    """Name -> Tool mapping, fixed at construction.

    Example:
        >>> registry = ToolRegistry([echo_tool, search_tool])
        >>> registry.lookup("echo").description
        'Echo the text back'
        >>> [s["name"] for s in registry.schemas()]
        ['echo', 'search']
    """

    __slots__ = ("_tools",)

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        registered: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in registered:
                raise DuplicateToolName(tool.name)
            registered[tool.name] = tool
        self._tools = registered

    @classmethod
    def from_provider(cls, provider: ToolProvider) -> ToolRegistry:
        """Build from an external provider's tool set."""
        return cls(provider.tools())

    def lookup(self, name: str) -> Tool:
        """Get tool by name, raises UnknownTool if not found."""
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownTool(name) from None

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[JsonDict]:
        """Function specs handed to the model client, in registration order."""
        return [t.spec() for t in self._tools.values()]

    def select(
        self,
        names: Iterable[str] | None = None,
        *,
        exclude: Iterable[str] | None = None,
        predicate: Callable[[Tool], bool] | None = None,
    ) -> ToolRegistry:
        """New registry restricted to ``names``, minus ``exclude``, filtered by ``predicate``.

        Unknown names are ignored; registration order is kept.
        """
        wanted = set(names) if names is not None else None
        dropped = set(exclude or ())
        return ToolRegistry(
            t for n, t in self._tools.items()
            if (wanted is None or n in wanted) and n not in dropped and (predicate is None or predicate(t))
        )

    def __getitem__(self, name: str) -> Tool:
        return self.lookup(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __repr__(self) -> str:
        return f"ToolRegistry({self.names()!r})"


def register(tools: Iterable[Tool]) -> ToolRegistry:
    """Build a registry, failing with DuplicateToolName on a name clash."""
    return ToolRegistry(tools)
