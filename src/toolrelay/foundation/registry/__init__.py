"""Tool registry: construction, lookup and selection."""

from .registry import ToolProvider, ToolRegistry, register

__all__ = ["ToolRegistry", "ToolProvider", "register"]
