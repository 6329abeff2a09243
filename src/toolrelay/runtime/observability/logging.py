"""Structured logging for the tool loop and protocol server.

Every entry is an event name plus key/value fields. Fields come from three
places, later ones winning: the ambient ``log_context`` scope, the logger's
bound fields, and the call site.

    >>> from toolrelay.runtime.observability import get_logger, configure_logging
    >>> configure_logging(format="json")
    >>> log = get_logger("toolrelay.loop").bind_loop("a1b2c3d4", "gpt-4o")
    >>> log.info("tool call", tool="echo", iteration=1)
    {"ts":"...","level":"info","event":"tool call","logger":"toolrelay.loop","loop":"a1b2c3d4",...}
"""

from __future__ import annotations

import contextlib
import logging
import sys
import time
import traceback
from collections.abc import Iterator
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from functools import partialmethod
from typing import TYPE_CHECKING, Protocol, TextIO, runtime_checkable

import orjson

from toolrelay.foundation.errors import JsonDict, JsonValue
from toolrelay.io.streaming import encode_str

if TYPE_CHECKING:
    from toolrelay.foundation.config import LoggingSettings

_scope: ContextVar[JsonDict] = ContextVar("toolrelay_log_scope", default={})


@dataclass(slots=True, frozen=True)
class LogEntry:
    """One emitted event."""

    at: float
    level: str
    event: str
    fields: JsonDict

    def iso_time(self) -> str:
        return datetime.fromtimestamp(self.at, tz=UTC).isoformat()

    def clock_time(self) -> str:
        return datetime.fromtimestamp(self.at, tz=UTC).strftime("%H:%M:%S.%f")[:-3]


@runtime_checkable
class LogRenderer(Protocol):
    def render(self, entry: LogEntry) -> None: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Logger
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class BoundLogger:
    """Immutable structured logger; ``bind`` returns a copy with more fields.

    ``sink`` pins a renderer for this logger and its copies, otherwise the
    process-wide one from ``configure_logging`` is used.
    """

    fields: JsonDict = field(default_factory=dict)
    sink: LogRenderer | None = None

    def bind(self, **kw: JsonValue) -> BoundLogger:
        return replace(self, fields={**self.fields, **kw})

    def bind_loop(self, loop_id: str, model: str, **kw: JsonValue) -> BoundLogger:
        return self.bind(loop=loop_id, model=model, **kw)

    def bind_session(self, session_id: str, **kw: JsonValue) -> BoundLogger:
        return self.bind(session=session_id, **kw)

    def unbind(self, *keys: str) -> BoundLogger:
        return replace(self, fields={k: v for k, v in self.fields.items() if k not in keys})

    def with_sink(self, sink: LogRenderer | None) -> BoundLogger:
        return replace(self, sink=sink)

    def log(self, level: int, event: str, **kw: JsonValue) -> None:
        if level < _config.level:
            return
        entry = LogEntry(time.time(), logging.getLevelName(level).lower(), event, {**_scope.get(), **self.fields, **kw})
        (self.sink or _config.renderer).render(entry)

    debug = partialmethod(log, logging.DEBUG)
    info = partialmethod(log, logging.INFO)
    warning = partialmethod(log, logging.WARNING)
    error = partialmethod(log, logging.ERROR)

    def exception(self, event: str, exc: BaseException, **kw: JsonValue) -> None:
        """Log at error level with the formatted traceback under ``exc_info``."""
        self.log(logging.ERROR, event, exc_info="".join(traceback.format_exception(exc)), **kw)


def get_logger(name: str | None = None, **fields: JsonValue) -> BoundLogger:
    """Logger with ``logger=name`` plus any initial fields bound."""
    return BoundLogger(fields={"logger": name, **fields} if name else dict(fields))


@contextlib.contextmanager
def log_context(**fields: JsonValue) -> Iterator[None]:
    """Add fields to every entry logged inside the block, across awaits."""
    token = _scope.set({**_scope.get(), **fields})
    try:
        yield
    finally:
        _scope.reset(token)


# ═══════════════════════════════════════════════════════════════════════════════
# Renderers
# ═══════════════════════════════════════════════════════════════════════════════

_ANSI = {"debug": "\033[2m", "info": "\033[32m", "warning": "\033[33m", "error": "\033[31m", "critical": "\033[1;31m"}
_DIM, _RESET = "\033[2m", "\033[0m"


@dataclass(slots=True)
class ConsoleRenderer:
    """``12:00:01.250 INFO     tool call  key=value ...`` lines, colored on a TTY."""

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None

    def __post_init__(self) -> None:
        if self.colors is None:
            self.colors = bool(getattr(self.output, "isatty", lambda: False)())

    def render(self, entry: LogEntry) -> None:
        trace = entry.fields.get("exc_info")
        pairs = " ".join(f"{k}={_console_value(v)}" for k, v in sorted(entry.fields.items()) if k != "exc_info")
        level = f"{entry.level.upper():<8}"
        if self.colors:
            level = f"{_ANSI.get(entry.level, '')}{level}{_RESET}"
            pairs = f"{_DIM}{pairs}{_RESET}" if pairs else pairs
        line = f"{entry.clock_time()} {level} {entry.event}"
        self.output.write(f"{line}  {pairs}\n" if pairs else f"{line}\n")
        if trace:
            self.output.write(f"{trace}\n")


def _console_value(v: object) -> str:
    if isinstance(v, str):
        return encode_str(v)
    if isinstance(v, (dict, list, tuple)):
        return f"<{type(v).__name__} len={len(v)}>"
    return str(v).lower() if isinstance(v, bool) else str(v)


@dataclass(slots=True)
class JsonRenderer:
    """One JSON object per line."""

    output: TextIO = field(default_factory=lambda: sys.stdout)

    def render(self, entry: LogEntry) -> None:
        record = {"ts": entry.iso_time(), "level": entry.level, "event": entry.event, **entry.fields}
        self.output.write(orjson.dumps(record, default=str, option=orjson.OPT_APPEND_NEWLINE).decode())


@dataclass(slots=True)
class NoOpRenderer:
    def render(self, entry: LogEntry) -> None:
        return None


@dataclass(slots=True)
class CaptureRenderer:
    """Keeps entries in memory for assertions."""

    entries: list[LogEntry] = field(default_factory=list)

    def render(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    def events(self) -> list[str]:
        return [e.event for e in self.entries]


# ═══════════════════════════════════════════════════════════════════════════════
# Process-wide configuration
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class _Config:
    renderer: LogRenderer = field(default_factory=ConsoleRenderer)
    level: int = logging.INFO


_config = _Config()


def configure_logging(
    format: str = "console",  # noqa: A002
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
    renderer: LogRenderer | None = None,
) -> LogRenderer:
    """Set the renderer and threshold used by every logger without a sink.

    Args:
        format: "console", "json" or "none"; ignored when ``renderer`` is given
        level: Minimum level name
        output: Stream for console (default stderr) or json (default stdout)
        colors: Force ANSI colors on or off for console output
    """
    if renderer is None:
        if format == "console":
            renderer = ConsoleRenderer(output=output or sys.stderr, colors=colors)
        elif format == "json":
            renderer = JsonRenderer(output=output or sys.stdout)
        elif format == "none":
            renderer = NoOpRenderer()
        else:
            raise ValueError(f"Unknown log format {format!r}; expected console, json or none")
    _config.renderer = renderer
    _config.level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    return renderer


def configure_from_settings(settings: LoggingSettings) -> LogRenderer:
    return configure_logging(format=settings.format, level=settings.level)
