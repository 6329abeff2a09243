"""Tests for environment configuration and structured logging."""

from __future__ import annotations

import io
from collections.abc import Iterator

import orjson
import pytest
from pydantic import ValidationError

from toolrelay.foundation.config import (
    LoggingSettings,
    LoopSettings,
    ServerSettings,
    clear_settings_cache,
    get_settings,
)
from toolrelay.runtime.observability import (
    CaptureRenderer,
    ConsoleRenderer,
    JsonRenderer,
    configure_from_settings,
    get_logger,
    log_context,
)


@pytest.fixture
def fresh_settings() -> Iterator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self, fresh_settings: None) -> None:
        settings = get_settings()
        assert settings.loop.max_iterations == 10
        assert settings.loop.parallel_tools is False
        assert settings.server.path == "/mcp"
        assert settings.server.session_header == "Mcp-Session-Id"
        assert settings.logging.format == "console"

    def test_cached(self, fresh_settings: None) -> None:
        assert get_settings() is get_settings()

    def test_environment(self, fresh_settings: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOOLRELAY_LOOP_MAX_ITERATIONS", "4")
        monkeypatch.setenv("TOOLRELAY_SERVER_PORT", "9000")
        monkeypatch.setenv("TOOLRELAY_LOG_LEVEL", "debug")
        monkeypatch.setenv("TOOLRELAY_DEBUG", "true")
        settings = get_settings()
        assert settings.loop.max_iterations == 4
        assert settings.server.port == 9000
        assert settings.logging.level == "DEBUG"
        assert settings.debug is True

    @pytest.mark.parametrize("value", [0, -1])
    def test_max_iterations_positive(self, value: int) -> None:
        with pytest.raises(ValidationError):
            LoopSettings(max_iterations=value)

    def test_port_range(self) -> None:
        with pytest.raises(ValidationError):
            ServerSettings(port=70000)

    def test_path_gets_leading_slash(self) -> None:
        assert ServerSettings(path="rpc").path == "/rpc"

    def test_protocol_version_must_be_supported(self) -> None:
        with pytest.raises(ValidationError):
            ServerSettings(protocol_version="1999-01-01")

    def test_log_format(self) -> None:
        with pytest.raises(ValidationError):
            LoggingSettings(format="xml")


# ─────────────────────────────────────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────────────────────────────────────


class TestLogging:
    def test_bound_context(self, captured_logs: CaptureRenderer) -> None:
        log = get_logger("toolrelay.test").bind_loop("a1", "m")
        log.info("turn", iteration=1)
        entry = captured_logs.entries[-1]
        assert entry.event == "turn"
        assert entry.fields == {"logger": "toolrelay.test", "loop": "a1", "model": "m", "iteration": 1}

    def test_unbind(self, captured_logs: CaptureRenderer) -> None:
        get_logger().bind(a=1, b=2).unbind("a").info("x")
        assert captured_logs.entries[-1].fields == {"b": 2}

    def test_scoped_context(self, captured_logs: CaptureRenderer) -> None:
        log = get_logger()
        with log_context(request="r1"):
            log.info("inside")
        log.info("outside")
        inside, outside = captured_logs.entries[-2:]
        assert inside.fields == {"request": "r1"}
        assert outside.fields == {}

    def test_exception_carries_traceback(self, captured_logs: CaptureRenderer) -> None:
        try:
            raise ValueError("bad")
        except ValueError as e:
            get_logger().exception("failed", e)
        entry = captured_logs.entries[-1]
        assert entry.level == "error"
        assert "ValueError: bad" in entry.fields["exc_info"]

    def test_json_renderer(self) -> None:
        out = io.StringIO()
        log = get_logger("t").with_sink(JsonRenderer(output=out))
        log.info("hello", n=1)
        line = orjson.loads(out.getvalue())
        assert (line["event"], line["level"], line["n"], line["logger"]) == ("hello", "info", 1, "t")

    def test_console_renderer(self) -> None:
        out = io.StringIO()
        log = get_logger("t").with_sink(ConsoleRenderer(output=out, colors=False))
        log.warning("careful", key="v")
        assert "WARNING  careful" in out.getvalue()
        assert 'key="v"' in out.getvalue()

    def test_level_threshold(self) -> None:
        configure_from_settings(LoggingSettings(level="warning"))
        capture = CaptureRenderer()
        log = get_logger().with_sink(capture)
        log.info("dropped")
        log.error("kept")
        assert capture.events() == ["kept"]
