"""Tests for the MCP server: JSON-RPC over HTTP, sessions and SSE."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator

import pytest
from starlette.testclient import TestClient

from toolrelay.ext.mcp import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    MCPServer,
    SessionState,
    SessionStore,
)
from toolrelay.foundation.config import ServerSettings
from toolrelay.foundation.core import InvocationContext
from toolrelay.foundation.registry import ToolRegistry
from toolrelay.foundation.testing import make_tool

HEADER = "Mcp-Session-Id"


def _rpc(method: str, params: dict | None = None, id: int | None = 1) -> dict:
    body: dict = {"jsonrpc": "2.0", "method": method}
    if id is not None:
        body["id"] = id
    if params is not None:
        body["params"] = params
    return body


async def _explode(args, ctx):
    raise RuntimeError("boom")


async def _whoami(args, ctx: InvocationContext):
    return {"actor": ctx.actor, "tenant": ctx.tenant, "session": ctx.get("session_id")}


@pytest.fixture
def mcp_registry(registry: ToolRegistry) -> ToolRegistry:
    return ToolRegistry([*registry, make_tool("explode", _explode), make_tool("whoami", _whoami)])


@pytest.fixture
def server(mcp_registry: ToolRegistry) -> MCPServer:
    return MCPServer(
        mcp_registry,
        settings=ServerSettings(name="test-server", sse_keepalive=0.05),
        identify=lambda init: {"actor": init.client_info.get("name"), "tenant": "acme"},
    )


@pytest.fixture
def client(server: MCPServer) -> Iterator[TestClient]:
    with TestClient(server.app) as c:
        yield c


def _open_session(client: TestClient, *, initialized: bool = True) -> str:
    resp = client.post("/mcp", json=_rpc("initialize", {"protocolVersion": "2025-06-18", "clientInfo": {"name": "ada"}}))
    session_id = resp.headers[HEADER]
    if initialized:
        note = client.post("/mcp", json=_rpc("notifications/initialized", id=None), headers={HEADER: session_id})
        assert note.status_code == 202
    return session_id


def _call(client: TestClient, session_id: str, method: str, params: dict | None = None):
    return client.post("/mcp", json=_rpc(method, params), headers={HEADER: session_id})


# ─────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ─────────────────────────────────────────────────────────────────────────────


class TestInitialize:
    def test_result_and_session_header(self, client: TestClient) -> None:
        resp = client.post("/mcp", json=_rpc("initialize", {"protocolVersion": "2025-03-26", "clientInfo": {"name": "t"}}))
        assert resp.status_code == 200
        result = resp.json()["result"]
        assert result["protocolVersion"] == "2025-03-26"
        assert result["capabilities"] == {"tools": {"listChanged": False}}
        assert result["serverInfo"]["name"] == "test-server"
        assert result["sessionId"] == resp.headers[HEADER]

    def test_unsupported_version_gets_default(self, client: TestClient) -> None:
        resp = client.post("/mcp", json=_rpc("initialize", {"protocolVersion": "1999-01-01"}))
        assert resp.json()["result"]["protocolVersion"] == "2025-06-18"

    def test_session_ids_unique(self, client: TestClient) -> None:
        ids = {_open_session(client, initialized=False) for _ in range(20)}
        assert len(ids) == 20

    def test_calls_before_initialized_rejected(self, client: TestClient) -> None:
        session_id = _open_session(client, initialized=False)
        resp = _call(client, session_id, "tools/list")
        assert resp.json()["error"]["code"] == INVALID_REQUEST
        assert _call(client, session_id, "ping").json()["result"] == {}

    def test_shutdown_invalidates_session(self, client: TestClient) -> None:
        session_id = _open_session(client)
        assert _call(client, session_id, "shutdown").json()["result"] == {}
        resp = _call(client, session_id, "tools/list")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == SESSION_NOT_FOUND


class TestSessionHeader:
    def test_missing_header(self, client: TestClient) -> None:
        resp = client.post("/mcp", json=_rpc("tools/list"))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == INVALID_REQUEST

    def test_unknown_session(self, client: TestClient) -> None:
        resp = _call(client, "deadbeef", "tools/list")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == SESSION_NOT_FOUND

    def test_delete(self, client: TestClient) -> None:
        session_id = _open_session(client)
        assert client.delete("/mcp", headers={HEADER: session_id}).status_code == 204
        assert _call(client, session_id, "tools/list").status_code == 404
        assert client.delete("/mcp", headers={HEADER: session_id}).status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# Envelope errors
# ─────────────────────────────────────────────────────────────────────────────


class TestEnvelope:
    def test_parse_error(self, client: TestClient) -> None:
        resp = client.post("/mcp", content=b"{not json", headers={"content-type": "application/json"})
        assert resp.json()["error"]["code"] == PARSE_ERROR

    def test_batch_rejected(self, client: TestClient) -> None:
        resp = client.post("/mcp", json=[_rpc("ping")])
        assert resp.json()["error"]["code"] == INVALID_REQUEST

    def test_bad_envelope(self, client: TestClient) -> None:
        resp = client.post("/mcp", json={"jsonrpc": "1.0", "id": 1, "method": "ping"})
        assert resp.json()["error"]["code"] == INVALID_REQUEST

    def test_unknown_method(self, client: TestClient) -> None:
        session_id = _open_session(client)
        resp = _call(client, session_id, "resources/list")
        body = resp.json()
        assert body["id"] == 1
        assert body["error"]["code"] == METHOD_NOT_FOUND

    def test_unknown_method_without_session(self, client: TestClient) -> None:
        resp = client.post("/mcp", json=_rpc("no/such"))
        assert resp.status_code == 200
        assert resp.json()["error"]["code"] == METHOD_NOT_FOUND

    def test_notification_gets_no_body(self, client: TestClient) -> None:
        session_id = _open_session(client)
        resp = client.post("/mcp", json=_rpc("ping", id=None), headers={HEADER: session_id})
        assert resp.status_code == 202
        assert resp.content == b""


# ─────────────────────────────────────────────────────────────────────────────
# Tools
# ─────────────────────────────────────────────────────────────────────────────


class TestTools:
    def test_list_is_ordered_and_stable(self, client: TestClient) -> None:
        session_id = _open_session(client)
        first = _call(client, session_id, "tools/list").json()["result"]["tools"]
        second = _call(client, session_id, "tools/list").json()["result"]["tools"]
        assert first == second
        assert [t["name"] for t in first] == ["echo", "add", "explode", "whoami"]
        assert first[0]["inputSchema"]["required"] == ["text"]

    def test_call(self, client: TestClient) -> None:
        session_id = _open_session(client)
        result = _call(client, session_id, "tools/call", {"name": "echo", "arguments": {"text": "hi"}}).json()["result"]
        assert result == {"content": [{"type": "text", "text": "hi"}], "isError": False}

    def test_structured_content_for_dict_results(self, client: TestClient) -> None:
        session_id = _open_session(client)
        result = _call(client, session_id, "tools/call", {"name": "add", "arguments": {"a": 2, "b": 3}}).json()["result"]
        assert result["structuredContent"] == {"sum": 5}

    def test_json_string_arguments(self, client: TestClient) -> None:
        session_id = _open_session(client)
        resp = _call(client, session_id, "tools/call", {"name": "echo", "arguments": '{"text": "hi"}'})
        assert resp.json()["result"]["content"] == [{"type": "text", "text": "hi"}]

    def test_malformed_json_string_arguments(self, client: TestClient) -> None:
        session_id = _open_session(client)
        resp = _call(client, session_id, "tools/call", {"name": "echo", "arguments": '{"text": '})
        assert resp.json()["error"]["code"] == INVALID_PARAMS

    def test_unknown_tool(self, client: TestClient) -> None:
        session_id = _open_session(client)
        resp = _call(client, session_id, "tools/call", {"name": "nope", "arguments": {}})
        assert resp.json()["error"]["code"] == INVALID_PARAMS

    def test_invalid_arguments(self, client: TestClient) -> None:
        session_id = _open_session(client)
        error = _call(client, session_id, "tools/call", {"name": "add", "arguments": {"a": "2"}}).json()["error"]
        assert error["code"] == INVALID_PARAMS
        assert {e["loc"] for e in error["data"]} == {"a", "b"}

    def test_execution_failure_is_error_result(self, client: TestClient) -> None:
        session_id = _open_session(client)
        result = _call(client, session_id, "tools/call", {"name": "explode"}).json()["result"]
        assert result["isError"] is True
        assert "boom" in result["content"][0]["text"]

    def test_session_context(self, client: TestClient) -> None:
        session_id = _open_session(client)
        result = _call(client, session_id, "tools/call", {"name": "whoami"}).json()["result"]
        assert result["structuredContent"] == {"actor": "ada", "tenant": "acme", "session": session_id}


# ─────────────────────────────────────────────────────────────────────────────
# SSE
# ─────────────────────────────────────────────────────────────────────────────


class TestEventStream:
    def test_requires_event_stream_accept(self, client: TestClient) -> None:
        assert client.get("/mcp", headers={"accept": "application/json"}).status_code == 406

    def test_unknown_session_stream(self, client: TestClient) -> None:
        resp = client.get("/mcp", headers={"accept": "text/event-stream", HEADER: "deadbeef"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_endpoint_message_and_close(self, server: MCPServer, mcp_registry: ToolRegistry) -> None:
        session = await server.store.create(mcp_registry, protocol_version="2025-06-18")
        stream = server.event_stream(session, f"/mcp?sessionId={session.id}")

        assert await anext(stream) == f"event: endpoint\ndata: /mcp?sessionId={session.id}\n\n"

        await server.notify(session.id, "notifications/message", {"level": "info", "data": "hello"})
        message = await anext(stream)
        assert message.startswith("event: message\n")
        assert '"method":"notifications/message"' in message

        assert await anext(stream) == ": keepalive\n\n"

        await server.store.delete(session.id)
        with pytest.raises(StopAsyncIteration):
            await anext(stream)

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_messages_and_ends(self, server: MCPServer, mcp_registry: ToolRegistry) -> None:
        session = await server.store.create(mcp_registry, protocol_version="2025-06-18")
        streams = [server.event_stream(session, "/mcp") for _ in range(2)]
        for stream in streams:
            assert (await anext(stream)).startswith("event: endpoint\n")
        assert len(session.subscribers) == 2

        await server.notify(session.id, "notifications/message", {"data": "hello"})
        for stream in streams:
            assert (await anext(stream)).startswith("event: message\n")

        await server.store.delete(session.id)
        for stream in streams:
            with pytest.raises(StopAsyncIteration):
                await asyncio.wait_for(anext(stream), timeout=1)
        assert session.subscribers == set()

    @pytest.mark.asyncio
    async def test_closed_stream_unsubscribes(self, server: MCPServer, mcp_registry: ToolRegistry) -> None:
        session = await server.store.create(mcp_registry, protocol_version="2025-06-18")
        stream = server.event_stream(session, "/mcp")
        await anext(stream)
        await stream.aclose()
        assert session.subscribers == set()


# ─────────────────────────────────────────────────────────────────────────────
# Session store
# ─────────────────────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_reaps_idle_sessions(self, registry: ToolRegistry) -> None:
        clock = FakeClock()
        store = SessionStore(ttl=10, clock=clock)
        idle = await store.create(registry, protocol_version="2025-06-18")
        clock.now = 5
        active = await store.create(registry, protocol_version="2025-06-18")

        clock.now = 12
        assert await store.reap_idle() == [idle.id]
        assert idle.state is SessionState.CLOSED
        assert active.id in store

    @pytest.mark.asyncio
    async def test_get_refreshes_activity(self, registry: ToolRegistry) -> None:
        clock = FakeClock()
        store = SessionStore(ttl=10, clock=clock)
        session = await store.create(registry, protocol_version="2025-06-18")
        clock.now = 8
        await store.get(session.id)
        clock.now = 15
        assert await store.reap_idle() == []

    @pytest.mark.asyncio
    async def test_busy_sessions_skipped(self, registry: ToolRegistry) -> None:
        clock = FakeClock()
        store = SessionStore(ttl=10, clock=clock)
        session = await store.create(registry, protocol_version="2025-06-18")
        clock.now = 100
        async with session.lock:
            assert await store.reap_idle() == []
        assert await store.reap_idle() == [session.id]

    @pytest.mark.asyncio
    async def test_reaper_task(self, registry: ToolRegistry) -> None:
        clock = FakeClock()
        store = SessionStore(ttl=1, clock=clock)
        await store.create(registry, protocol_version="2025-06-18")
        clock.now = 5
        task = asyncio.create_task(store.run_reaper(0.01))
        try:
            for _ in range(100):
                if not len(store):
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_long_call_keeps_session_alive(self, registry: ToolRegistry) -> None:
        clock = FakeClock()

        async def slow(args, ctx):
            clock.now += 25
            return "done"

        server = MCPServer(ToolRegistry([*registry, make_tool("slow", slow)]), store=SessionStore(ttl=10, clock=clock))
        _, _, session_id = await server.dispatch(_rpc("initialize", {"protocolVersion": "2025-06-18"}), None)
        status, _, _ = await server.dispatch(_rpc("notifications/initialized", id=None), session_id)
        assert status == 202

        status, body, _ = await server.dispatch(_rpc("tools/call", {"name": "slow", "arguments": {}}), session_id)
        assert status == 200
        assert body["result"]["isError"] is False
        assert await server.store.reap_idle() == []
        assert session_id in server.store
