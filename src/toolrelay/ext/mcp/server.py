"""MCP server: JSON-RPC tool access over HTTP with sessions and SSE.

Routes (all on one path, ``/mcp`` by default):
- ``POST``: one JSON-RPC request or notification per HTTP request
- ``GET`` (``Accept: text/event-stream``): session event stream
- ``DELETE``: terminate the session named by the session header

Example - standalone:
    >>> from toolrelay.ext.mcp import serve_mcp
    >>> serve_mcp(registry, port=8080)

Example - mount into an existing Starlette app:
    >>> server = MCPServer(registry)
    >>> app.mount("/agent", server.app)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeAlias

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from toolrelay.foundation.config import ServerSettings, get_settings
from toolrelay.foundation.core import InvocationContext
from toolrelay.foundation.errors import JsonDict, ProtocolError, SchemaValidationError
from toolrelay.foundation.registry import ToolRegistry
from toolrelay.io.streaming import DecodeError, decode, encode, format_comment, format_event, format_json_event
from toolrelay.runtime.executor import AuthorizeHook, ToolCallbacks, ToolExecutor, decode_arguments
from toolrelay.runtime.observability import get_logger

from .protocol import (
    CallToolParams,
    InitializeParams,
    InternalError,
    InvalidParams,
    JsonRpcRequest,
    MethodNotFound,
    ParseError,
    SessionNotFound,
    SessionRequired,
    SessionStateError,
    error_response,
    notification,
    parse_params,
    result_response,
)
from .session import Session, SessionState, SessionStore

if TYPE_CHECKING:
    from starlette.types import ASGIApp

logger = logging.getLogger("toolrelay.server")

# initialize(params) -> {"actor": ..., "tenant": ..., "context": {...}} for the new session
IdentifyHook: TypeAlias = Callable[[InitializeParams], JsonDict]
Handler: TypeAlias = Callable[[Session, JsonDict], Awaitable[JsonDict]]

# Methods accepted before notifications/initialized
_PRE_INIT = frozenset({"initialize", "notifications/initialized", "ping", "shutdown"})


class OrjsonResponse(JSONResponse):
    def render(self, content: Any) -> bytes:
        return encode(content)


class MCPServer:
    """Session-aware MCP endpoint over one tool registry.

    Args:
        registry: Tools exposed to clients
        store: Session store (a fresh one per server by default)
        settings: Server settings (defaults to ``get_settings().server``)
        callbacks: Tool lifecycle callbacks for every tools/call
        authorize: Permission hook consulted before each tool runs
        identify: Derives actor/tenant/context for a new session from initialize params
    """

    __slots__ = ("registry", "settings", "store", "executor", "identify", "_handlers", "_log", "_app")

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        store: SessionStore | None = None,
        settings: ServerSettings | None = None,
        callbacks: ToolCallbacks | None = None,
        authorize: AuthorizeHook | None = None,
        identify: IdentifyHook | None = None,
        include_details: bool = False,
    ) -> None:
        self.registry = registry
        self.settings = settings or get_settings().server
        self.store = store or SessionStore(ttl=self.settings.session_ttl)
        self.executor = ToolExecutor(registry, callbacks, authorize=authorize, include_details=include_details)
        self.identify = identify
        self._handlers: dict[str, Handler] = {
            "notifications/initialized": self._initialized,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "shutdown": self._shutdown,
            "ping": self._ping,
        }
        self._log = get_logger("toolrelay.server", server=self.settings.name)
        self._app: Starlette | None = None

    # ─────────────────────────────────────────────────────────────────
    # JSON-RPC dispatch
    # ─────────────────────────────────────────────────────────────────

    async def dispatch(self, payload: Any, session_id: str | None) -> tuple[int, JsonDict | None, str | None]:
        """Handle one decoded JSON-RPC message.

        Returns (HTTP status, response body or None for notifications, session id to echo).
        """
        request_id = payload.get("id") if isinstance(payload, dict) else None
        request: JsonRpcRequest | None = None
        try:
            request = JsonRpcRequest.parse(payload)
            if request.method == "initialize":
                session, result = await self._initialize(request.params)
                return 200, result_response(request.id, result), session.id
            if request.method not in self._handlers:
                raise MethodNotFound(f"Method '{request.method}' not found")
            if not session_id:
                raise SessionRequired(f"Missing {self.settings.session_header} header")
            session = await self.store.get(session_id)
            async with session.lock:
                if session.closed:
                    raise SessionNotFound(f"Session '{session_id}' not found")
                try:
                    result = await self._call(session, request)
                finally:
                    self.store.touch(session)
            if request.is_notification:
                return 202, None, session.id
            return 200, result_response(request.id, result), session.id
        except ProtocolError as e:
            if request is not None and request.is_notification and e.http_status == 200:
                return 202, None, None
            return e.http_status, error_response(request_id, e), None
        except Exception as e:
            logger.exception("Unhandled error dispatching %r", getattr(request, "method", None))
            return 200, error_response(request_id, InternalError(f"Internal error: {e}")), None

    async def _call(self, session: Session, request: JsonRpcRequest) -> JsonDict:
        if (handler := self._handlers.get(request.method)) is None:
            raise MethodNotFound(f"Method '{request.method}' not found")
        if session.state is SessionState.CREATED and request.method not in _PRE_INIT:
            raise SessionStateError("Session not initialized")
        return await handler(session, request.params)

    async def _initialize(self, params: JsonDict) -> tuple[Session, JsonDict]:
        init = parse_params(InitializeParams, params)
        supported = self.settings.supported_versions
        version = init.protocol_version if init.protocol_version in supported else self.settings.protocol_version
        identity = self.identify(init) if self.identify is not None else {}
        session = await self.store.create(
            self.registry,
            protocol_version=version,
            client_info=init.client_info,
            actor=identity.get("actor"),
            tenant=identity.get("tenant"),
            context=identity.get("context"),
        )
        return session, {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.settings.name, "version": self.settings.version},
            "sessionId": session.id,
        }

    async def _initialized(self, session: Session, params: JsonDict) -> JsonDict:
        session.mark_initialized()
        return {}

    async def _list_tools(self, session: Session, params: JsonDict) -> JsonDict:
        return {"tools": [tool.mcp_descriptor() for tool in session.registry]}

    async def _call_tool(self, session: Session, params: JsonDict) -> JsonDict:
        call = parse_params(CallToolParams, params)
        if (tool := session.registry.get(call.name)) is None:
            raise InvalidParams(f"Unknown tool: {call.name}")
        try:
            arguments = decode_arguments(call.arguments)
        except DecodeError as e:
            raise InvalidParams(f"Arguments are not valid JSON: {e}") from e
        if tool.strict:
            try:
                self.executor.validator(tool).validate(arguments, tool_name=tool.name)
            except SchemaValidationError as e:
                raise InvalidParams(e.message, data=list(e.errors)) from e

        context = InvocationContext(
            actor=session.actor,
            tenant=session.tenant,
            shared_context={**session.context, "session_id": session.id},
            callbacks=self.executor.callbacks,
        )
        result = await self.executor.execute(tool.name, arguments, context)
        self._log.bind_session(session.id).info("tools/call", tool=tool.name, status=str(result.status))
        body: JsonDict = {"content": [{"type": "text", "text": result.text}], "isError": not result.is_ok}
        if isinstance(result.raw, dict):
            body["structuredContent"] = result.raw
        return body

    async def _shutdown(self, session: Session, params: JsonDict) -> JsonDict:
        await self.store.delete(session.id)
        return {}

    async def _ping(self, session: Session, params: JsonDict) -> JsonDict:
        return {}

    async def notify(self, session_id: str, method: str, params: JsonDict | None = None) -> None:
        """Queue a server-initiated notification on the session's event stream."""
        session = await self.store.get(session_id)
        session.push(notification(method, params))

    # ─────────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────────

    def _session_id(self, request: Request) -> str | None:
        return request.headers.get(self.settings.session_header) or request.query_params.get("sessionId")

    async def handle_post(self, request: Request) -> Response:
        try:
            payload = decode(await request.body())
        except DecodeError as e:
            err = ParseError(f"Parse error: {e}")
            return OrjsonResponse(error_response(None, err), status_code=err.http_status)
        status, body, session_id = await self.dispatch(payload, self._session_id(request))
        headers = {self.settings.session_header: session_id} if session_id else None
        if body is None:
            return Response(status_code=status, headers=headers)
        return OrjsonResponse(body, status_code=status, headers=headers)

    async def handle_get(self, request: Request) -> Response:
        if "text/event-stream" not in request.headers.get("accept", ""):
            return Response("Expected Accept: text/event-stream", status_code=406)
        session: Session | None = None
        if session_id := request.headers.get(self.settings.session_header):
            try:
                session = await self.store.get(session_id)
            except SessionNotFound as e:
                return OrjsonResponse(error_response(None, e), status_code=e.http_status)
        endpoint = request.url.path + (f"?sessionId={session.id}" if session else "")
        headers = {"Cache-Control": "no-cache"}
        if session is not None:
            headers[self.settings.session_header] = session.id
        return StreamingResponse(self.event_stream(session, endpoint), media_type="text/event-stream", headers=headers)

    async def event_stream(self, session: Session | None, endpoint: str) -> AsyncIterator[str]:
        """SSE body: the endpoint event, then queued messages and keepalives until the session ends."""
        queue: asyncio.Queue[JsonDict | None] = session.subscribe() if session is not None else asyncio.Queue()
        try:
            yield format_event("endpoint", endpoint)
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=self.settings.sse_keepalive)
                except TimeoutError:
                    yield format_comment()
                    continue
                if message is None:
                    return
                yield format_json_event("message", message)
        finally:
            if session is not None:
                session.unsubscribe(queue)

    async def handle_delete(self, request: Request) -> Response:
        if not (session_id := request.headers.get(self.settings.session_header)):
            err = SessionRequired(f"Missing {self.settings.session_header} header")
            return OrjsonResponse(error_response(None, err), status_code=err.http_status)
        if not await self.store.delete(session_id):
            err = SessionNotFound(f"Session '{session_id}' not found")
            return OrjsonResponse(error_response(None, err), status_code=err.http_status)
        return Response(status_code=204)

    async def endpoint(self, request: Request) -> Response:
        match request.method:
            case "POST":
                return await self.handle_post(request)
            case "GET":
                return await self.handle_get(request)
            case _:
                return await self.handle_delete(request)

    @contextlib.asynccontextmanager
    async def lifespan(self, app: Starlette) -> AsyncIterator[None]:
        reaper = asyncio.create_task(self.store.run_reaper(self.settings.reap_interval))
        self._log.info("server started", path=self.settings.path, tools=len(self.registry))
        try:
            yield
        finally:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
            await self.store.close_all()
            self._log.info("server stopped")

    @property
    def app(self) -> Starlette:
        """Starlette ASGI app (created lazily)."""
        if self._app is None:
            self._app = Starlette(
                routes=[Route(self.settings.path, self.endpoint, methods=["POST", "GET", "DELETE"])],
                lifespan=self.lifespan,
            )
        return self._app

    def run(self, host: str | None = None, port: int | None = None) -> None:
        import uvicorn

        uvicorn.run(self.app, host=host or self.settings.host, port=port or self.settings.port)


# ═══════════════════════════════════════════════════════════════════════════════
# Convenience Functions
# ═══════════════════════════════════════════════════════════════════════════════


def create_app(registry: ToolRegistry, **kwargs: Any) -> ASGIApp:
    """Create a Starlette app serving ``registry`` over MCP."""
    return MCPServer(registry, **kwargs).app


def serve_mcp(registry: ToolRegistry, *, host: str | None = None, port: int | None = None, **kwargs: Any) -> None:
    """Serve ``registry`` over MCP with uvicorn (blocking).

    Example:
        >>> serve_mcp(registry, port=8080)
    """
    MCPServer(registry, **kwargs).run(host=host, port=port)
