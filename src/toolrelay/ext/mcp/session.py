"""Protocol sessions and the store that owns them.

A session is created by ``initialize``, becomes usable after the client's
``notifications/initialized``, and ends on ``shutdown``, DELETE or idle
expiry. Calls for one session are serialized through its lock; the reaper
never touches a session whose lock is held.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from toolrelay.foundation.errors import JsonDict
from toolrelay.foundation.registry import ToolRegistry
from toolrelay.runtime.observability import get_logger

from .protocol import SessionNotFound

log = get_logger("toolrelay.sessions")


class SessionState(StrEnum):
    CREATED = "created"
    INITIALIZED = "initialized"
    CLOSED = "closed"


@dataclass(slots=True, eq=False)
class Session:
    """One client's protocol session.

    Each SSE stream subscribes its own queue; ``push`` fans a message out to
    every subscriber and ``close`` ends them all with ``None``.
    """

    id: str
    registry: ToolRegistry
    protocol_version: str
    client_info: JsonDict = field(default_factory=dict)
    actor: str | None = None
    tenant: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    state: SessionState = SessionState.CREATED
    last_active: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    subscribers: set[asyncio.Queue[JsonDict | None]] = field(default_factory=set)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def mark_initialized(self) -> None:
        if self.state is SessionState.CREATED:
            self.state = SessionState.INITIALIZED

    def subscribe(self) -> asyncio.Queue[JsonDict | None]:
        queue: asyncio.Queue[JsonDict | None] = asyncio.Queue()
        if self.closed:
            queue.put_nowait(None)
        else:
            self.subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[JsonDict | None]) -> None:
        self.subscribers.discard(queue)

    def push(self, message: JsonDict) -> None:
        if not self.closed:
            for queue in self.subscribers:
                queue.put_nowait(message)

    def close(self) -> None:
        if not self.closed:
            self.state = SessionState.CLOSED
            for queue in self.subscribers:
                queue.put_nowait(None)
            self.subscribers.clear()


class SessionStore:
    """Owns every live session, keyed by id.

    Example:
        >>> store = SessionStore(ttl=600)
        >>> session = await store.create(registry, protocol_version="2025-06-18")
        >>> (await store.get(session.id)) is session
        True
    """

    __slots__ = ("ttl", "_sessions", "_lock", "_clock")

    def __init__(self, *, ttl: float = 1800.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def create(
        self,
        registry: ToolRegistry,
        *,
        protocol_version: str,
        client_info: JsonDict | None = None,
        actor: str | None = None,
        tenant: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> Session:
        async with self._lock:
            while (session_id := secrets.token_hex(16)) in self._sessions:
                continue
            session = Session(
                id=session_id,
                registry=registry,
                protocol_version=protocol_version,
                client_info=dict(client_info or {}),
                actor=actor,
                tenant=tenant,
                context=dict(context or {}),
                last_active=self._clock(),
            )
            self._sessions[session_id] = session
        log.info("session created", session=session_id, protocol_version=protocol_version)
        return session

    async def get(self, session_id: str) -> Session:
        """Look up a live session and mark it active. Raises SessionNotFound."""
        async with self._lock:
            session = self._sessions.get(session_id)
        if session is None or session.closed:
            raise SessionNotFound(f"Session '{session_id}' not found")
        self.touch(session)
        return session

    def touch(self, session: Session) -> None:
        """Mark ``session`` active now."""
        session.last_active = self._clock()

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        log.info("session deleted", session=session_id)
        return True

    async def reap_idle(self) -> list[str]:
        """Delete sessions idle longer than ``ttl``. Busy sessions are skipped."""
        now = self._clock()
        async with self._lock:
            expired = [
                s for s in self._sessions.values()
                if not s.lock.locked() and now - s.last_active > self.ttl
            ]
            for session in expired:
                del self._sessions[session.id]
        for session in expired:
            session.close()
        if expired:
            log.info("sessions reaped", count=len(expired))
        return [s.id for s in expired]

    async def run_reaper(self, interval: float) -> None:
        """Reap forever; run as a background task and cancel to stop."""
        while True:
            await asyncio.sleep(interval)
            await self.reap_idle()

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
