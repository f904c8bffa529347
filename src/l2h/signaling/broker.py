"""In-memory registry of tunnel signaling sessions.

The broker pairs an offer with an answer for a bound path and tracks the
resulting session until it is closed, superseded or reaped. Payloads are
opaque bytes; the transport that consumes them lives elsewhere.

At most one session per path may be ``connecting``. A new offer for the
same path discards the pending one, so a client still holding the old id
sees it vanish on lookup.
"""

from __future__ import annotations

import asyncio
import base64
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from l2h.core.config import NodeRole
from l2h.core.logging import get_logger
from l2h.security.credentials import random_token
from l2h.signaling.lock import ReadWriteLock

SESSION_ID_LENGTH = 32
DEFAULT_SESSION_TTL = 300.0


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    ESTABLISHED = "established"
    CLOSED = "closed"


@dataclass
class SignalingSession:
    """One offer/answer handshake for a path."""

    id: str
    path: str
    status: SessionStatus = SessionStatus.CONNECTING
    offer: bytes = b""
    answer: bytes = b""
    created_at: float = field(default_factory=time.time)

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "status": self.status.value,
            "created_at": self.created_at,
        }


class Answerer(Protocol):
    """Produces the answer payload for an offer.

    Stands in for the tunnel transport's negotiation step.
    """

    async def answer(self, session: SignalingSession, offer: bytes) -> bytes: ...


class OpaqueAnswerer:
    """Answers every offer with random base64 bytes."""

    def __init__(self, size: int = 32) -> None:
        self.size = size

    async def answer(self, session: SignalingSession, offer: bytes) -> bytes:
        return base64.b64encode(os.urandom(self.size))


class SignalingBroker:
    """Session registry for one node.

    Reads take the shared side of a reader/writer lock, every mutation takes
    the exclusive side. The answerer is awaited outside the lock.
    """

    def __init__(
        self,
        role: NodeRole = NodeRole.FRONT,
        *,
        answerer: Answerer | None = None,
        session_ttl: float = DEFAULT_SESSION_TTL,
        sweep_interval: float = 30.0,
        clock: Callable[[], float] = time.time,
        logger: Any = None,
    ) -> None:
        self.role = role
        self.session_ttl = session_ttl
        self._answerer = answerer or OpaqueAnswerer()
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._log = logger or get_logger("l2h.signaling", role=role.value)

        self._lock = ReadWriteLock()
        self._sessions: dict[str, SignalingSession] = {}
        self._by_path: dict[str, str] = {}
        self._reaper_task: asyncio.Task | None = None

    def _new_session_id(self) -> str:
        session_id = random_token(SESSION_ID_LENGTH)
        while session_id in self._sessions:
            session_id = random_token(SESSION_ID_LENGTH)
        return session_id

    def _discard(self, session_id: str) -> SignalingSession | None:
        """Remove a session. Caller must hold the write lock."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.status = SessionStatus.CLOSED
        if self._by_path.get(session.path) == session_id:
            del self._by_path[session.path]
        return session

    async def submit_offer(self, path: str, offer: bytes) -> tuple[str, bytes]:
        """Open a connecting session for ``path`` and answer the offer.

        Any connecting session already registered for the path is discarded.
        """
        with self._lock.write():
            previous_id = self._by_path.get(path)
            superseded = None
            if previous_id is not None:
                previous = self._sessions.get(previous_id)
                if previous is not None and previous.status == SessionStatus.CONNECTING:
                    superseded = self._discard(previous_id)

            session = SignalingSession(
                id=self._new_session_id(),
                path=path,
                offer=offer,
                created_at=self._clock(),
            )
            self._sessions[session.id] = session
            self._by_path[path] = session.id

        if superseded is not None:
            self._log.info("Superseded pending session", path=path, session_id=superseded.id)

        try:
            answer = await self._answerer.answer(session, offer)
        except Exception:
            with self._lock.write():
                self._discard(session.id)
            self._log.error("Answerer failed", path=path, session_id=session.id)
            raise

        with self._lock.write():
            # A newer offer may have superseded this session while the
            # answerer ran; the caller still gets its answer.
            if session.id in self._sessions:
                session.answer = answer

        self._log.info("Offer answered", path=path, session_id=session.id)
        return session.id, answer

    def lookup_session(self, session_id: str) -> SignalingSession | None:
        with self._lock.read():
            return self._sessions.get(session_id)

    def session_for_path(self, path: str) -> SignalingSession | None:
        with self._lock.read():
            session_id = self._by_path.get(path)
            return self._sessions.get(session_id) if session_id else None

    def accept_answer(self, path: str, answer: bytes) -> SignalingSession:
        """Record the answering side's payload and mark the session established.

        On a node that never saw the offer, the session is registered here
        directly in the established state.
        """
        with self._lock.write():
            session_id = self._by_path.get(path)
            session = self._sessions.get(session_id) if session_id else None

            if session is None or session.status != SessionStatus.CONNECTING:
                if session is not None:
                    self._discard(session.id)
                session = SignalingSession(
                    id=self._new_session_id(),
                    path=path,
                    created_at=self._clock(),
                )
                self._sessions[session.id] = session
                self._by_path[path] = session.id

            session.answer = answer
            session.status = SessionStatus.ESTABLISHED

        self._log.info("Session established", path=path, session_id=session.id)
        return session

    def close_session(self, session_id: str) -> bool:
        with self._lock.write():
            session = self._discard(session_id)
        if session is None:
            return False
        self._log.info("Session closed", path=session.path, session_id=session_id)
        return True

    def sweep_expired(self, now: float | None = None) -> int:
        """Evict sessions older than the TTL and return how many were removed."""
        now = self._clock() if now is None else now
        with self._lock.write():
            expired = [
                sid for sid, s in self._sessions.items() if now - s.created_at > self.session_ttl
            ]
            for sid in expired:
                self._discard(sid)
        if expired:
            self._log.info("Reaped expired sessions", count=len(expired))
        return len(expired)

    def session_count(self) -> int:
        with self._lock.read():
            return len(self._sessions)

    async def start(self) -> None:
        if self._reaper_task is None:
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def stop(self) -> None:
        if self._reaper_task:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

    async def _reaper_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._sweep_interval)
                self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._log.error("Reaper error", error=str(e))
