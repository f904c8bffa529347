"""Admin console sessions.

Sessions are held server-side; the client only ever sees the opaque
session id in the ``l2h_session`` cookie, and logout deletes the entry so a
replayed cookie stops working immediately.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class AdminSession:
    """A logged-in admin."""

    session_id: str
    username: str
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0

    def __post_init__(self):
        if self.expires_at == 0.0:
            self.expires_at = self.created_at + 86400

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) > self.expires_at

    def remaining_seconds(self, now: float | None = None) -> float:
        return max(0.0, self.expires_at - (time.time() if now is None else now))


class AdminSessionManager:
    """In-memory admin session storage with expiration cleanup.

    All access to the session table goes through one asyncio lock.
    """

    def __init__(
        self,
        cleanup_interval: float = 300.0,
        session_duration: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        """Create an empty manager.

        Args:
            cleanup_interval: Seconds between expiry sweeps (default 5 min)
            session_duration: Session duration in seconds (default 24 hours)
            clock: Time source, injectable for tests
        """
        self._sessions: dict[str, AdminSession] = {}
        self._cleanup_interval = cleanup_interval
        self._session_duration = session_duration
        self._clock = clock
        self._cleanup_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def session_duration(self) -> int:
        return self._session_duration

    async def start(self) -> None:
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    async def create_session(self, username: str) -> AdminSession:
        now = self._clock()
        session = AdminSession(
            session_id=secrets.token_urlsafe(32),
            username=username,
            created_at=now,
            expires_at=now + self._session_duration,
        )
        async with self._lock:
            self._sessions[session.session_id] = session
        return session

    async def get_session(self, session_id: str) -> AdminSession | None:
        """Return the session, or None if unknown or expired.

        Expired entries are evicted on lookup.
        """
        if not session_id:
            return None
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired(self._clock()):
                del self._sessions[session_id]
                return None
            return session

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def get_session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self.cleanup_expired()
            except asyncio.CancelledError:
                break

    async def cleanup_expired(self) -> int:
        """Remove all expired sessions and return how many were dropped."""
        now = self._clock()
        async with self._lock:
            expired_ids = [
                sid for sid, session in self._sessions.items() if session.expires_at < now
            ]
            for sid in expired_ids:
                del self._sessions[sid]
        return len(expired_ids)
