from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable

from ..models.upload import UploadSession

"""In-process store for parsed uploads awaiting confirmation.

Sessions expire ``ttl_seconds`` after creation (monotonic clock). Expired
sessions are pruned inline on every ``put`` and periodically by
``SessionSweeper``; once more than ``capacity`` sessions are held the
oldest-created ones are evicted first.
"""

__all__ = [
    "SessionError",
    "UploadSessionStore",
    "SessionSweeper",
]

logger = logging.getLogger(__name__)


class SessionError(Exception):
    """Unknown or expired upload session."""

    def __init__(self, session_id: str, message: str | None = None):
        self.session_id = session_id
        super().__init__(message or f"Upload session {session_id} not found or expired. Please re-upload the file.")


class UploadSessionStore:
    def __init__(
        self,
        ttl_seconds: float = 30 * 60,
        capacity: int = 25,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self._clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._lock = asyncio.Lock()

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _expired(self, session: UploadSession, now: float) -> bool:
        return now - session.created_at > self.ttl_seconds

    def _prune_locked(self) -> int:
        now = self._clock()
        stale = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)

    async def put(self, session: UploadSession) -> None:
        async with self._lock:
            self._prune_locked()
            self._sessions[session.id] = session
            if len(self._sessions) > self.capacity:
                by_age = sorted(self._sessions.values(), key=lambda s: s.created_at)
                for old in by_age[: len(self._sessions) - self.capacity]:
                    del self._sessions[old.id]
                    logger.debug("session %s evicted (capacity %d)", old.id, self.capacity)

    async def get(self, session_id: str) -> UploadSession:
        """Return a live session.

        Raises:
            SessionError: unknown id, or the session outlived its TTL.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionError(session_id)
            if self._expired(session, self._clock()):
                del self._sessions[session_id]
                raise SessionError(session_id)
            return session

    async def evict(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def prune(self) -> int:
        async with self._lock:
            return self._prune_locked()


class SessionSweeper:
    """Background task pruning expired sessions every ``interval_seconds``."""

    def __init__(self, store: UploadSessionStore, interval_seconds: float = 60):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def sweep_once(self) -> int:
        removed = await self.store.prune()
        if removed:
            logger.debug("session sweep removed %d expired session(s)", removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.sweep_once()
