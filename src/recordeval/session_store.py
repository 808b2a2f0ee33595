"""Keyed, TTL-bounded session storage.

``SessionStore`` is the contract the pipeline depends on;
``InMemorySessionStore`` is the process-local implementation.  Sessions do
not survive a restart.

Expiry is lazy: there is no background timer.  ``create()`` sweeps all
expired entries first, and ``get()``/``update()`` delete an expired entry
when they touch it, reporting ``SessionExpiredError`` once.  A later lookup
of the same id reports ``SessionNotFoundError``.

All mutations go through a single ``asyncio.Lock`` so that concurrent
requests never interleave writes.  Callers always receive copies; the only
way to change a stored session is ``update()``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable

from recordeval.errors import (
    DuplicateSessionIdError,
    SessionExpiredError,
    SessionNotFoundError,
)
from recordeval.ids import IdGenerator, generate_id
from recordeval.models.session import Message, Session, SessionPayload

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Mutator = Callable[[Session], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(ABC):
    """Interface for session storage.

    Implementations must apply ``create``/``update``/``delete``/
    ``sweep_expired`` atomically with respect to one another.
    """

    @abstractmethod
    async def create(
        self,
        *,
        session_class: str,
        record: str,
        ttl: timedelta,
        payload: SessionPayload | None = None,
        session_id: str | None = None,
        id_prefix: str = "session",
    ) -> Session:
        """Store a new session expiring ``ttl`` from now and return it.

        Raises:
            DuplicateSessionIdError: if ``session_id`` is already live.
        """
        ...

    @abstractmethod
    async def get(self, session_id: str) -> Session:
        """Return a live session.

        Raises:
            SessionNotFoundError: unknown id
            SessionExpiredError: TTL elapsed (the entry is removed)
        """
        ...

    @abstractmethod
    async def update(self, session_id: str, mutator: Mutator) -> Session:
        """Apply ``mutator`` to a live session and return the new state.

        Same error semantics as :meth:`get`.  If ``mutator`` raises, the
        stored session is left unchanged.
        """
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session; return whether anything was removed."""
        ...

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Remove every expired session; return how many were removed."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of stored sessions, expired or not."""
        ...

    # --- Convenience mutations built on update() ---

    async def append_message(self, session_id: str, message: Message) -> Session:
        """Append one message to the session transcript."""
        return await self.update(session_id, lambda s: s.transcript.append(message))

    async def store_result(self, session_id: str, result: dict) -> Session:
        """Replace the session's last computed result."""

        def _set(session: Session) -> None:
            session.result = result

        return await self.update(session_id, _set)


class InMemorySessionStore(SessionStore):
    """Mutex-guarded dict of sessions keyed by id.

    Args:
        clock: returns the current time; inject a fake for TTL tests
        id_generator: builds ids from a prefix when the caller supplies none
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        id_generator: IdGenerator = generate_id,
    ) -> None:
        self._clock = clock
        self._id_generator = id_generator
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        *,
        session_class: str,
        record: str,
        ttl: timedelta,
        payload: SessionPayload | None = None,
        session_id: str | None = None,
        id_prefix: str = "session",
    ) -> Session:
        async with self._lock:
            self._sweep_locked()

            if session_id is None:
                session_id = self._id_generator(id_prefix)
            if session_id in self._sessions:
                raise DuplicateSessionIdError(session_id)

            now = self._clock()
            session = Session(
                session_id=session_id,
                session_class=session_class,
                record=record,
                payload=payload or SessionPayload(),
                created_at=now,
                expires_at=now + ttl,
            )
            self._sessions[session_id] = session
            logger.info(
                "Session created: session_id=%s, class=%s, expires_at=%s",
                session_id, session_class, session.expires_at.isoformat(),
            )
            return session.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, session_id: str) -> Session:
        async with self._lock:
            return self._get_live_locked(session_id).model_copy(deep=True)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, session_id: str, mutator: Mutator) -> Session:
        async with self._lock:
            current = self._get_live_locked(session_id)
            draft = current.model_copy(deep=True)
            mutator(draft)

            # Transcript is append-only: the old messages must be a prefix
            previous = current.transcript
            if draft.transcript[: len(previous)] != previous:
                raise ValueError(
                    f"Transcript for session {session_id} may only be appended to"
                )

            self._sessions[session_id] = draft
            return draft.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Session deleted: session_id=%s", session_id)
        return removed

    async def sweep_expired(self) -> int:
        async with self._lock:
            return self._sweep_locked()

    # ------------------------------------------------------------------
    # Internal helpers; caller must hold the lock
    # ------------------------------------------------------------------

    def _get_live_locked(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.is_expired(self._clock()):
            del self._sessions[session_id]
            logger.info("Session expired on access: session_id=%s", session_id)
            raise SessionExpiredError(session_id)
        return session

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at < now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Swept %d expired sessions", len(expired))
        return len(expired)
