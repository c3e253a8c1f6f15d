"""Session store interface and an in-memory reference implementation.

The store is the only channel between the two devices. The one ordering
guarantee the protocol relies on is the conditional update: a
``waiting -> matched`` write succeeds only if the session is still
``waiting`` and not past its deadline at the moment of the write, so two
receivers racing for the same session cannot both win and a late receiver
cannot claim an expired one.

Usage:
    store = MemorySessionStore()
    session = await store.insert({...})
    unsubscribe = store.subscribe(session.id, on_change)
    ok = await store.update(session.id, SessionStatus.MATCHED, now,
                            expected=SessionStatus.WAITING,
                            live_at=now)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from airlink.errors import StoreError
from airlink.session import Session, SessionStatus, utcnow

logger = logging.getLogger("airlink.store")

SessionCallback = Callable[[Session], Union[None, Awaitable[None]]]
Clock = Callable[[], datetime]


class SessionStore(ABC):
    """What the matching protocol needs from a shared store."""

    @abstractmethod
    async def insert(self, fields: dict[str, Any]) -> Session:
        """Create a session. The store assigns ``id`` and ``created_at``."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def query_waiting(self, signature: str, now: datetime) -> Optional[Session]:
        """Newest session with this signature, status waiting and expires_at > now."""

    @abstractmethod
    async def update(
        self,
        session_id: str,
        status: SessionStatus,
        at: datetime,
        expected: Optional[SessionStatus] = None,
        live_at: Optional[datetime] = None,
    ) -> bool:
        """Move a session to ``status`` and stamp its timestamp field.

        When ``expected`` is given the write is conditional: it only applies
        if the current status equals ``expected``. When ``live_at`` is given
        it also requires ``expires_at > live_at``. Both checks and the write
        must be atomic. Returns whether the write was applied.
        """

    @abstractmethod
    def subscribe(self, session_id: str, callback: SessionCallback) -> Callable[[], None]:
        """Push every later change of one session. Returns an unsubscribe function."""


@dataclass
class _Entry:
    session: Session
    sequence: int


class MemorySessionStore(SessionStore):
    """Process-local store with atomic conditional updates.

    All mutations run under one asyncio lock, so the status comparison and
    the write in a conditional update cannot interleave with another
    coroutine. Expired sessions are never swept; they simply stop matching.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utcnow
        self._entries: dict[str, _Entry] = {}
        self._subscribers: dict[str, list[SessionCallback]] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    @property
    def clock(self) -> Clock:
        return self._clock

    async def insert(self, fields: dict[str, Any]) -> Session:
        if "expires_at" not in fields:
            raise StoreError("Session insert requires expires_at")

        async with self._lock:
            session_id = str(uuid.uuid4())
            try:
                session = Session(
                    id=session_id,
                    created_at=self._clock(),
                    **fields,
                )
            except TypeError as e:
                raise StoreError(f"Invalid session fields: {e}") from e

            self._sequence += 1
            self._entries[session_id] = _Entry(session, self._sequence)

        logger.debug("Inserted session %s (signature=%s)", session_id, session.gesture_signature)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        entry = self._entries.get(session_id)
        return entry.session if entry else None

    async def query_waiting(self, signature: str, now: datetime) -> Optional[Session]:
        candidates = [
            e for e in self._entries.values()
            if e.session.gesture_signature == signature and e.session.is_live(now)
        ]
        if not candidates:
            return None
        # Newest first; insertion order breaks created_at ties.
        newest = max(candidates, key=lambda e: (e.session.created_at, e.sequence))
        return newest.session

    async def update(
        self,
        session_id: str,
        status: SessionStatus,
        at: datetime,
        expected: Optional[SessionStatus] = None,
        live_at: Optional[datetime] = None,
    ) -> bool:
        async with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                logger.debug("Update for unknown session %s", session_id)
                return False

            current = entry.session.status
            if expected is not None and current is not expected:
                logger.debug(
                    "Conditional update on %s rejected: %s != %s",
                    session_id, current.value, expected.value,
                )
                return False

            if live_at is not None and entry.session.expires_at <= live_at:
                logger.debug(
                    "Conditional update on %s rejected: expired at %s",
                    session_id, entry.session.expires_at.isoformat(),
                )
                return False

            if not current.can_transition(status):
                logger.warning(
                    "Refusing illegal transition %s -> %s on session %s",
                    current.value, status.value, session_id,
                )
                return False

            entry.session = entry.session.with_status(status, at)
            updated = entry.session

        await self._notify(updated)
        return True

    def subscribe(self, session_id: str, callback: SessionCallback) -> Callable[[], None]:
        self._subscribers.setdefault(session_id, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(session_id)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[session_id]

        return unsubscribe

    def subscriber_count(self, session_id: Optional[str] = None) -> int:
        if session_id is not None:
            return len(self._subscribers.get(session_id, []))
        return sum(len(cbs) for cbs in self._subscribers.values())

    async def _notify(self, session: Session):
        for callback in list(self._subscribers.get(session.id, [])):
            try:
                result = callback(session)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Subscriber for session %s failed: %s", session.id, e)

    def __len__(self) -> int:
        return len(self._entries)
