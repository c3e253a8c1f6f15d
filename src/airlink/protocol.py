"""Gesture-keyed session matching between a sender and a receiver.

The sender records a gesture and creates a ``waiting`` session keyed by its
signature, with the payload encrypted. The receiver records what should be
the same gesture; if its signature finds a live ``waiting`` session, a
conditional ``waiting -> matched`` write decides whether this receiver got
it. Only that write counts as a match, so at most one receiver ever wins.

Session lifecycle:
    waiting -> matched -> completed
    waiting -> expired

Usage:
    matcher = SessionMatcher(MemorySessionStore())

    # Device A
    created = await matcher.create_session(points_a, TransferData(DataType.TEXT, "hello"))
    unsubscribe = matcher.subscribe_to_updates(created.session.id, on_change)

    # Device B
    session = await matcher.find_matching_session(points_b)
    if session:
        text = matcher.decrypt_session_data(session)
        await matcher.complete_session(session.id)
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from airlink import cipher
from airlink.errors import CryptoError, SignatureError, StoreError
from airlink.metrics import MetricsCollector
from airlink.session import Session, SessionStatus, TransferData, utcnow
from airlink.signature import SIGNATURE_MIN_POINTS, PathLike, as_xy, generate_signature
from airlink.store import SessionCallback, SessionStore

logger = logging.getLogger("airlink.protocol")

SESSION_TTL_SECONDS = 60


@dataclass
class CreatedSession:
    """Result of ``create_session``: the stored session and its payload key."""
    session: Session
    encryption_key: str


def _signature_or_raise(points: PathLike) -> str:
    signature = generate_signature(points)
    if not signature:
        raise SignatureError(len(as_xy(points)), SIGNATURE_MIN_POINTS)
    return signature


class SessionMatcher:
    """Runs the session protocol against a shared :class:`SessionStore`.

    Args:
        store: The shared store both devices talk to.
        ttl_seconds: Lifetime of a waiting session, fixed at creation.
        clock: Returns the current UTC time. Injectable for tests.
        metrics: Optional collector for lifecycle counters.
    """

    def __init__(
        self,
        store: SessionStore,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._store = store
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or getattr(store, "clock", None) or utcnow
        self._metrics = metrics

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def create_session(
        self,
        points: PathLike,
        payload: TransferData,
        sender_id: Optional[str] = None,
    ) -> CreatedSession:
        """Create a waiting session keyed by the sender's gesture.

        Raises:
            SignatureError: the path is too short to produce a signature.
            StoreError: the store rejected the insert.
        """
        signature = _signature_or_raise(points)

        key = cipher.generate_key()
        encrypted = cipher.encrypt(payload.content, key)
        now = self._clock()

        try:
            session = await self._store.insert({
                "gesture_signature": signature,
                "sender_id": sender_id or str(uuid.uuid4()),
                "data_type": payload.type,
                "data_title": payload.title or None,
                # Plaintext and key are kept alongside the ciphertext.
                "plaintext_content": payload.content,
                "encrypted_content": encrypted,
                "encryption_key": key,
                "status": SessionStatus.WAITING,
                "expires_at": now + self._ttl,
            })
        except StoreError as e:
            logger.error("Could not create session: %s", e)
            raise

        logger.info(
            "Created session %s (signature=%s, type=%s, expires=%s)",
            session.id, signature, payload.type.value, session.expires_at.isoformat(),
        )
        if self._metrics:
            self._metrics.record_session_created(payload.type.value)
        return CreatedSession(session=session, encryption_key=key)

    async def find_matching_session(self, points: PathLike) -> Optional[Session]:
        """Claim the newest live waiting session with the caller's signature.

        Returns:
            The session, now ``matched``, or None when nothing is waiting or
            another receiver claimed it first. None is a normal outcome:
            keep trying or re-record.

        Raises:
            SignatureError: the path is too short to produce a signature.
            StoreError: the store failed during the query or the update.
        """
        signature = _signature_or_raise(points)
        t0 = time.perf_counter()
        now = self._clock()

        try:
            candidate = await self._store.query_waiting(signature, now)
        except StoreError as e:
            logger.error("Session query failed: %s", e)
            raise

        if candidate is None:
            logger.debug("No waiting session for signature %s", signature)
            if self._metrics:
                self._metrics.record_match_miss()
            return None

        matched_at = self._clock()
        try:
            won = await self._store.update(
                candidate.id,
                SessionStatus.MATCHED,
                matched_at,
                expected=SessionStatus.WAITING,
                live_at=matched_at,
            )
        except StoreError as e:
            logger.error("Match update for session %s failed: %s", candidate.id, e)
            raise

        if not won:
            logger.warning("Session %s was claimed or expired before the match write", candidate.id)
            if self._metrics:
                self._metrics.record_lost_race()
            return None

        session = candidate.with_status(SessionStatus.MATCHED, matched_at)
        logger.info("Matched session %s (signature=%s)", session.id, signature)
        if self._metrics:
            self._metrics.record_match(time.perf_counter() - t0)
        return session

    async def complete_session(self, session_id: str) -> bool:
        """Mark a matched session completed.

        Only call this after a successful ``find_matching_session``; the
        prior status is not checked here.
        """
        try:
            ok = await self._store.update(session_id, SessionStatus.COMPLETED, self._clock())
        except StoreError as e:
            logger.error("Could not complete session %s: %s", session_id, e)
            raise

        if ok:
            logger.info("Completed session %s", session_id)
            if self._metrics:
                self._metrics.record_completion()
        return ok

    async def expire_session(self, session_id: str) -> bool:
        """Mark a still-waiting session expired after its local timer ran out.

        A no-op (returns False) if a receiver matched it in the meantime.
        """
        ok = await self._store.update(
            session_id,
            SessionStatus.EXPIRED,
            self._clock(),
            expected=SessionStatus.WAITING,
        )
        if ok:
            logger.info("Expired session %s", session_id)
            if self._metrics:
                self._metrics.record_expiration()
        return ok

    def subscribe_to_updates(
        self, session_id: str, callback: SessionCallback
    ) -> Callable[[], None]:
        """Deliver every later change of a session to ``callback``.

        Returns a function that stops the deliveries.
        """
        return self._store.subscribe(session_id, callback)

    def decrypt_session_data(self, session: Session) -> str:
        """Recover the payload text of a session.

        Falls back to the stored plaintext when the session has no
        ciphertext or key, or when decryption fails.
        """
        if not session.encrypted_content or not session.encryption_key:
            return session.plaintext_content

        try:
            return cipher.decrypt(session.encrypted_content, session.encryption_key)
        except CryptoError as e:
            logger.warning("Decrypt failed for session %s, using plaintext: %s", session.id, e)
            if self._metrics:
                self._metrics.record_decrypt_fallback()
            return session.plaintext_content
