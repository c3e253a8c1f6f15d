"""Local countdown for a waiting session."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from airlink.errors import SessionExpired
from airlink.session import Session, utcnow


class Urgency(Enum):
    NORMAL = "normal"
    WARNING = "warning"    # 30 s or less
    CRITICAL = "critical"  # 10 s or less
    EXPIRED = "expired"


class SessionCountdown:
    """Tracks time left until a session's fixed deadline.

    The store never sweeps expired sessions; this timer is what tells the
    sending device to give up and mark its session expired.
    """

    def __init__(
        self,
        expires_at: datetime,
        total_seconds: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
        session_id: Optional[str] = None,
    ):
        self.expires_at = expires_at
        self.total_seconds = total_seconds
        self.session_id = session_id
        self._clock = clock or utcnow

    @classmethod
    def for_session(
        cls, session: Session, clock: Optional[Callable[[], datetime]] = None
    ) -> SessionCountdown:
        total = (session.expires_at - session.created_at).total_seconds()
        return cls(session.expires_at, total_seconds=total, clock=clock, session_id=session.id)

    def remaining_seconds(self) -> int:
        diff = (self.expires_at - self._clock()).total_seconds()
        return max(0, math.floor(diff))

    def fraction_remaining(self) -> float:
        if self.total_seconds <= 0:
            return 0.0
        return min(1.0, self.remaining_seconds() / self.total_seconds)

    @property
    def expired(self) -> bool:
        return self.remaining_seconds() == 0

    def urgency(self) -> Urgency:
        left = self.remaining_seconds()
        if left == 0:
            return Urgency.EXPIRED
        if left <= 10:
            return Urgency.CRITICAL
        if left <= 30:
            return Urgency.WARNING
        return Urgency.NORMAL

    def check(self):
        """Raise SessionExpired once the deadline has passed."""
        if self.expired:
            raise SessionExpired(self.session_id)

    def format(self) -> str:
        left = self.remaining_seconds()
        return f"{left // 60}:{left % 60:02d}"
