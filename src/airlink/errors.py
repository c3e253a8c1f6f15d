"""Exception taxonomy for AirLink.

No error here is fatal to the process. "No matching session" is not an
exception at all: it is reported as ``None`` by the protocol.
"""

from __future__ import annotations


class AirLinkError(Exception):
    """Base class for all AirLink errors."""


class InputError(AirLinkError):
    """Not enough input to work with. Keep recording or retry."""


class SignatureError(InputError):
    """A path produced no signature (fewer than the minimum points)."""

    def __init__(self, point_count: int, minimum: int = 10):
        self.point_count = point_count
        self.minimum = minimum
        super().__init__(
            f"Need at least {minimum} points for a gesture signature, got {point_count}"
        )


class StoreError(AirLinkError):
    """Backend failure on insert/query/update. Transient; callers may retry."""


class CryptoError(AirLinkError):
    """Payload could not be decrypted (bad tag, wrong key, malformed text)."""


class SessionExpired(AirLinkError):
    """The local session timer ran out before a receiver matched."""

    def __init__(self, session_id: str | None = None):
        self.session_id = session_id
        msg = "Session expired" if session_id is None else f"Session {session_id} expired"
        super().__init__(msg)
