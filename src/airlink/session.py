"""Session records shared between the sending and receiving device."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SessionStatus(Enum):
    WAITING = "waiting"
    MATCHED = "matched"
    COMPLETED = "completed"
    EXPIRED = "expired"

    def can_transition(self, target: SessionStatus) -> bool:
        """Whether ``self -> target`` is a legal forward step."""
        return target in _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]


_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.WAITING: frozenset({SessionStatus.MATCHED, SessionStatus.EXPIRED}),
    SessionStatus.MATCHED: frozenset({SessionStatus.COMPLETED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.EXPIRED: frozenset(),
}

# Status -> the timestamp field stamped when a session enters it.
STATUS_TIMESTAMP_FIELDS = {
    SessionStatus.MATCHED: "matched_at",
    SessionStatus.COMPLETED: "completed_at",
    SessionStatus.EXPIRED: None,
}


class DataType(Enum):
    TEXT = "text"
    CONTACT = "contact"
    CREDENTIALS = "credentials"
    LINK = "link"


@dataclass
class TransferData:
    """The payload a sender hands over."""
    type: DataType
    content: str
    title: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.type, DataType):
            self.type = DataType(self.type)
        if not self.content:
            raise ValueError("TransferData.content must not be empty")

    def to_dict(self) -> dict:
        data = {"type": self.type.value, "content": self.content}
        if self.title:
            data["title"] = self.title
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TransferData:
        return cls(
            type=DataType(data["type"]),
            content=data["content"],
            title=data.get("title") or None,
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Session:
    """A transfer session as held by the store.

    Devices only ever see snapshots; every change produces a new instance.
    """
    id: str
    gesture_signature: str
    sender_id: str
    data_type: DataType
    plaintext_content: str
    status: SessionStatus
    created_at: datetime
    expires_at: datetime
    data_title: Optional[str] = None
    encrypted_content: Optional[str] = None
    encryption_key: Optional[str] = None
    matched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        """Waiting and not yet past its deadline, i.e. still matchable."""
        return self.status is SessionStatus.WAITING and self.expires_at > now

    def with_status(self, status: SessionStatus, at: Optional[datetime] = None) -> Session:
        field_name = STATUS_TIMESTAMP_FIELDS.get(status)
        changes = {"status": status}
        if field_name and at is not None:
            changes[field_name] = at
        return replace(self, **changes)

    def transfer_data(self, content: Optional[str] = None) -> TransferData:
        return TransferData(
            type=self.data_type,
            content=content if content is not None else self.plaintext_content,
            title=self.data_title,
        )

    def to_record(self) -> dict:
        """Serialize with the persisted column names."""
        return {
            "id": self.id,
            "gesture_hash": self.gesture_signature,
            "sender_id": self.sender_id,
            "data_type": self.data_type.value,
            "data_title": self.data_title,
            "data_content": self.plaintext_content,
            "encrypted_content": self.encrypted_content,
            "encryption_key": self.encryption_key,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "matched_at": _iso(self.matched_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_record(cls, record: dict) -> Session:
        return cls(
            id=record["id"],
            gesture_signature=record["gesture_hash"],
            sender_id=record["sender_id"],
            data_type=DataType(record["data_type"]),
            data_title=record.get("data_title"),
            plaintext_content=record["data_content"],
            encrypted_content=record.get("encrypted_content"),
            encryption_key=record.get("encryption_key"),
            status=SessionStatus(record["status"]),
            created_at=_parse(record["created_at"]),
            expires_at=_parse(record["expires_at"]),
            matched_at=_parse(record.get("matched_at")),
            completed_at=_parse(record.get("completed_at")),
        )
