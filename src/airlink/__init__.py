"""AirLink - pair two devices by drawing the same gesture in the air."""

__version__ = "0.1.0"

from airlink.signature import Point, generate_signature, normalize_points
from airlink.templates import (
    GestureTemplate, TemplateCatalog, TemplateMatch, Difficulty,
    match_template, find_best_match,
)
from airlink.cipher import generate_key, encrypt, decrypt
from airlink.session import Session, SessionStatus, TransferData, DataType
from airlink.store import SessionStore, MemorySessionStore
from airlink.protocol import SessionMatcher, CreatedSession
from airlink.recorder import GestureRecorder, PathPlayer, RecordingResult
from airlink.countdown import SessionCountdown, Urgency
from airlink.errors import (
    AirLinkError, InputError, SignatureError, StoreError, CryptoError, SessionExpired,
)
from airlink.metrics import MetricsCollector
