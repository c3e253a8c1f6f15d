"""Payload encryption for the shared session store.

AES-256-GCM with a fresh 96-bit nonce per message. The nonce is prepended
to the ciphertext and the whole blob is base64 text, so it can live in an
ordinary string column.

This is encryption at rest only: the session record carries its own key.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from airlink.errors import CryptoError

KEY_BITS = 256
NONCE_BYTES = 12


def generate_key() -> str:
    """Return a new random 256-bit key as base64 text."""
    return base64.b64encode(AESGCM.generate_key(bit_length=KEY_BITS)).decode("ascii")


def _load_key(key: str) -> AESGCM:
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CryptoError(f"Invalid payload key: {e}") from e

    if len(raw) * 8 != KEY_BITS:
        raise CryptoError(f"Payload key must be {KEY_BITS} bits, got {len(raw) * 8}")
    return AESGCM(raw)


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt text under ``key``. Output is base64(nonce || ciphertext+tag)."""
    aead = _load_key(key)
    nonce = os.urandom(NONCE_BYTES)
    sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(ciphertext: str, key: str) -> str:
    """Decrypt text produced by :func:`encrypt`.

    Raises:
        CryptoError: on a tampered or truncated blob, a wrong key, or text
            that is not valid base64.
    """
    aead = _load_key(key)
    try:
        blob = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CryptoError(f"Malformed ciphertext: {e}") from e

    if len(blob) <= NONCE_BYTES:
        raise CryptoError("Ciphertext too short")

    nonce, sealed = blob[:NONCE_BYTES], blob[NONCE_BYTES:]
    try:
        plaintext = aead.decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise CryptoError("Authentication failed: wrong key or tampered ciphertext") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted payload is not UTF-8 text") from e
