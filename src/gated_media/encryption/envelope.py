"""
AEAD envelope codec for gated media.

An envelope is the transportable unit published to the content network:

    nonce (12) | ciphertext (len(plaintext)) | tag (16)

There is no magic, version byte or length prefix; the ciphertext length is
implied by the blob length. The key never travels with the envelope.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import AuthenticationFailure


NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


def generate_key() -> bytes:
    """Generate a random 256-bit AES-GCM key."""
    return os.urandom(KEY_SIZE)


@dataclass(frozen=True)
class Envelope:
    """Nonce plus ciphertext (with the GCM tag appended)."""

    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, blob: bytes) -> "Envelope":
        """Split a wire blob into nonce and ciphertext.

        Raises:
            AuthenticationFailure: If the blob is too short to hold a nonce and tag.
        """
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise AuthenticationFailure(
                f"Envelope truncated: {len(blob)} bytes, need at least {NONCE_SIZE + TAG_SIZE}"
            )
        return cls(nonce=bytes(blob[:NONCE_SIZE]), ciphertext=bytes(blob[NONCE_SIZE:]))


def encode(plaintext: bytes, key: bytes) -> Envelope:
    """Encrypt plaintext with AES-256-GCM under a fresh random nonce.

    A new nonce is drawn for every call, so callers cannot reuse one.

    Args:
        plaintext: Data to encrypt
        key: 256-bit encryption key

    Returns:
        Envelope holding the nonce and ciphertext-with-tag
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data=None)
    return Envelope(nonce=nonce, ciphertext=ciphertext)


def decode(envelope: Envelope, key: bytes) -> bytes:
    """Verify and decrypt an envelope.

    Args:
        envelope: Envelope produced by `encode`
        key: Same key used during encryption

    Returns:
        Decrypted plaintext

    Raises:
        AuthenticationFailure: On tag mismatch, truncated ciphertext, wrong
            key or a key of the wrong length. No plaintext is ever returned
            unless the tag verifies.
    """
    if len(key) != KEY_SIZE:
        raise AuthenticationFailure(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
    if len(envelope.nonce) != NONCE_SIZE or len(envelope.ciphertext) < TAG_SIZE:
        raise AuthenticationFailure("Envelope nonce or ciphertext has an invalid length")
    try:
        return AESGCM(key).decrypt(envelope.nonce, envelope.ciphertext, associated_data=None)
    except InvalidTag as e:
        raise AuthenticationFailure("Envelope authentication failed") from e
