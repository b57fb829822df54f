# MIT License © 2025 Motohiro Suzuki
"""
crypto/aead.py

AEAD backends for application records and session tickets.
"""

from __future__ import annotations

import hashlib
import hmac

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_LEN = 12


class AEADError(Exception):
    pass


# =========================
# Base
# =========================

class AEADBackend:
    name: str
    key_len: int

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        raise NotImplementedError

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
        raise NotImplementedError


# =========================
# AES-GCM
# =========================

class _AESGCM(AEADBackend):
    def __init__(self) -> None:
        self.name = "aes-gcm"
        self.key_len = 32

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        return AESGCM(key).encrypt(nonce, plaintext, aad)

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, aad)
        except InvalidTag as e:
            raise AEADError("aes-gcm tag mismatch") from e


# =========================
# Null (integrity only, readable on the wire; debugging)
# =========================

class _NullAEAD(AEADBackend):
    _TAG_LEN = 16

    def __init__(self) -> None:
        self.name = "null"
        self.key_len = 32

    def _tag(self, key: bytes, nonce: bytes, data: bytes, aad: bytes) -> bytes:
        return hmac.new(key, nonce + aad + data, hashlib.sha256).digest()[: self._TAG_LEN]

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        return bytes(plaintext) + self._tag(key, nonce, plaintext, aad)

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, aad: bytes) -> bytes:
        if len(ciphertext) < self._TAG_LEN:
            raise AEADError("null: record too short")
        data, tag = ciphertext[: -self._TAG_LEN], ciphertext[-self._TAG_LEN:]
        if not hmac.compare_digest(tag, self._tag(key, nonce, data, aad)):
            raise AEADError("null: tag mismatch")
        return bytes(data)


# =========================
# Resolver
# =========================

def get_aead_backend(name: str) -> AEADBackend:
    n = name.strip().lower()

    if n in ("aesgcm", "aes-gcm"):
        return _AESGCM()

    if n == "null":
        return _NullAEAD()

    raise ValueError(f"unknown aead backend: {name}")


def seq_nonce(iv: bytes, seq: int) -> bytes:
    """Per-record nonce: iv XOR big-endian sequence number."""
    if len(iv) != NONCE_LEN:
        raise ValueError("iv must be 12 bytes")
    s = int(seq).to_bytes(NONCE_LEN, "big")
    return bytes(a ^ b for a, b in zip(iv, s))
