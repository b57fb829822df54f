# MIT License © 2025 Motohiro Suzuki
"""
crypto/sig.py

Ed25519 identities for the simulated server certificate.

- A 32-byte seed gives a deterministic identity (stable across runs).
- No seed: a fresh random identity.
"""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)


@dataclass(frozen=True)
class SigKeyPair:
    public_key: bytes
    secret_key: bytes


def keypair(seed: bytes | None = None) -> SigKeyPair:
    if seed is not None:
        if len(seed) != 32:
            raise ValueError("ed25519 seed must be 32 bytes")
        sk_obj = Ed25519PrivateKey.from_private_bytes(bytes(seed))
    else:
        sk_obj = Ed25519PrivateKey.generate()
    return SigKeyPair(
        public_key=sk_obj.public_key().public_bytes_raw(),
        secret_key=sk_obj.private_bytes_raw(),
    )


def sign(sk: bytes, msg: bytes) -> bytes:
    return Ed25519PrivateKey.from_private_bytes(sk).sign(msg)


def verify(pk: bytes, msg: bytes, signature: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(pk).verify(signature, msg)
        return True
    except (InvalidSignature, ValueError):
        return False
