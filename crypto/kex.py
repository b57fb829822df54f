# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

KEY_SHARE_LEN = 32


class KeyShare:
    """Ephemeral X25519 key share (one per full handshake)."""

    def __init__(self) -> None:
        self._sk = X25519PrivateKey.generate()

    def public_bytes(self) -> bytes:
        return self._sk.public_key().public_bytes_raw()

    def exchange(self, peer_public: bytes) -> bytes:
        if len(peer_public) != KEY_SHARE_LEN:
            raise ValueError("bad key share length")
        return self._sk.exchange(X25519PublicKey.from_public_bytes(bytes(peer_public)))
