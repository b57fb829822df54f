# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

import hashlib
import hmac

HASH_LEN = 32


def hkdf_sha256(ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
    if length <= 0:
        raise ValueError("length must be > 0")

    prk = hmac.new(salt, ikm, hashlib.sha256).digest()
    t = b""
    okm = b""
    c = 1
    while len(okm) < length:
        t = hmac.new(prk, t + info + bytes([c]), hashlib.sha256).digest()
        okm += t
        c += 1
        if c > 255:
            raise ValueError("hkdf too long")
    return okm[:length]


def derive(secret: bytes, label: bytes, context: bytes = b"", length: int = HASH_LEN) -> bytes:
    """
    Labelled derivation used by the simulated key schedule:
        info = len(label)||label || len(context)||context
    """
    if len(label) > 0xFF or len(context) > 0xFF:
        raise ValueError("label/context too long")
    info = bytes([len(label)]) + label + bytes([len(context)]) + context
    return hkdf_sha256(ikm=secret, salt=b"hsim-v1", info=info, length=length)


def finished_mac(key: bytes, transcript_hash: bytes) -> bytes:
    return hmac.new(key, transcript_hash, hashlib.sha256).digest()


def mac_equal(a: bytes, b: bytes) -> bool:
    return hmac.compare_digest(a, b)
