# MIT License © 2025 Motohiro Suzuki
"""
protocol/session.py

Reusable session state.

- SessionHandle: what a client keeps after a completed handshake and offers
  again on a resumption attempt (ticket and/or session id).
- SessionCache: server-side store keyed by session id, used when tickets are
  disabled or when a ticket cannot be opened.

The ticket plaintext is the TLV encoding of the session parameters
(see encode_session_state / decode_session_state).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional

from protocol.hs_tlv import dec_tlv_map, enc_tlv, u16_from_bytes, u16_to_bytes
from protocol.versions import ProtocolVersion

T_SS_SESSION_ID = 0x0101
T_SS_MASTER = 0x0102
T_SS_VERSION = 0x0103
T_SS_CIPHER = 0x0104
T_SS_ALPN = 0x0105

SESSION_ID_LEN = 32


@dataclass(frozen=True)
class SessionHandle:
    session_id: bytes
    master_secret: bytes
    version: ProtocolVersion
    cipher: str
    alpn: Optional[str] = None
    # b"" when the server sent an empty ticket or none at all
    ticket: bytes = b""

    @property
    def has_ticket(self) -> bool:
        return len(self.ticket) > 0

    def with_ticket(self, ticket: bytes) -> "SessionHandle":
        return replace(self, ticket=bytes(ticket))

    def __repr__(self) -> str:
        # never print the master secret
        return (
            f"SessionHandle(session_id={self.session_id.hex()[:16]}..., "
            f"version={self.version.label}, cipher={self.cipher}, "
            f"alpn={self.alpn!r}, ticket_len={len(self.ticket)})"
        )


def encode_session_state(s: SessionHandle) -> bytes:
    blob = enc_tlv(T_SS_SESSION_ID, s.session_id)
    blob += enc_tlv(T_SS_MASTER, s.master_secret)
    blob += enc_tlv(T_SS_VERSION, u16_to_bytes(int(s.version)))
    blob += enc_tlv(T_SS_CIPHER, s.cipher.encode("utf-8"))
    if s.alpn is not None:
        blob += enc_tlv(T_SS_ALPN, s.alpn.encode("utf-8"))
    return blob


def decode_session_state(blob: bytes) -> SessionHandle:
    m = dec_tlv_map(blob)
    for t in (T_SS_SESSION_ID, T_SS_MASTER, T_SS_VERSION, T_SS_CIPHER):
        if t not in m:
            raise ValueError(f"session state missing field 0x{t:04x}")
    alpn = m.get(T_SS_ALPN)
    return SessionHandle(
        session_id=m[T_SS_SESSION_ID],
        master_secret=m[T_SS_MASTER],
        version=ProtocolVersion(u16_from_bytes(m[T_SS_VERSION])),
        cipher=m[T_SS_CIPHER].decode("utf-8"),
        alpn=None if alpn is None else alpn.decode("utf-8"),
    )


class SessionCache:
    def __init__(self) -> None:
        self._by_id: Dict[bytes, SessionHandle] = {}

    def add(self, s: SessionHandle) -> None:
        if not s.session_id:
            return
        self._by_id[bytes(s.session_id)] = replace(s, ticket=b"")

    def get(self, session_id: bytes) -> Optional[SessionHandle]:
        if not session_id:
            return None
        return self._by_id.get(bytes(session_id))

    def __len__(self) -> int:
        return len(self._by_id)
