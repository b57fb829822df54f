# MIT License © 2025 Motohiro Suzuki
"""
transport/record.py

Record framing on top of the in-memory channel.

Header (network byte order):
    content_type(u8), version(u16), payload_len(u32)

Content types:
- CT_ALERT     = 21  (payload: AlertPayload, see protocol/failure.py)
- CT_HANDSHAKE = 22  (payload: one TLV handshake message, see protocol/hs_tlv.py)
- CT_APP_DATA  = 23  (payload: AEAD-protected application bytes)

Parsing is incremental: callers accumulate whatever the channel delivered
into a bytearray and pop complete records off the front. An incomplete
record stays in the buffer until the next read.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

CT_ALERT = 21
CT_HANDSHAKE = 22
CT_APP_DATA = 23

_CONTENT_TYPES = (CT_ALERT, CT_HANDSHAKE, CT_APP_DATA)

_HDR = struct.Struct("!BHI")

RECORD_OVERHEAD = _HDR.size
MAX_PAYLOAD = 1024 * 1024
# application plaintext per record; larger writes are split
MAX_FRAGMENT = 16 * 1024


@dataclass(frozen=True)
class Record:
    content_type: int
    version: int
    payload: bytes

    def to_bytes(self) -> bytes:
        p = bytes(self.payload)
        if len(p) > MAX_PAYLOAD:
            raise ValueError("record payload too large")
        header = _HDR.pack(
            int(self.content_type) & 0xFF,
            int(self.version) & 0xFFFF,
            len(p),
        )
        return header + p

    @staticmethod
    def pop_from(buf: bytearray) -> "Record | None":
        """
        Remove and return the first complete record in `buf`.
        Returns None (leaving `buf` untouched) when more bytes are needed.
        """
        if len(buf) < _HDR.size:
            return None

        ctype, ver, plen = _HDR.unpack_from(buf, 0)

        if ctype not in _CONTENT_TYPES:
            raise ValueError(f"unknown content type: {ctype}")
        if plen > MAX_PAYLOAD:
            raise ValueError("record payload too large")

        end = _HDR.size + plen
        if len(buf) < end:
            return None

        payload = bytes(buf[_HDR.size:end])
        del buf[:end]
        return Record(content_type=int(ctype), version=int(ver), payload=payload)
