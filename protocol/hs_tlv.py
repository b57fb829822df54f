# MIT License © 2025 Motohiro Suzuki
"""
protocol/hs_tlv.py

Handshake messages are TLV (Type=u16, Length=u32, Value=bytes), network
byte order, one message per handshake record.

Message types:
- CLIENT_HELLO       = 1
- SERVER_HELLO       = 2
- NEW_SESSION_TICKET = 4
- FINISHED           = 20
- NEXT_PROTOCOL      = 67

Fields (TLV types):
- 0x0001 : MSG_TYPE (u8)
- 0x0002 : MIN_VERSION (u16, client)
- 0x0003 : MAX_VERSION (u16, client)
- 0x0004 : VERSION (u16, server)
- 0x0005 : RANDOM (32 bytes)
- 0x0006 : SESSION_ID (bytes, may be empty)
- 0x0007 : KEY_SHARE (X25519 public, absent on resumption)
- 0x0008 : CIPHER (utf-8)
- 0x0010 : SERVER_NAME (client: host name / server: empty = acknowledged)
- 0x0011 : ALPN (client: wire protocol list / server: selected protocol)
- 0x0012 : NPN (client: empty = supported / server: advertised wire list)
- 0x0013 : TICKET (client: offered ticket, empty = supported /
                   server: empty = NewSessionTicket follows /
                   NewSessionTicket: ticket body)
- 0x0014 : RESUMED (u8, server)
- 0x0020 : CERT (Ed25519 public key)
- 0x0021 : SIGNATURE
- 0x0030 : VERIFY_DATA
- 0x0031 : PROTOCOL (next-protocol selection)

Canonical encoding: TLVs sorted by type ascending.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

_TLV_HDR = struct.Struct("!HI")  # type(u16), len(u32)


# ---- Message types ----
HS_CLIENT_HELLO = 1
HS_SERVER_HELLO = 2
HS_NEW_SESSION_TICKET = 4
HS_FINISHED = 20
HS_NEXT_PROTOCOL = 67

# ---- TLV types ----
T_MSG_TYPE = 0x0001
T_MIN_VERSION = 0x0002
T_MAX_VERSION = 0x0003
T_VERSION = 0x0004
T_RANDOM = 0x0005
T_SESSION_ID = 0x0006
T_KEY_SHARE = 0x0007
T_CIPHER = 0x0008
T_SERVER_NAME = 0x0010
T_ALPN = 0x0011
T_NPN = 0x0012
T_TICKET = 0x0013
T_RESUMED = 0x0014
T_CERT = 0x0020
T_SIGNATURE = 0x0021
T_VERIFY_DATA = 0x0030
T_PROTOCOL = 0x0031

RANDOM_LEN = 32


def u16_to_bytes(x: int) -> bytes:
    if x < 0 or x > 0xFFFF:
        raise ValueError("u16 out of range")
    return x.to_bytes(2, "big")


def u16_from_bytes(b: bytes) -> int:
    if len(b) != 2:
        raise ValueError("u16 field must be 2 bytes")
    return int.from_bytes(b, "big")


def enc_tlv(t: int, v: bytes) -> bytes:
    vb = bytes(v)
    if t < 0 or t > 0xFFFF:
        raise ValueError("tlv type out of range")
    if len(vb) > 0xFFFFFFFF:
        raise ValueError("tlv too long")
    return _TLV_HDR.pack(t & 0xFFFF, len(vb) & 0xFFFFFFFF) + vb


def dec_tlvs(blob: bytes) -> List[Tuple[int, bytes]]:
    out: List[Tuple[int, bytes]] = []
    i = 0
    b = bytes(blob)
    while i < len(b):
        if i + _TLV_HDR.size > len(b):
            raise ValueError("truncated tlv header")
        t, ln = _TLV_HDR.unpack_from(b, i)
        i += _TLV_HDR.size
        if i + ln > len(b):
            raise ValueError("truncated tlv value")
        out.append((int(t), b[i : i + ln]))
        i += ln
    return out


def dec_tlv_map(blob: bytes) -> Dict[int, bytes]:
    m: Dict[int, bytes] = {}
    for t, v in dec_tlvs(blob):
        if t in m:
            raise ValueError(f"duplicate tlv 0x{t:04x}")
        m[t] = v
    return m


def canonical_bytes(fields: Dict[int, bytes]) -> bytes:
    items = sorted(fields.items(), key=lambda kv: kv[0])
    return b"".join(enc_tlv(t, v) for t, v in items)


def message_type(blob: bytes) -> int:
    m = dec_tlv_map(blob)
    mt = m.get(T_MSG_TYPE)
    if mt is None or len(mt) != 1:
        raise ValueError("missing message type")
    return mt[0]


def _require(m: Dict[int, bytes], t: int, what: str) -> bytes:
    if t not in m:
        raise ValueError(f"missing {what}")
    return m[t]


def _expect_type(m: Dict[int, bytes], msg_type: int, name: str) -> None:
    mt = m.get(T_MSG_TYPE)
    if mt is None or len(mt) != 1 or mt[0] != msg_type:
        raise ValueError(f"not {name}")


def _text(b: Optional[bytes]) -> Optional[str]:
    return None if b is None else b.decode("utf-8")


@dataclass(frozen=True)
class ClientHello:
    min_version: int
    max_version: int
    random: bytes
    cipher: str
    key_share: bytes
    session_id: bytes = b""
    server_name: Optional[str] = None
    alpn: Optional[bytes] = None
    npn: bool = False
    # None: tickets unsupported; b"": supported, nothing to offer
    ticket: Optional[bytes] = None

    def to_bytes(self) -> bytes:
        d: Dict[int, bytes] = {
            T_MSG_TYPE: bytes([HS_CLIENT_HELLO]),
            T_MIN_VERSION: u16_to_bytes(self.min_version),
            T_MAX_VERSION: u16_to_bytes(self.max_version),
            T_RANDOM: bytes(self.random),
            T_CIPHER: self.cipher.encode("utf-8"),
            T_KEY_SHARE: bytes(self.key_share),
            T_SESSION_ID: bytes(self.session_id),
        }
        if self.server_name is not None:
            d[T_SERVER_NAME] = self.server_name.encode("utf-8")
        if self.alpn is not None:
            d[T_ALPN] = bytes(self.alpn)
        if self.npn:
            d[T_NPN] = b""
        if self.ticket is not None:
            d[T_TICKET] = bytes(self.ticket)
        return canonical_bytes(d)

    @staticmethod
    def parse(blob: bytes) -> "ClientHello":
        m = dec_tlv_map(blob)
        _expect_type(m, HS_CLIENT_HELLO, "ClientHello")
        rnd = _require(m, T_RANDOM, "random")
        if len(rnd) != RANDOM_LEN:
            raise ValueError("bad random length")
        return ClientHello(
            min_version=u16_from_bytes(_require(m, T_MIN_VERSION, "min version")),
            max_version=u16_from_bytes(_require(m, T_MAX_VERSION, "max version")),
            random=rnd,
            cipher=_require(m, T_CIPHER, "cipher").decode("utf-8"),
            key_share=_require(m, T_KEY_SHARE, "key share"),
            session_id=m.get(T_SESSION_ID, b""),
            server_name=_text(m.get(T_SERVER_NAME)),
            alpn=m.get(T_ALPN),
            npn=T_NPN in m,
            ticket=m.get(T_TICKET),
        )


@dataclass(frozen=True)
class ServerHello:
    version: int
    random: bytes
    cipher: str
    session_id: bytes
    resumed: bool = False
    key_share: Optional[bytes] = None
    sni_ack: bool = False
    alpn: Optional[str] = None
    npn: Optional[bytes] = None
    ticket_expected: bool = False
    cert: Optional[bytes] = None
    signature: Optional[bytes] = None

    def to_bytes(self) -> bytes:
        d: Dict[int, bytes] = {
            T_MSG_TYPE: bytes([HS_SERVER_HELLO]),
            T_VERSION: u16_to_bytes(self.version),
            T_RANDOM: bytes(self.random),
            T_CIPHER: self.cipher.encode("utf-8"),
            T_SESSION_ID: bytes(self.session_id),
            T_RESUMED: bytes([1 if self.resumed else 0]),
        }
        if self.key_share is not None:
            d[T_KEY_SHARE] = bytes(self.key_share)
        if self.sni_ack:
            d[T_SERVER_NAME] = b""
        if self.alpn is not None:
            d[T_ALPN] = self.alpn.encode("utf-8")
        if self.npn is not None:
            d[T_NPN] = bytes(self.npn)
        if self.ticket_expected:
            d[T_TICKET] = b""
        if self.cert is not None:
            d[T_CERT] = bytes(self.cert)
        if self.signature is not None:
            d[T_SIGNATURE] = bytes(self.signature)
        return canonical_bytes(d)

    @staticmethod
    def parse(blob: bytes) -> "ServerHello":
        m = dec_tlv_map(blob)
        _expect_type(m, HS_SERVER_HELLO, "ServerHello")
        resumed = _require(m, T_RESUMED, "resumed flag")
        if len(resumed) != 1:
            raise ValueError("bad resumed flag")
        return ServerHello(
            version=u16_from_bytes(_require(m, T_VERSION, "version")),
            random=_require(m, T_RANDOM, "random"),
            cipher=_require(m, T_CIPHER, "cipher").decode("utf-8"),
            session_id=m.get(T_SESSION_ID, b""),
            resumed=resumed[0] == 1,
            key_share=m.get(T_KEY_SHARE),
            sni_ack=T_SERVER_NAME in m,
            alpn=_text(m.get(T_ALPN)),
            npn=m.get(T_NPN),
            ticket_expected=T_TICKET in m,
            cert=m.get(T_CERT),
            signature=m.get(T_SIGNATURE),
        )

    def signed_bytes(self, client_random: bytes) -> bytes:
        """What the server certificate key signs on a full handshake."""
        return b"hsim server signature" + bytes(client_random) + bytes(self.random) + bytes(self.key_share or b"")


@dataclass(frozen=True)
class NewSessionTicket:
    ticket: bytes

    def to_bytes(self) -> bytes:
        return canonical_bytes({
            T_MSG_TYPE: bytes([HS_NEW_SESSION_TICKET]),
            T_TICKET: bytes(self.ticket),
        })

    @staticmethod
    def parse(blob: bytes) -> "NewSessionTicket":
        m = dec_tlv_map(blob)
        _expect_type(m, HS_NEW_SESSION_TICKET, "NewSessionTicket")
        return NewSessionTicket(ticket=_require(m, T_TICKET, "ticket"))


@dataclass(frozen=True)
class NextProtocol:
    protocol: str

    def to_bytes(self) -> bytes:
        return canonical_bytes({
            T_MSG_TYPE: bytes([HS_NEXT_PROTOCOL]),
            T_PROTOCOL: self.protocol.encode("utf-8"),
        })

    @staticmethod
    def parse(blob: bytes) -> "NextProtocol":
        m = dec_tlv_map(blob)
        _expect_type(m, HS_NEXT_PROTOCOL, "NextProtocol")
        return NextProtocol(protocol=_require(m, T_PROTOCOL, "protocol").decode("utf-8"))


@dataclass(frozen=True)
class Finished:
    verify_data: bytes

    def to_bytes(self) -> bytes:
        return canonical_bytes({
            T_MSG_TYPE: bytes([HS_FINISHED]),
            T_VERIFY_DATA: bytes(self.verify_data),
        })

    @staticmethod
    def parse(blob: bytes) -> "Finished":
        m = dec_tlv_map(blob)
        _expect_type(m, HS_FINISHED, "Finished")
        return Finished(verify_data=_require(m, T_VERIFY_DATA, "verify data"))
