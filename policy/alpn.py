# MIT License © 2025 Motohiro Suzuki
"""
policy/alpn.py

Application-protocol lists and the two selection schemes.

Wire list encoding (one length byte per entry, no entry may be empty):
    "foo"     => 3 'f' 'o' 'o'
    "foo,bar" => 3 'f' 'o' 'o' 3 'b' 'a' 'r'

Schemes:
- ClientPreferenceSelector (next-protocol style): the server advertises, the
  client picks. No overlap is tolerated: the client falls back to its own
  first entry.
- ServerPreferenceSelector (ALPN style): the client offers, the server picks
  its most preferred entry that the client also offered. No overlap is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence

from protocol.errors import ConfigurationError, check
from protocol.failure import Failure, FailureCode, FailureLayer, FailurePhase
from protocol.result import Result

MAX_ENTRY_LEN = 0xFF


def split_protocols(protos: str) -> List[str]:
    """Comma-separated list -> entries. Empty entries are a configuration error."""
    if protos is None:
        raise ConfigurationError("protocol list is None")
    entries = protos.split(",")
    for e in entries:
        if not e:
            raise ConfigurationError(f"empty entry in protocol list: {protos!r}")
        if len(e.encode("utf-8")) > MAX_ENTRY_LEN:
            raise ConfigurationError(f"protocol entry too long: {e!r}")
    return entries


def encode_protocol_list(protos: "str | Sequence[str]") -> bytes:
    entries = split_protocols(protos) if isinstance(protos, str) else list(protos)
    out = bytearray()
    for e in entries:
        b = e.encode("utf-8")
        if not b:
            raise ConfigurationError("empty entry in protocol list")
        if len(b) > MAX_ENTRY_LEN:
            raise ConfigurationError(f"protocol entry too long: {e!r}")
        out.append(len(b))
        out += b
    return bytes(out)


def decode_protocol_list(wire: bytes) -> List[str]:
    """Wire list -> entries. Malformed input (from a peer) raises ValueError."""
    out: List[str] = []
    b = bytes(wire)
    i = 0
    while i < len(b):
        ln = b[i]
        i += 1
        if ln == 0:
            raise ValueError("zero-length protocol entry")
        if i + ln > len(b):
            raise ValueError("truncated protocol list")
        out.append(b[i : i + ln].decode("utf-8"))
        i += ln
    return out


def check_protocol_name(name: str) -> str:
    check("\x00" not in name, f"NUL byte in negotiated protocol {name!r}")
    return name


class SelectionStatus(str, Enum):
    NEGOTIATED = "NEGOTIATED"
    NO_OVERLAP = "NO_OVERLAP"


@dataclass(frozen=True)
class Selection:
    protocol: str | None
    status: SelectionStatus


def select_next_proto(preferred: Sequence[str], supported: Sequence[str]) -> Selection:
    """
    Walk `preferred` in order and return the first entry present in
    `supported`. Without a match, fall back to the first entry of
    `supported` and report NO_OVERLAP.
    """
    for p in preferred:
        if p in supported:
            return Selection(p, SelectionStatus.NEGOTIATED)
    first = supported[0] if supported else None
    return Selection(first, SelectionStatus.NO_OVERLAP)


class ClientPreferenceSelector:
    """Client side of the next-protocol scheme (never fatal)."""

    def __init__(self, protocols: Iterable[str]) -> None:
        self.protocols = tuple(protocols)
        if not self.protocols:
            raise ConfigurationError("client protocol list is empty")

    def select(self, advertised: Sequence[str]) -> Selection:
        return select_next_proto(advertised, self.protocols)


class ServerAdvertiser:
    """Server side of the next-protocol scheme: a fixed advertised list."""

    def __init__(self, protocols: Iterable[str]) -> None:
        self.protocols = tuple(protocols)
        if not self.protocols:
            raise ConfigurationError("server protocol list is empty")

    def advertise(self) -> bytes:
        return encode_protocol_list(self.protocols)


class ServerPreferenceSelector:
    """Server side of the ALPN scheme (no fallback)."""

    def __init__(self, protocols: Iterable[str]) -> None:
        self.protocols = tuple(protocols)
        if not self.protocols:
            raise ConfigurationError("server protocol list is empty")

    def select(self, offered: Sequence[str]) -> Result[str]:
        sel = select_next_proto(self.protocols, offered)
        if sel.status == SelectionStatus.NEGOTIATED:
            return Result.Ok(sel.protocol)
        return Result.Err(
            Failure(
                layer=FailureLayer.POLICY,
                phase=FailurePhase.HANDSHAKE,
                code=FailureCode.ERR_NO_APPLICATION_PROTOCOL,
                fatal=True,
                detail=f"no overlap: server={list(self.protocols)} client={list(offered)}",
            )
        )
