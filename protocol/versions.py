# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ProtocolVersion(IntEnum):
    TLSv1 = 0x0301
    TLSv1_1 = 0x0302
    TLSv1_2 = 0x0303
    TLSv1_3 = 0x0304

    @property
    def label(self) -> str:
        return {
            ProtocolVersion.TLSv1: "TLSv1",
            ProtocolVersion.TLSv1_1: "TLSv1.1",
            ProtocolVersion.TLSv1_2: "TLSv1.2",
            ProtocolVersion.TLSv1_3: "TLSv1.3",
        }[self]

    @staticmethod
    def parse(v: "str | int | ProtocolVersion") -> "ProtocolVersion":
        if isinstance(v, ProtocolVersion):
            return v
        if isinstance(v, int):
            return ProtocolVersion(v)
        s = str(v).strip()
        for pv in ProtocolVersion:
            if s in (pv.label, pv.name):
                return pv
        raise ValueError(f"unknown protocol version: {v}")


def negotiate_version(
    client_min: ProtocolVersion,
    client_max: ProtocolVersion,
    server_min: ProtocolVersion,
    server_max: ProtocolVersion,
) -> Optional[ProtocolVersion]:
    """Highest version inside both ranges, or None."""
    hi = min(client_max, server_max)
    lo = max(client_min, server_min)
    if hi < lo:
        return None
    return ProtocolVersion(hi)
