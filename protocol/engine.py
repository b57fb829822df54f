# MIT License © 2025 Motohiro Suzuki
"""
protocol/engine.py

What the phase steps need from a secure-transport engine.

One engine instance per endpoint. Every call is non-blocking: when the
engine cannot make progress without peer input it says so (WANT_READ)
and returns immediately.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

from protocol.session import SessionHandle
from protocol.versions import ProtocolVersion


class IOResult(str, Enum):
    OK = "OK"
    WANT_READ = "WANT_READ"
    WANT_WRITE = "WANT_WRITE"
    # orderly close received from the peer
    ZERO_RETURN = "ZERO_RETURN"
    ERROR = "ERROR"


class ProtocolEngine:
    """
    Interface (base class raises NotImplementedError):

    - do_handshake()    -> OK | WANT_READ | ERROR
    - read(max_bytes)   -> (OK, data) | (WANT_READ, b"") | (ZERO_RETURN, b"") | (ERROR, b"")
    - write(data)       -> (OK, len(data)) | (WANT_WRITE, 0) | (ERROR, 0)
    - shutdown()        -> OK (close sent and received) | WANT_READ | ERROR
    - query methods below are read by the outcome aggregation only
    """

    def do_handshake(self) -> IOResult:
        raise NotImplementedError

    def read(self, max_bytes: int) -> Tuple[IOResult, bytes]:
        raise NotImplementedError

    def write(self, data: bytes) -> Tuple[IOResult, int]:
        raise NotImplementedError

    def shutdown(self) -> IOResult:
        raise NotImplementedError

    # ---- negotiated state ----

    def version(self) -> Optional[ProtocolVersion]:
        raise NotImplementedError

    def session_reused(self) -> bool:
        raise NotImplementedError

    def alpn_selected(self) -> Optional[str]:
        raise NotImplementedError

    def npn_negotiated(self) -> Optional[str]:
        raise NotImplementedError

    def session(self) -> Optional[SessionHandle]:
        raise NotImplementedError

    def close(self) -> None:
        """Release the transport handle. Idempotent."""
        raise NotImplementedError
