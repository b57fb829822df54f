# MIT License © 2025 Motohiro Suzuki
"""
protocol/endpoint.py

One side of a simulated connection.

- Observations: out-of-band facts reported by the engine while it runs
  (alerts, server-name role, ticket-callback misuse). Each endpoint owns its
  own record and hands it to its own engine, so nothing can be attributed to
  the wrong side.
- ConnectionEndpoint: engine handle, byte counters, write buffer and the
  current per-step status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from policy.servername import ServernameRole
from protocol.engine import ProtocolEngine
from protocol.errors import check
from protocol.failure import AlertDescription, Failure
from protocol.phases import PeerStatus


class PeerRole(str, Enum):
    CLIENT = "client"
    SERVER = "server"


@dataclass
class Observations:
    alert_sent: Optional[AlertDescription] = None
    alert_received: Optional[AlertDescription] = None
    servername: Optional[ServernameRole] = None
    session_ticket_do_not_call: bool = False
    failure: Optional[Failure] = None

    def on_alert_sent(self, description: int) -> None:
        # close_notify is a closure signal, not an error
        if description == AlertDescription.close_notify:
            return
        self.alert_sent = _describe(description)

    def on_alert_received(self, description: int) -> None:
        if description == AlertDescription.close_notify:
            return
        self.alert_received = _describe(description)


def _describe(description: int) -> AlertDescription:
    try:
        return AlertDescription(description)
    except ValueError:
        return AlertDescription.internal_error


@dataclass
class ConnectionEndpoint:
    role: PeerRole
    engine: ProtocolEngine
    observations: Observations
    buffer_size: int
    bytes_to_write: int
    bytes_to_read: int
    status: PeerStatus = PeerStatus.RETRY
    write_buf: bytes = field(default=b"", repr=False)

    def __post_init__(self) -> None:
        check(self.buffer_size > 0, "buffer size must be > 0")
        check(self.bytes_to_write >= 0 and self.bytes_to_read >= 0, "byte counters must be >= 0")
        if not self.write_buf:
            # deterministic filler, one buffer's worth
            reps = self.buffer_size // 256 + 1
            self.write_buf = (bytes(range(256)) * reps)[: self.buffer_size]
        check(len(self.write_buf) == self.buffer_size, "write buffer does not match buffer size")

    def release(self) -> None:
        self.engine.close()
