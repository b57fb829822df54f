# MIT License © 2025 Motohiro Suzuki
"""
protocol/phases.py

Per-endpoint phase steps. Each step runs exactly once per turn and leaves
the endpoint's status at RETRY (call me again), SUCCESS or ERROR.

Phase order (forward only):
    HANDSHAKE -> APPLICATION_DATA -> SHUTDOWN -> CONNECTION_DONE
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict

from protocol.engine import IOResult
from protocol.errors import ContractViolation, check

if TYPE_CHECKING:
    from protocol.endpoint import ConnectionEndpoint


class PeerStatus(str, Enum):
    RETRY = "RETRY"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class Phase(str, Enum):
    HANDSHAKE = "HANDSHAKE"
    APPLICATION_DATA = "APPLICATION_DATA"
    SHUTDOWN = "SHUTDOWN"
    CONNECTION_DONE = "CONNECTION_DONE"


_NEXT: Dict[Phase, Phase] = {
    Phase.HANDSHAKE: Phase.APPLICATION_DATA,
    Phase.APPLICATION_DATA: Phase.SHUTDOWN,
    Phase.SHUTDOWN: Phase.CONNECTION_DONE,
}


def next_phase(phase: Phase) -> Phase:
    nxt = _NEXT.get(phase)
    if nxt is None:
        raise ContractViolation(f"no phase after {phase.value}")
    return nxt


def _require_retry(peer: "ConnectionEndpoint") -> None:
    check(peer.status == PeerStatus.RETRY, f"{peer.role.value}: step called with status {peer.status.value}")


def do_handshake_step(peer: "ConnectionEndpoint") -> None:
    _require_retry(peer)
    r = peer.engine.do_handshake()
    if r == IOResult.OK:
        peer.status = PeerStatus.SUCCESS
    elif r == IOResult.WANT_READ:
        peer.status = PeerStatus.RETRY
    else:
        peer.status = PeerStatus.ERROR


def do_app_data_step(peer: "ConnectionEndpoint") -> None:
    """
    Read everything currently available (up to what is still expected),
    then write at most one buffer. Writes on the in-memory transport are
    all-or-nothing, so a short write means the engine broke its contract.
    """
    _require_retry(peer)

    while peer.bytes_to_read > 0:
        r, data = peer.engine.read(peer.buffer_size)
        if r == IOResult.OK and data:
            check(
                len(data) <= peer.bytes_to_read,
                f"{peer.role.value}: read {len(data)} bytes, only {peer.bytes_to_read} expected",
            )
            peer.bytes_to_read -= len(data)
        elif r == IOResult.WANT_READ:
            break
        else:
            # includes ZERO_RETURN and an empty OK read
            peer.status = PeerStatus.ERROR
            return

    if peer.bytes_to_write > 0:
        n = min(peer.bytes_to_write, peer.buffer_size)
        r, written = peer.engine.write(peer.write_buf[:n])
        if r != IOResult.OK:
            peer.status = PeerStatus.ERROR
            return
        check(written == n, f"{peer.role.value}: short write {written}/{n}")
        peer.bytes_to_write -= written

    if peer.bytes_to_read == 0 and peer.bytes_to_write == 0:
        peer.status = PeerStatus.SUCCESS


def do_shutdown_step(peer: "ConnectionEndpoint") -> None:
    _require_retry(peer)
    r = peer.engine.shutdown()
    if r == IOResult.OK:
        peer.status = PeerStatus.SUCCESS
    elif r in (IOResult.WANT_READ, IOResult.WANT_WRITE):
        peer.status = PeerStatus.RETRY
    else:
        peer.status = PeerStatus.ERROR


_STEPS: Dict[Phase, Callable[["ConnectionEndpoint"], None]] = {
    Phase.HANDSHAKE: do_handshake_step,
    Phase.APPLICATION_DATA: do_app_data_step,
    Phase.SHUTDOWN: do_shutdown_step,
}


def do_connect_step(peer: "ConnectionEndpoint", phase: Phase) -> None:
    step = _STEPS.get(phase)
    if step is None:
        raise ContractViolation(f"no step for phase {phase.value}")
    step(peer)
