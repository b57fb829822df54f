# MIT License © 2025 Motohiro Suzuki
import math

import pytest

from protocol.endpoint import ConnectionEndpoint, Observations, PeerRole
from protocol.engine import IOResult, ProtocolEngine
from protocol.errors import ContractViolation
from protocol.handshake import run_phases
from protocol.outcome import TestResult
from protocol.phases import (
    Phase,
    PeerStatus,
    do_app_data_step,
    do_connect_step,
    do_handshake_step,
    next_phase,
)
from protocol.resolver import Verdict, resolve


class PipeEngine(ProtocolEngine):
    """Plaintext engine over two shared bytearrays; handshake is scripted."""

    def __init__(self, inbox, outbox, handshake=(IOResult.OK,), shutdown=(IOResult.OK,)):
        self.inbox = inbox
        self.outbox = outbox
        self._handshake = list(handshake)
        self._shutdown = list(shutdown)
        self.writes = 0

    def _next(self, script):
        return script.pop(0) if len(script) > 1 else script[0]

    def do_handshake(self):
        return self._next(self._handshake)

    def shutdown(self):
        return self._next(self._shutdown)

    def read(self, max_bytes):
        if not self.inbox:
            return IOResult.WANT_READ, b""
        n = min(max_bytes, len(self.inbox))
        out = bytes(self.inbox[:n])
        del self.inbox[:n]
        return IOResult.OK, out

    def write(self, data):
        self.writes += 1
        self.outbox += data
        return IOResult.OK, len(data)

    def close(self):
        pass


class FixedEngine(PipeEngine):
    def __init__(self, read=None, write=None):
        super().__init__(bytearray(), bytearray())
        self._read = read
        self._write = write

    def read(self, max_bytes):
        return self._read

    def write(self, data):
        return self._write


def _endpoint(role, engine, size=0, buffer_size=16):
    return ConnectionEndpoint(
        role=role,
        engine=engine,
        observations=Observations(),
        buffer_size=buffer_size,
        bytes_to_write=size,
        bytes_to_read=size,
    )


def _pair(size, buffer_size, **kw):
    c2s, s2c = bytearray(), bytearray()
    client = _endpoint(PeerRole.CLIENT, PipeEngine(s2c, c2s, **kw), size, buffer_size)
    server = _endpoint(PeerRole.SERVER, PipeEngine(c2s, s2c, **kw), size, buffer_size)
    return client, server


@pytest.mark.parametrize("size", [0, 1, 16, 100, 257])
@pytest.mark.parametrize("capacity", [1, 16, 64, 256])
def test_app_data_write_turns(size, capacity):
    client, server = _pair(size, capacity)
    client_turn = True
    verdict = None
    for _ in range(10 * (size + 2)):
        actor, other = (client, server) if client_turn else (server, client)
        do_connect_step(actor, Phase.APPLICATION_DATA)
        if actor.status == PeerStatus.SUCCESS:
            assert actor.bytes_to_read == 0 and actor.bytes_to_write == 0
        verdict = resolve(actor.status, other.status, client_turn)
        if verdict != Verdict.KEEP_GOING:
            break
        client_turn = not client_turn

    assert verdict == Verdict.BOTH_DONE
    expected = math.ceil(size / capacity)
    assert client.engine.writes == expected
    assert server.engine.writes == expected


def test_step_requires_retry():
    client, _ = _pair(0, 16)
    client.status = PeerStatus.SUCCESS
    with pytest.raises(ContractViolation):
        do_handshake_step(client)


def test_handshake_step_mapping():
    for result, status in [
        (IOResult.OK, PeerStatus.SUCCESS),
        (IOResult.WANT_READ, PeerStatus.RETRY),
        (IOResult.WANT_WRITE, PeerStatus.ERROR),
        (IOResult.ERROR, PeerStatus.ERROR),
    ]:
        ep = _endpoint(PeerRole.CLIENT, PipeEngine(bytearray(), bytearray(), handshake=(result,)))
        do_handshake_step(ep)
        assert ep.status == status


def test_short_write_is_contract_violation():
    ep = _endpoint(PeerRole.CLIENT, FixedEngine(read=(IOResult.WANT_READ, b""), write=(IOResult.OK, 3)), size=10)
    with pytest.raises(ContractViolation):
        do_app_data_step(ep)


def test_failed_write_is_error():
    ep = _endpoint(PeerRole.CLIENT, FixedEngine(read=(IOResult.WANT_READ, b""), write=(IOResult.WANT_WRITE, 0)), size=10)
    do_app_data_step(ep)
    assert ep.status == PeerStatus.ERROR


def test_read_beyond_expected_is_contract_violation():
    ep = _endpoint(PeerRole.CLIENT, FixedEngine(read=(IOResult.OK, b"x" * 11), write=(IOResult.OK, 10)), size=10)
    with pytest.raises(ContractViolation):
        do_app_data_step(ep)


def test_peer_close_during_app_data_is_error():
    ep = _endpoint(PeerRole.CLIENT, FixedEngine(read=(IOResult.ZERO_RETURN, b""), write=(IOResult.OK, 10)), size=10)
    do_app_data_step(ep)
    assert ep.status == PeerStatus.ERROR


def test_phase_order():
    assert next_phase(Phase.HANDSHAKE) == Phase.APPLICATION_DATA
    assert next_phase(Phase.APPLICATION_DATA) == Phase.SHUTDOWN
    assert next_phase(Phase.SHUTDOWN) == Phase.CONNECTION_DONE
    with pytest.raises(ContractViolation):
        next_phase(Phase.CONNECTION_DONE)
    with pytest.raises(ContractViolation):
        do_connect_step(_endpoint(PeerRole.CLIENT, PipeEngine(bytearray(), bytearray())), Phase.CONNECTION_DONE)


def test_run_phases_success():
    client, server = _pair(40, 16, handshake=(IOResult.WANT_READ, IOResult.OK), shutdown=(IOResult.WANT_READ, IOResult.OK))
    assert run_phases(server, client) == TestResult.SUCCESS
    assert client.engine.writes == 3


def test_run_phases_server_fails_first():
    client, server = _pair(0, 16)
    client.engine = PipeEngine(bytearray(), bytearray(), handshake=(IOResult.WANT_READ, IOResult.ERROR))
    server.engine = PipeEngine(bytearray(), bytearray(), handshake=(IOResult.ERROR,))
    assert run_phases(server, client) == TestResult.SERVER_FAIL


def test_run_phases_client_waits_forever_is_inconsistent():
    client, server = _pair(0, 16)
    client.engine = PipeEngine(bytearray(), bytearray(), handshake=(IOResult.WANT_READ,))
    server.engine = PipeEngine(bytearray(), bytearray(), handshake=(IOResult.ERROR,))
    assert run_phases(server, client) == TestResult.INTERNAL_ERROR


def test_run_phases_client_fails_after_server_done():
    client, server = _pair(0, 16)
    client.engine = PipeEngine(bytearray(), bytearray(), handshake=(IOResult.WANT_READ, IOResult.ERROR))
    server.engine = PipeEngine(bytearray(), bytearray(), handshake=(IOResult.OK,))
    assert run_phases(server, client) == TestResult.CLIENT_FAIL
