# MIT License © 2025 Motohiro Suzuki
"""
protocol/handshake.py

Turn scheduler and public entry point.

- run_phases(): alternating-turn loop over two endpoints. The client acts
  first in every phase; after each step the resolver decides.
- do_handshake_internal(): one run (contexts, channel pair, endpoints,
  loop, aggregation, teardown).
- do_handshake(): simple or resume mode. In resume mode the second run only
  happens when the first one succeeded; it offers the first run's client
  session and has server-name routing disabled.

Evidence lines:
    [handshake] case=<name> run=<n> phase=<phase> verdict=<verdict> turns=<n>
    [handshake] case=<name> mode=<mode> result=<result>
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional

from policy.configurator import configure_contexts
from protocol.config import HandshakeMode, HandshakeTestConfig, NegotiationConfig
from protocol.endpoint import ConnectionEndpoint, Observations, PeerRole
from protocol.errors import ConfigurationError, ContractViolation
from protocol.outcome import HandshakeOutcome, TestResult, aggregate
from protocol.phases import Phase, PeerStatus, do_connect_step, next_phase
from protocol.resolver import Verdict, resolve
from protocol.session import SessionHandle
from protocol.sim_engine import SimEngine, app_data_wire_size
from transport.channel import DEFAULT_CAPACITY, ChannelPair

# no engine needs anywhere near this many turns for one phase
MAX_TURNS_PER_PHASE = 10_000

# fixed part of the largest handshake flight (hellos, ticket, Finished, alert)
HANDSHAKE_FLIGHT_ALLOWANCE = 4096

_VERDICT_RESULT: Dict[Verdict, TestResult] = {
    Verdict.CLIENT_FAILED: TestResult.CLIENT_FAIL,
    Verdict.SERVER_FAILED: TestResult.SERVER_FAIL,
    Verdict.INCONSISTENT: TestResult.INTERNAL_ERROR,
}


def run_phases(server: ConnectionEndpoint, client: ConnectionEndpoint, *, label: str = "") -> TestResult:
    phase = Phase.HANDSHAKE
    client_turn = True
    turns = 0

    while True:
        turns += 1
        if turns > MAX_TURNS_PER_PHASE:
            raise ContractViolation(f"no progress in phase {phase.value} after {MAX_TURNS_PER_PHASE} turns")

        if client_turn:
            do_connect_step(client, phase)
            verdict = resolve(client.status, server.status, True)
        else:
            do_connect_step(server, phase)
            verdict = resolve(server.status, client.status, False)

        if verdict == Verdict.KEEP_GOING:
            client_turn = not client_turn
            continue

        print(f"[handshake] {label}phase={phase.value} verdict={verdict.value} turns={turns}")

        if verdict != Verdict.BOTH_DONE:
            return _VERDICT_RESULT[verdict]

        phase = next_phase(phase)
        if phase == Phase.CONNECTION_DONE:
            return TestResult.SUCCESS
        client_turn = True
        client.status = PeerStatus.RETRY
        server.status = PeerStatus.RETRY
        turns = 0


def do_handshake_internal(
    negotiation: NegotiationConfig,
    *,
    app_data_size: int,
    buffer_size: int,
    channel_capacity: int = DEFAULT_CAPACITY,
    session_in: Optional[SessionHandle] = None,
    allow_servername: bool = True,
    label: str = "",
) -> HandshakeOutcome:
    contexts = configure_contexts(negotiation, allow_servername=allow_servername)
    if session_in is not None:
        contexts.server.session_cache.add(session_in)

    pair = ChannelPair(channel_capacity)
    s_obs = Observations()
    c_obs = Observations()
    server = ConnectionEndpoint(
        role=PeerRole.SERVER,
        engine=SimEngine(PeerRole.SERVER, contexts.server, pair.server_end(), s_obs, secondary=contexts.server2),
        observations=s_obs,
        buffer_size=buffer_size,
        bytes_to_write=app_data_size,
        bytes_to_read=app_data_size,
    )
    client = ConnectionEndpoint(
        role=PeerRole.CLIENT,
        engine=SimEngine(PeerRole.CLIENT, contexts.client, pair.client_end(), c_obs, session_in=session_in),
        observations=c_obs,
        buffer_size=buffer_size,
        bytes_to_write=app_data_size,
        bytes_to_read=app_data_size,
    )

    try:
        result = run_phases(server, client, label=label)
    finally:
        server.release()
        client.release()

    return aggregate(result, server, client)


def _emit_audit(cfg: HandshakeTestConfig, record: dict) -> None:
    path = cfg.audit_log_path
    if isinstance(path, str) and path.strip():
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            json.dump(record, f, ensure_ascii=False)
            f.write("\n")


def _flight_size(negotiation: NegotiationConfig) -> int:
    # protocol lists and the server name travel in hellos and sealed tickets
    text = 0
    for c in (negotiation.server, negotiation.server2, negotiation.client):
        if c is None:
            continue
        for v in (c.alpn_protocols, c.npn_protocols, getattr(c, "servername", None)):
            text += len((v or "").encode("utf-8"))
    return HANDSHAKE_FLIGHT_ALLOWANCE + 3 * text


def required_channel_capacity(cfg: HandshakeTestConfig) -> int:
    """
    Smallest capacity per direction that fits one buffer of application
    records next to the largest handshake flight of either run.
    """
    flight = max(_flight_size(cfg.negotiation), _flight_size(cfg.resume_config()))
    return app_data_wire_size(cfg.buffer_size) + flight


def do_handshake(cfg: HandshakeTestConfig, *, session_in: Optional[SessionHandle] = None) -> HandshakeOutcome:
    """
    Run one test. session_in (optional) is offered by the client on the
    first run, e.g. a handle kept from an earlier outcome.
    """
    if cfg.app_data_size < 0:
        raise ConfigurationError("app_data_size must be >= 0")
    if cfg.buffer_size <= 0:
        raise ConfigurationError("buffer_size must be > 0")

    required = required_channel_capacity(cfg)
    capacity = cfg.channel_capacity
    if capacity is None:
        capacity = max(DEFAULT_CAPACITY, required)
    elif capacity < required:
        raise ConfigurationError(
            f"channel_capacity {capacity} cannot hold one buffer of {cfg.buffer_size} bytes "
            f"and a handshake flight (needs {required})"
        )

    name = cfg.name or "-"
    common = dict(
        app_data_size=cfg.app_data_size,
        buffer_size=cfg.buffer_size,
        channel_capacity=capacity,
    )

    outcome = do_handshake_internal(
        cfg.negotiation,
        session_in=session_in,
        label=f"case={name} run=1 ",
        **common,
    )

    if cfg.mode == HandshakeMode.RESUME:
        if outcome.result != TestResult.SUCCESS:
            outcome = outcome.with_result(TestResult.FIRST_HANDSHAKE_FAILED)
        else:
            outcome = do_handshake_internal(
                cfg.resume_config(),
                session_in=outcome.session_out,
                allow_servername=False,
                label=f"case={name} run=2 ",
                **common,
            )

    print(f"[handshake] case={name} mode={cfg.mode.value} result={outcome.result.value}")
    _emit_audit(cfg, {"case": cfg.name, "mode": cfg.mode.value, "outcome": outcome.to_dict()})
    return outcome
