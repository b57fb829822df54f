# MIT License © 2025 Motohiro Suzuki
import json

import pytest

from policy.servername import ServernameMode, ServernameRole
from policy.tickets import TicketMode
from policy.verify import VerifyMode
from protocol.config import (
    ClientConfig,
    HandshakeTestConfig,
    NegotiationConfig,
    ServerConfig,
    ServerOption,
)
from protocol.errors import ConfigurationError
from protocol.failure import AlertDescription
from protocol.handshake import do_handshake
from protocol.outcome import TestResult
from protocol.versions import ProtocolVersion


def _run(server=None, client=None, server2=None, **kw):
    neg = NegotiationConfig(
        server=server or ServerConfig(),
        server2=server2,
        client=client or ClientConfig(),
    )
    return do_handshake(HandshakeTestConfig(negotiation=neg, **kw))


def test_simple_handshake_16_bytes():
    out = _run(app_data_size=16)
    assert out.result == TestResult.SUCCESS
    assert out.server_alert_sent is None
    assert out.server_alert_received is None
    assert out.client_alert_sent is None
    assert out.client_alert_received is None
    assert out.client_resumed is False
    assert out.server_resumed is False
    assert out.server_protocol == ProtocolVersion.TLSv1_3
    assert out.client_protocol == ProtocolVersion.TLSv1_3
    assert out.servername is None
    assert out.session_ticket is True
    assert out.session_out is not None


def test_app_data_spanning_many_buffers():
    out = _run(app_data_size=100_000, buffer_size=4096)
    assert out.result == TestResult.SUCCESS


def test_no_app_data():
    assert _run(app_data_size=0).result == TestResult.SUCCESS


def test_null_cipher():
    out = _run(server=ServerConfig(cipher="null"), client=ClientConfig(cipher="null"))
    assert out.result == TestResult.SUCCESS


def test_cipher_mismatch_is_server_failure():
    out = _run(server=ServerConfig(cipher="null"))
    assert out.result == TestResult.SERVER_FAIL
    assert out.server_alert_sent == AlertDescription.handshake_failure


def test_version_negotiation():
    out = _run(server=ServerConfig(max_version=ProtocolVersion.TLSv1_1))
    assert out.result == TestResult.SUCCESS
    assert out.server_protocol == ProtocolVersion.TLSv1_1
    assert out.client_protocol == ProtocolVersion.TLSv1_1


def test_version_without_overlap():
    out = _run(
        server=ServerConfig(min_version=ProtocolVersion.TLSv1_3),
        client=ClientConfig(max_version=ProtocolVersion.TLSv1_2),
    )
    assert out.result == TestResult.SERVER_FAIL
    assert out.server_alert_sent == AlertDescription.protocol_version
    assert out.server_alert_received == AlertDescription.protocol_version
    assert out.client_alert_sent is None


def test_alpn_server_preference():
    out = _run(
        server=ServerConfig(alpn_protocols="h2,http/1.1"),
        client=ClientConfig(alpn_protocols="http/1.1,h2"),
    )
    assert out.result == TestResult.SUCCESS
    assert out.server_alpn_negotiated == "h2"
    assert out.client_alpn_negotiated == "h2"


def test_alpn_only_on_one_side():
    out = _run(client=ClientConfig(alpn_protocols="foo"))
    assert out.result == TestResult.SUCCESS
    assert out.client_alpn_negotiated is None
    assert out.server_alpn_negotiated is None


def test_alpn_mismatch_rejected_by_server():
    out = _run(
        server=ServerConfig(alpn_protocols="foo"),
        client=ClientConfig(alpn_protocols="bar"),
    )
    assert out.result == TestResult.SERVER_FAIL
    assert out.server_alert_sent == AlertDescription.no_application_protocol
    assert out.server_alert_received == AlertDescription.no_application_protocol
    assert out.client_alpn_negotiated is None


def test_npn_client_preference_tls12():
    out = _run(
        server=ServerConfig(max_version=ProtocolVersion.TLSv1_2, npn_protocols="b,c"),
        client=ClientConfig(npn_protocols="a,b"),
    )
    assert out.result == TestResult.SUCCESS
    assert out.client_npn_negotiated == "b"
    assert out.server_npn_negotiated == "b"


def test_npn_without_overlap_uses_client_first():
    out = _run(
        server=ServerConfig(max_version=ProtocolVersion.TLSv1_2, npn_protocols="x,y"),
        client=ClientConfig(npn_protocols="a,b"),
    )
    assert out.result == TestResult.SUCCESS
    assert out.client_npn_negotiated == "a"
    assert out.server_npn_negotiated == "a"


def test_npn_and_alpn_together():
    out = _run(
        server=ServerConfig(max_version=ProtocolVersion.TLSv1_2, npn_protocols="foo", alpn_protocols="bar"),
        client=ClientConfig(npn_protocols="foo", alpn_protocols="bar"),
    )
    assert out.result == TestResult.SUCCESS
    assert out.client_npn_negotiated == "foo"
    assert out.client_alpn_negotiated == "bar"


def test_npn_skipped_in_tls13():
    out = _run(server=ServerConfig(npn_protocols="foo"), client=ClientConfig(npn_protocols="foo"))
    assert out.result == TestResult.SUCCESS
    assert out.client_npn_negotiated is None
    assert out.server_npn_negotiated is None


def test_servername_switches_to_server2():
    out = _run(
        server=ServerConfig(servername_callback=ServernameMode.IGNORE_MISMATCH, alpn_protocols="foo"),
        server2=ServerConfig(alpn_protocols="bar"),
        client=ClientConfig(servername="server2", alpn_protocols="foo,bar"),
    )
    assert out.result == TestResult.SUCCESS
    assert out.servername == ServernameRole.SERVER2
    assert out.server_alpn_negotiated == "bar"
    # tickets still come from the initial context
    assert out.session_ticket is True
    assert out.session_ticket_do_not_call is False


def test_servername_switch_copies_options():
    out = _run(
        server=ServerConfig(servername_callback=ServernameMode.IGNORE_MISMATCH),
        server2=ServerConfig(options=frozenset({ServerOption.NO_TICKET})),
        client=ClientConfig(servername="server2"),
    )
    assert out.result == TestResult.SUCCESS
    assert out.session_ticket is False


@pytest.mark.parametrize("name", [None, "server1", "invalid"])
def test_servername_stays_on_server1(name):
    out = _run(
        server=ServerConfig(servername_callback=ServernameMode.IGNORE_MISMATCH),
        server2=ServerConfig(),
        client=ClientConfig(servername=name),
    )
    assert out.result == TestResult.SUCCESS
    assert out.servername == ServernameRole.SERVER1


def test_servername_rejected():
    out = _run(
        server=ServerConfig(servername_callback=ServernameMode.REJECT_MISMATCH),
        server2=ServerConfig(),
        client=ClientConfig(servername="invalid"),
    )
    assert out.result == TestResult.SERVER_FAIL
    assert out.server_alert_sent == AlertDescription.unrecognized_name
    assert out.server_alert_received == AlertDescription.unrecognized_name
    assert out.servername is None


def test_servername_routing_needs_server2():
    with pytest.raises(ConfigurationError):
        _run(server=ServerConfig(servername_callback=ServernameMode.IGNORE_MISMATCH))


def test_verify_reject_all_fails_client():
    out = _run(client=ClientConfig(verify_callback=VerifyMode.REJECT_ALL))
    assert out.result == TestResult.CLIENT_FAIL
    assert out.client_alert_sent == AlertDescription.handshake_failure
    assert out.client_alert_received == AlertDescription.handshake_failure
    assert out.server_alert_sent is None


def test_verify_accept_all():
    out = _run(client=ClientConfig(verify_callback=VerifyMode.ACCEPT_ALL))
    assert out.result == TestResult.SUCCESS


def test_broken_ticket_policy_sends_empty_ticket():
    out = _run(server=ServerConfig(session_ticket=TicketMode.BROKEN))
    assert out.result == TestResult.SUCCESS
    assert out.session_ticket is False


def test_do_not_call_on_primary_is_observed():
    out = _run(server=ServerConfig(session_ticket=TicketMode.DO_NOT_CALL))
    assert out.result == TestResult.SUCCESS
    assert out.session_ticket_do_not_call is True
    assert out.session_ticket is False


def test_client_without_ticket_support():
    out = _run(client=ClientConfig(session_tickets=False))
    assert out.result == TestResult.SUCCESS
    assert out.session_ticket is False


def test_negative_app_data_size():
    with pytest.raises(ConfigurationError):
        _run(app_data_size=-1)


def test_audit_log_appends_jsonl(tmp_path):
    path = tmp_path / "audit" / "runs.jsonl"
    _run(name="first", audit_log_path=str(path))
    _run(name="second", audit_log_path=str(path), client=ClientConfig(verify_callback=VerifyMode.REJECT_ALL))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first, second = (json.loads(x) for x in lines)
    assert first["case"] == "first"
    assert first["outcome"]["result"] == "Success"
    assert second["outcome"]["result"] == "ClientFail"
    assert second["outcome"]["client_alert_sent"] == "handshake_failure"


def test_evidence_lines(capsys):
    _run(name="evidence", app_data_size=16)
    out = capsys.readouterr().out
    assert "[handshake] case=evidence run=1 phase=HANDSHAKE verdict=BOTH_DONE" in out
    assert "[handshake] case=evidence run=1 phase=SHUTDOWN verdict=BOTH_DONE" in out
    assert "[handshake] case=evidence mode=Simple result=Success" in out
