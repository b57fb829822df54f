# MIT License © 2025 Motohiro Suzuki
from policy.servername import ServernameMode
from policy.tickets import TicketMode
from protocol.config import (
    ClientConfig,
    HandshakeMode,
    HandshakeTestConfig,
    NegotiationConfig,
    ServerConfig,
    ServerOption,
)
from protocol.handshake import do_handshake
from protocol.outcome import TestResult
from protocol.versions import ProtocolVersion
from policy.verify import VerifyMode


def _resume(server=None, client=None, resume=None, server2=None):
    neg = NegotiationConfig(server=server or ServerConfig(), server2=server2, client=client or ClientConfig())
    return do_handshake(
        HandshakeTestConfig(negotiation=neg, mode=HandshakeMode.RESUME, resume_negotiation=resume, app_data_size=16)
    )


def test_first_run_yields_session_handle():
    out = do_handshake(HandshakeTestConfig(app_data_size=16))
    assert out.result == TestResult.SUCCESS
    s = out.session_out
    assert s is not None
    assert s.has_ticket
    assert s.version == ProtocolVersion.TLSv1_3


def test_resume_with_ticket():
    out = _resume()
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is True
    assert out.server_resumed is True
    assert out.session_ticket is True


def test_resume_by_explicit_session_handle():
    first = do_handshake(HandshakeTestConfig(app_data_size=16))
    second = do_handshake(HandshakeTestConfig(app_data_size=16), session_in=first.session_out)
    assert second.result == TestResult.SUCCESS
    assert second.client_resumed is True


def test_resume_tls12_keeps_alpn():
    server = ServerConfig(max_version=ProtocolVersion.TLSv1_2, alpn_protocols="foo")
    client = ClientConfig(alpn_protocols="foo")
    out = _resume(server=server, client=client)
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is True
    assert out.server_alpn_negotiated == "foo"


def test_resume_by_session_id_without_tickets():
    out = _resume(client=ClientConfig(session_tickets=False))
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is True
    assert out.server_resumed is True
    assert out.session_ticket is False


def test_resume_refused_by_option():
    resume = NegotiationConfig(
        server=ServerConfig(options=frozenset({ServerOption.NO_RESUMPTION})),
        client=ClientConfig(),
    )
    out = _resume(resume=resume)
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is False
    assert out.server_resumed is False


def test_resume_against_other_ticket_key_falls_back_to_full_handshake():
    resume = NegotiationConfig(
        server=ServerConfig(ticket_key=b"\x01" * 48),
        client=ClientConfig(),
    )
    out = _resume(resume=resume)
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is False


def test_resume_with_broken_ticket_policy():
    out = _resume(server=ServerConfig(session_ticket=TicketMode.BROKEN))
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is False


def test_resume_in_other_version_is_full_handshake():
    resume = NegotiationConfig(
        server=ServerConfig(max_version=ProtocolVersion.TLSv1_2),
        client=ClientConfig(),
    )
    out = _resume(resume=resume)
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is False
    assert out.server_protocol == ProtocolVersion.TLSv1_2


def test_resume_run_has_servername_routing_disabled():
    server = ServerConfig(servername_callback=ServernameMode.IGNORE_MISMATCH)
    client = ClientConfig(servername="server2")
    out = _resume(server=server, client=client, server2=ServerConfig())
    assert out.result == TestResult.SUCCESS
    assert out.client_resumed is True
    assert out.servername is None
    assert out.session_ticket_do_not_call is False


def test_first_handshake_failure_skips_second_run(capsys):
    out = _resume(client=ClientConfig(verify_callback=VerifyMode.REJECT_ALL))
    assert out.result == TestResult.FIRST_HANDSHAKE_FAILED
    assert "run=2" not in capsys.readouterr().out
