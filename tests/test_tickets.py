# MIT License © 2025 Motohiro Suzuki
import pytest

from policy.tickets import (
    DEFAULT_TICKET_KEY,
    BrokenTicketPolicy,
    DoNotCallTicketPolicy,
    NormalTicketPolicy,
    TicketMode,
    make_ticket_policy,
)
from protocol.endpoint import Observations
from protocol.errors import ConfigurationError
from protocol.session import SessionHandle, decode_session_state, encode_session_state
from protocol.versions import ProtocolVersion


def _session():
    return SessionHandle(
        session_id=b"\x11" * 32,
        master_secret=b"\x22" * 32,
        version=ProtocolVersion.TLSv1_2,
        cipher="aes-gcm",
        alpn="h2",
    )


def test_ticket_opens_under_fresh_policy_with_same_key():
    obs = Observations()
    state = encode_session_state(_session())
    ticket = NormalTicketPolicy().seal(state, obs)
    assert ticket

    # a later run builds a new policy from the same fixed key material
    opened = NormalTicketPolicy(DEFAULT_TICKET_KEY).open(ticket, obs)
    s = decode_session_state(opened)
    assert s.session_id == b"\x11" * 32
    assert s.version == ProtocolVersion.TLSv1_2
    assert s.alpn == "h2"
    assert not obs.session_ticket_do_not_call


def test_ticket_does_not_open_under_other_key():
    obs = Observations()
    ticket = NormalTicketPolicy().seal(b"state", obs)
    other = NormalTicketPolicy(b"\x00" * 16 + b"\x01" * 32)
    assert other.open(ticket, obs) is None
    assert other.open(ticket[:-1] + bytes([ticket[-1] ^ 1]), obs) is None


def test_broken_policy_always_fails():
    obs = Observations()
    p = BrokenTicketPolicy()
    assert p.seal(b"state", obs) is None
    assert p.open(b"anything" * 8, obs) is None
    assert not obs.session_ticket_do_not_call


def test_do_not_call_trips_flag():
    obs = Observations()
    assert DoNotCallTicketPolicy().seal(b"state", obs) is None
    assert obs.session_ticket_do_not_call


def test_bad_ticket_key_length():
    with pytest.raises(ConfigurationError):
        make_ticket_policy(TicketMode.NORMAL, b"short")


def test_session_repr_hides_master_secret():
    s = _session()
    assert (b"\x22" * 4).hex() not in repr(s)
