# MIT License © 2025 Motohiro Suzuki
import pytest

from policy.alpn import (
    ClientPreferenceSelector,
    SelectionStatus,
    ServerPreferenceSelector,
    check_protocol_name,
    decode_protocol_list,
    encode_protocol_list,
    split_protocols,
)
from protocol.errors import ConfigurationError, ContractViolation
from protocol.failure import FailureCode


def test_protocol_list_wire_format():
    wire = encode_protocol_list("h2,http/1.1")
    assert wire == b"\x02h2\x08http/1.1"
    assert decode_protocol_list(wire) == ["h2", "http/1.1"]


def test_empty_entry_rejected():
    with pytest.raises(ConfigurationError):
        encode_protocol_list("foo,,bar")
    with pytest.raises(ConfigurationError):
        split_protocols("")


def test_entry_too_long_rejected():
    with pytest.raises(ConfigurationError):
        encode_protocol_list("a" * 256)


def test_malformed_wire_list():
    with pytest.raises(ValueError):
        decode_protocol_list(b"\x05abc")
    with pytest.raises(ValueError):
        decode_protocol_list(b"\x00")


def test_client_preference_picks_first_supported():
    sel = ClientPreferenceSelector(["a", "b"]).select(["b", "c"])
    assert sel.protocol == "b"
    assert sel.status == SelectionStatus.NEGOTIATED


def test_client_preference_falls_back_without_overlap():
    sel = ClientPreferenceSelector(["a", "b"]).select(["x", "y"])
    assert sel.protocol == "a"
    assert sel.status == SelectionStatus.NO_OVERLAP


def test_server_preference_wins():
    res = ServerPreferenceSelector(["h2", "http/1.1"]).select(["http/1.1", "h2"])
    assert res.ok
    assert res.unwrap() == "h2"


def test_server_preference_no_overlap_is_fatal():
    res = ServerPreferenceSelector(["h2"]).select(["spdy/3"])
    assert not res.ok
    f = res.unwrap_err()
    assert f.code == FailureCode.ERR_NO_APPLICATION_PROTOCOL
    assert f.fatal
    assert f.redacted().detail is None


def test_nul_in_negotiated_name():
    with pytest.raises(ContractViolation):
        check_protocol_name("h2\x00")
