# MIT License © 2025 Motohiro Suzuki
"""
protocol/outcome.py

Immutable record of one run, read back from both endpoints after the turn
loop terminated.

Alert fields follow the side that originated the alert:
- server_alert_sent      : what the server sent
- server_alert_received  : the server's alert as the client received it
(and symmetrically for the client fields)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from policy.servername import ServernameRole
from protocol.failure import AlertDescription
from protocol.session import SessionHandle
from protocol.versions import ProtocolVersion


class TestResult(str, Enum):
    SUCCESS = "Success"
    CLIENT_FAIL = "ClientFail"
    SERVER_FAIL = "ServerFail"
    INTERNAL_ERROR = "InternalError"
    FIRST_HANDSHAKE_FAILED = "FirstHandshakeFailed"

    # not a pytest test class
    __test__ = False


@dataclass(frozen=True)
class HandshakeOutcome:
    result: TestResult
    server_alert_sent: Optional[AlertDescription] = None
    server_alert_received: Optional[AlertDescription] = None
    client_alert_sent: Optional[AlertDescription] = None
    client_alert_received: Optional[AlertDescription] = None
    server_protocol: Optional[ProtocolVersion] = None
    client_protocol: Optional[ProtocolVersion] = None
    servername: Optional[ServernameRole] = None
    session_ticket: bool = False
    session_ticket_do_not_call: bool = False
    client_npn_negotiated: Optional[str] = None
    server_npn_negotiated: Optional[str] = None
    client_alpn_negotiated: Optional[str] = None
    server_alpn_negotiated: Optional[str] = None
    client_resumed: bool = False
    server_resumed: bool = False
    session_out: Optional[SessionHandle] = None

    @property
    def ok(self) -> bool:
        return self.result == TestResult.SUCCESS

    def with_result(self, result: TestResult) -> "HandshakeOutcome":
        return replace(self, result=result)

    def to_dict(self) -> Dict[str, Any]:
        """Flat, JSON-friendly view. The session handle is left out."""

        def alert(a: Optional[AlertDescription]) -> Optional[str]:
            return None if a is None else a.name

        def version(v: Optional[ProtocolVersion]) -> Optional[str]:
            return None if v is None else v.label

        return {
            "result": self.result.value,
            "server_alert_sent": alert(self.server_alert_sent),
            "server_alert_received": alert(self.server_alert_received),
            "client_alert_sent": alert(self.client_alert_sent),
            "client_alert_received": alert(self.client_alert_received),
            "server_protocol": version(self.server_protocol),
            "client_protocol": version(self.client_protocol),
            "servername": None if self.servername is None else self.servername.value,
            "session_ticket": self.session_ticket,
            "session_ticket_do_not_call": self.session_ticket_do_not_call,
            "client_npn_negotiated": self.client_npn_negotiated,
            "server_npn_negotiated": self.server_npn_negotiated,
            "client_alpn_negotiated": self.client_alpn_negotiated,
            "server_alpn_negotiated": self.server_alpn_negotiated,
            "client_resumed": self.client_resumed,
            "server_resumed": self.server_resumed,
        }


def aggregate(result: TestResult, server: Any, client: Any) -> HandshakeOutcome:
    """
    server / client: ConnectionEndpoint. Reads the engines' negotiated state
    and each endpoint's own Observations.
    """
    s_obs = server.observations
    c_obs = client.observations
    session = client.engine.session()
    return HandshakeOutcome(
        result=result,
        server_alert_sent=s_obs.alert_sent,
        server_alert_received=c_obs.alert_received,
        client_alert_sent=c_obs.alert_sent,
        client_alert_received=s_obs.alert_received,
        server_protocol=server.engine.version(),
        client_protocol=client.engine.version(),
        servername=s_obs.servername,
        session_ticket=session is not None and session.has_ticket,
        session_ticket_do_not_call=s_obs.session_ticket_do_not_call,
        client_npn_negotiated=client.engine.npn_negotiated(),
        server_npn_negotiated=server.engine.npn_negotiated(),
        client_alpn_negotiated=client.engine.alpn_selected(),
        server_alpn_negotiated=server.engine.alpn_selected(),
        client_resumed=client.engine.session_reused(),
        server_resumed=server.engine.session_reused(),
        session_out=session,
    )


def mismatches(outcome: HandshakeOutcome, expect: Dict[str, Any]) -> List[str]:
    """
    Compare against an expectation mapping (case files). Values are compared
    against to_dict(); alert names and version labels are accepted as written.
    """
    actual = outcome.to_dict()
    out: List[str] = []
    for key, want in expect.items():
        if key not in actual:
            out.append(f"unknown outcome field {key!r}")
            continue
        got = actual[key]
        if got != want:
            out.append(f"{key}: expected {want!r}, got {got!r}")
    return out
