# MIT License © 2025 Motohiro Suzuki
"""
policy/servername.py

Server-name routing.

- "server1"         -> OK, primary context
- "server2"         -> OK, switch to the secondary context
- no name           -> NOACK, primary context
- any other name    -> NOACK/primary (ignore-mismatch)
                       or ALERT_FATAL (reject-mismatch)

Unrecognised names are up to the application (RFC 6066): abort with a fatal
unrecognized_name alert, or continue. Both variants exist so that either
result can be pushed through the turn loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from protocol.errors import ConfigurationError

SERVER1_NAME = "server1"
SERVER2_NAME = "server2"


class ServernameMode(str, Enum):
    NONE = "None"
    IGNORE_MISMATCH = "IgnoreMismatch"
    REJECT_MISMATCH = "RejectMismatch"


class ServernameRole(str, Enum):
    SERVER1 = "server1"
    SERVER2 = "server2"


class ServernameDecision(str, Enum):
    OK = "OK"
    NOACK = "NOACK"
    ALERT_FATAL = "ALERT_FATAL"


@dataclass(frozen=True)
class RoutingResult:
    decision: ServernameDecision
    role: Optional[ServernameRole]

    @property
    def switch_to_secondary(self) -> bool:
        return self.decision == ServernameDecision.OK and self.role == ServernameRole.SERVER2


class ServernameRouter:
    mode: ServernameMode

    def route(self, name: Optional[str]) -> RoutingResult:
        if not name:
            return RoutingResult(ServernameDecision.NOACK, ServernameRole.SERVER1)
        if name == SERVER2_NAME:
            return RoutingResult(ServernameDecision.OK, ServernameRole.SERVER2)
        if name == SERVER1_NAME:
            return RoutingResult(ServernameDecision.OK, ServernameRole.SERVER1)
        return self.on_mismatch(name)

    def on_mismatch(self, name: str) -> RoutingResult:
        raise NotImplementedError


class IgnoreMismatchRouter(ServernameRouter):
    mode = ServernameMode.IGNORE_MISMATCH

    def on_mismatch(self, name: str) -> RoutingResult:
        return RoutingResult(ServernameDecision.NOACK, ServernameRole.SERVER1)


class RejectMismatchRouter(ServernameRouter):
    mode = ServernameMode.REJECT_MISMATCH

    def on_mismatch(self, name: str) -> RoutingResult:
        # no role recorded: the connection is about to be aborted
        return RoutingResult(ServernameDecision.ALERT_FATAL, None)


def make_router(mode: ServernameMode) -> Optional[ServernameRouter]:
    if mode == ServernameMode.NONE:
        return None
    if mode == ServernameMode.IGNORE_MISMATCH:
        return IgnoreMismatchRouter()
    if mode == ServernameMode.REJECT_MISMATCH:
        return RejectMismatchRouter()
    raise ConfigurationError(f"unknown servername mode: {mode}")
