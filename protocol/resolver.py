# MIT License © 2025 Motohiro Suzuki
"""
protocol/resolver.py

Turns (status of the endpoint that just acted, status of the other endpoint,
who acted) into one global decision.

    last \\ previous | SUCCESS          RETRY       ERROR
    ----------------+--------------------------------------------------
    SUCCESS         | BOTH_DONE        KEEP_GOING  INCONSISTENT
    RETRY           | INCONSISTENT     KEEP_GOING  INCONSISTENT
    ERROR           | <last> failed    KEEP_GOING  <previous> failed

- ERROR after SUCCESS: the other side had finished the phase, so the
  failure belongs to the side that acted last.
- ERROR after RETRY keeps going so the other side gets one turn to observe
  the failure (typically by reading the alert).
- ERROR after ERROR: the side that did not act last failed first. This is a
  tie-break convention kept for compatibility, not something the protocol
  implies.
- RETRY after SUCCESS or ERROR: the acting side waits for input from a peer
  that will never send it.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from protocol.phases import PeerStatus


class Verdict(str, Enum):
    BOTH_DONE = "BOTH_DONE"
    CLIENT_FAILED = "CLIENT_FAILED"
    SERVER_FAILED = "SERVER_FAILED"
    INCONSISTENT = "INCONSISTENT"
    KEEP_GOING = "KEEP_GOING"


# values: verdict when the client acted last, verdict when the server did
_RULES: Dict[Tuple[PeerStatus, PeerStatus], Tuple[Verdict, Verdict]] = {
    (PeerStatus.SUCCESS, PeerStatus.SUCCESS): (Verdict.BOTH_DONE, Verdict.BOTH_DONE),
    (PeerStatus.SUCCESS, PeerStatus.RETRY): (Verdict.KEEP_GOING, Verdict.KEEP_GOING),
    (PeerStatus.SUCCESS, PeerStatus.ERROR): (Verdict.INCONSISTENT, Verdict.INCONSISTENT),
    (PeerStatus.RETRY, PeerStatus.SUCCESS): (Verdict.INCONSISTENT, Verdict.INCONSISTENT),
    (PeerStatus.RETRY, PeerStatus.RETRY): (Verdict.KEEP_GOING, Verdict.KEEP_GOING),
    (PeerStatus.RETRY, PeerStatus.ERROR): (Verdict.INCONSISTENT, Verdict.INCONSISTENT),
    (PeerStatus.ERROR, PeerStatus.SUCCESS): (Verdict.CLIENT_FAILED, Verdict.SERVER_FAILED),
    (PeerStatus.ERROR, PeerStatus.RETRY): (Verdict.KEEP_GOING, Verdict.KEEP_GOING),
    (PeerStatus.ERROR, PeerStatus.ERROR): (Verdict.SERVER_FAILED, Verdict.CLIENT_FAILED),
}

_missing = [(a, b) for a in PeerStatus for b in PeerStatus if (a, b) not in _RULES]
if _missing:
    raise RuntimeError(f"resolver table incomplete: {_missing}")
del _missing


def resolve(last: PeerStatus, previous: PeerStatus, client_spoke_last: bool) -> Verdict:
    when_client, when_server = _RULES[(last, previous)]
    return when_client if client_spoke_last else when_server
