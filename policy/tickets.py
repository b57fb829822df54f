# MIT License © 2025 Motohiro Suzuki
"""
policy/tickets.py

Session-ticket key handling.

Ticket layout (NormalTicketPolicy):
    key_name(16) || nonce(12) || AES-GCM(state, aad=key_name)

Key material is fixed (default: 48 zero bytes = 16-byte name + 32-byte key)
so a ticket sealed by one context opens in any later context configured
with the same material.

Modes:
- NORMAL:      seal/open with the fixed key material
- BROKEN:      always fails (the server then sends an empty ticket)
- DO_NOT_CALL: trips Observations.session_ticket_do_not_call and fails;
               installed on secondary contexts, which must never take part
               in ticket crypto
"""

from __future__ import annotations

import os
from enum import Enum
from typing import TYPE_CHECKING, Optional

from crypto.aead import AEADError, NONCE_LEN, get_aead_backend
from protocol.errors import ConfigurationError

if TYPE_CHECKING:
    from protocol.endpoint import Observations

KEY_NAME_LEN = 16
TICKET_KEY_LEN = KEY_NAME_LEN + 32
DEFAULT_TICKET_KEY = bytes(TICKET_KEY_LEN)


class TicketMode(str, Enum):
    NORMAL = "Normal"
    BROKEN = "Broken"
    DO_NOT_CALL = "DoNotCall"


class TicketKeyPolicy:
    mode: TicketMode

    def seal(self, state: bytes, obs: "Observations") -> Optional[bytes]:
        raise NotImplementedError

    def open(self, ticket: bytes, obs: "Observations") -> Optional[bytes]:
        raise NotImplementedError


class NormalTicketPolicy(TicketKeyPolicy):
    mode = TicketMode.NORMAL

    def __init__(self, ticket_key: bytes = DEFAULT_TICKET_KEY) -> None:
        if len(ticket_key) != TICKET_KEY_LEN:
            raise ConfigurationError(f"ticket key must be {TICKET_KEY_LEN} bytes")
        self._key_name = bytes(ticket_key[:KEY_NAME_LEN])
        self._key = bytes(ticket_key[KEY_NAME_LEN:])
        self._aead = get_aead_backend("aes-gcm")

    def seal(self, state: bytes, obs: "Observations") -> Optional[bytes]:
        nonce = os.urandom(NONCE_LEN)
        ct = self._aead.encrypt(self._key, nonce, bytes(state), self._key_name)
        return self._key_name + nonce + ct

    def open(self, ticket: bytes, obs: "Observations") -> Optional[bytes]:
        t = bytes(ticket)
        if len(t) <= KEY_NAME_LEN + NONCE_LEN:
            return None
        if t[:KEY_NAME_LEN] != self._key_name:
            return None
        nonce = t[KEY_NAME_LEN : KEY_NAME_LEN + NONCE_LEN]
        try:
            return self._aead.decrypt(self._key, nonce, t[KEY_NAME_LEN + NONCE_LEN :], self._key_name)
        except AEADError:
            return None


class BrokenTicketPolicy(TicketKeyPolicy):
    mode = TicketMode.BROKEN

    def seal(self, state: bytes, obs: "Observations") -> Optional[bytes]:
        return None

    def open(self, ticket: bytes, obs: "Observations") -> Optional[bytes]:
        return None


class DoNotCallTicketPolicy(TicketKeyPolicy):
    mode = TicketMode.DO_NOT_CALL

    def seal(self, state: bytes, obs: "Observations") -> Optional[bytes]:
        obs.session_ticket_do_not_call = True
        return None

    def open(self, ticket: bytes, obs: "Observations") -> Optional[bytes]:
        obs.session_ticket_do_not_call = True
        return None


def make_ticket_policy(mode: TicketMode, ticket_key: bytes = DEFAULT_TICKET_KEY) -> TicketKeyPolicy:
    if mode == TicketMode.NORMAL:
        return NormalTicketPolicy(ticket_key)
    if mode == TicketMode.BROKEN:
        return BrokenTicketPolicy()
    if mode == TicketMode.DO_NOT_CALL:
        return DoNotCallTicketPolicy()
    raise ConfigurationError(f"unknown ticket mode: {mode}")
