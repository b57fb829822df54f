# MIT License © 2025 Motohiro Suzuki
"""
policy/configurator.py

Turns the frozen per-role settings into per-role policy bundles
(EndpointContext) before a run starts.

Slots (each installed at most once per context):
- router          : server-name routing (server roles)
- alpn_selector   : ServerPreferenceSelector (server roles)
- alpn_offer      : encoded protocol list the client offers
- npn_advertiser  : ServerAdvertiser (server roles)
- npn_selector    : ClientPreferenceSelector (client)
- ticket_policy   : TicketKeyPolicy (server roles)
- verifier        : CertificateVerifier (client)

Secondary server contexts always get the must-not-be-invoked ticket policy:
ticket crypto belongs to the initial context only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional

from crypto import sig
from crypto.aead import get_aead_backend
from policy.alpn import (
    ClientPreferenceSelector,
    ServerAdvertiser,
    ServerPreferenceSelector,
    encode_protocol_list,
    split_protocols,
)
from policy.servername import ServernameMode, ServernameRouter, make_router
from policy.tickets import TicketKeyPolicy, TicketMode, make_ticket_policy
from policy.verify import CertificateVerifier, make_verifier
from protocol.config import ClientConfig, NegotiationConfig, ServerConfig, ServerOption
from protocol.errors import ConfigurationError, ContractViolation
from protocol.session import SessionCache

_SLOTS = (
    "router",
    "alpn_selector",
    "alpn_offer",
    "npn_advertiser",
    "npn_selector",
    "ticket_policy",
    "verifier",
)


@dataclass
class EndpointContext:
    name: str
    config: Any
    identity: Optional[sig.SigKeyPair] = None
    session_cache: SessionCache = field(default_factory=SessionCache)

    router: Optional[ServernameRouter] = None
    alpn_selector: Optional[ServerPreferenceSelector] = None
    alpn_offer: Optional[bytes] = None
    npn_advertiser: Optional[ServerAdvertiser] = None
    npn_selector: Optional[ClientPreferenceSelector] = None
    ticket_policy: Optional[TicketKeyPolicy] = None
    verifier: Optional[CertificateVerifier] = None

    def install(self, slot: str, value: Any) -> None:
        if slot not in _SLOTS:
            raise ContractViolation(f"{self.name}: unknown policy slot {slot!r}")
        if getattr(self, slot) is not None:
            raise ContractViolation(f"{self.name}: {slot} installed twice")
        setattr(self, slot, value)

    @property
    def options(self) -> FrozenSet[ServerOption]:
        return getattr(self.config, "options", frozenset())

    @property
    def cipher(self) -> str:
        return self.config.cipher


@dataclass(frozen=True)
class ConfiguredContexts:
    server: EndpointContext
    server2: Optional[EndpointContext]
    client: EndpointContext


def _check_common(name: str, cfg: Any) -> None:
    if cfg.min_version > cfg.max_version:
        raise ConfigurationError(f"{name}: min_version above max_version")
    try:
        get_aead_backend(cfg.cipher)
    except ValueError as e:
        raise ConfigurationError(f"{name}: {e}") from None


def _server_context(name: str, cfg: ServerConfig, *, secondary: bool) -> EndpointContext:
    _check_common(name, cfg)
    try:
        identity = sig.keypair(cfg.identity_seed)
    except ValueError as e:
        raise ConfigurationError(f"{name}: {e}") from None

    ctx = EndpointContext(name=name, config=cfg, identity=identity)

    if secondary:
        ctx.install("ticket_policy", make_ticket_policy(TicketMode.DO_NOT_CALL))
    else:
        ctx.install("ticket_policy", make_ticket_policy(cfg.session_ticket, cfg.ticket_key))

    if cfg.alpn_protocols is not None:
        ctx.install("alpn_selector", ServerPreferenceSelector(split_protocols(cfg.alpn_protocols)))
    if cfg.npn_protocols is not None:
        ctx.install("npn_advertiser", ServerAdvertiser(split_protocols(cfg.npn_protocols)))
    return ctx


def _client_context(cfg: ClientConfig) -> EndpointContext:
    _check_common("client", cfg)
    ctx = EndpointContext(name="client", config=cfg)
    ctx.install("verifier", make_verifier(cfg.verify_callback))
    if cfg.alpn_protocols is not None:
        ctx.install("alpn_offer", encode_protocol_list(cfg.alpn_protocols))
    if cfg.npn_protocols is not None:
        ctx.install("npn_selector", ClientPreferenceSelector(split_protocols(cfg.npn_protocols)))
    return ctx


def configure_contexts(negotiation: NegotiationConfig, *, allow_servername: bool = True) -> ConfiguredContexts:
    """
    Build the three contexts of one run.

    allow_servername=False drops the secondary server and leaves routing
    uninstalled (resumption runs).
    """
    server = _server_context("server", negotiation.server, secondary=False)

    server2: Optional[EndpointContext] = None
    if allow_servername and negotiation.server2 is not None:
        server2 = _server_context("server2", negotiation.server2, secondary=True)

    mode = negotiation.server.servername_callback
    if allow_servername and mode != ServernameMode.NONE:
        if server2 is None:
            raise ConfigurationError("server-name routing needs a server2 configuration")
        router = make_router(mode)
        server.install("router", router)

    client = _client_context(negotiation.client)
    return ConfiguredContexts(server=server, server2=server2, client=client)
