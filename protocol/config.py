# MIT License © 2025 Motohiro Suzuki
"""
protocol/config.py

Negotiation settings per role and the per-test configuration.

Roles:
- server   : primary server context
- server2  : optional secondary context, reachable through server-name routing
- client

All settings are frozen; they are supplied by the caller and outlive a run.
Case tables (YAML) map 1:1 onto these dataclasses, see load_cases().
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional

import yaml

from policy.servername import ServernameMode
from policy.tickets import DEFAULT_TICKET_KEY, TicketMode
from policy.verify import VerifyMode
from protocol.errors import ConfigurationError
from protocol.versions import ProtocolVersion

DEFAULT_APP_DATA_SIZE = 256
DEFAULT_BUFFER_SIZE = 64 * 1024


class ServerOption(str, Enum):
    NO_TICKET = "NoTicket"
    NO_RESUMPTION = "NoResumption"


@dataclass(frozen=True)
class ServerConfig:
    min_version: ProtocolVersion = ProtocolVersion.TLSv1
    max_version: ProtocolVersion = ProtocolVersion.TLSv1_3
    cipher: str = "aes-gcm"
    servername_callback: ServernameMode = ServernameMode.NONE
    # comma-separated, e.g. "h2,http/1.1"
    npn_protocols: Optional[str] = None
    alpn_protocols: Optional[str] = None
    session_ticket: TicketMode = TicketMode.NORMAL
    ticket_key: bytes = DEFAULT_TICKET_KEY
    options: FrozenSet[ServerOption] = frozenset()
    # 32-byte Ed25519 seed; None -> fresh identity per context
    identity_seed: Optional[bytes] = None


@dataclass(frozen=True)
class ClientConfig:
    min_version: ProtocolVersion = ProtocolVersion.TLSv1
    max_version: ProtocolVersion = ProtocolVersion.TLSv1_3
    cipher: str = "aes-gcm"
    servername: Optional[str] = None
    verify_callback: VerifyMode = VerifyMode.DEFAULT
    npn_protocols: Optional[str] = None
    alpn_protocols: Optional[str] = None
    session_tickets: bool = True


@dataclass(frozen=True)
class NegotiationConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    server2: Optional[ServerConfig] = None
    client: ClientConfig = field(default_factory=ClientConfig)


class HandshakeMode(str, Enum):
    SIMPLE = "Simple"
    RESUME = "Resume"


@dataclass(frozen=True)
class HandshakeTestConfig:
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    mode: HandshakeMode = HandshakeMode.SIMPLE
    # second run of a RESUME test; defaults to the first run's server/client
    resume_negotiation: Optional[NegotiationConfig] = None
    app_data_size: int = DEFAULT_APP_DATA_SIZE
    buffer_size: int = DEFAULT_BUFFER_SIZE
    # None -> sized from buffer_size and the handshake settings
    channel_capacity: Optional[int] = None
    name: str = ""
    audit_log_path: Optional[str] = None

    def resume_config(self) -> NegotiationConfig:
        if self.resume_negotiation is not None:
            return self.resume_negotiation
        return NegotiationConfig(
            server=self.negotiation.server,
            server2=None,
            client=self.negotiation.client,
        )


# =========================
# Case tables (YAML)
# =========================

@dataclass(frozen=True)
class HandshakeCase:
    name: str
    config: HandshakeTestConfig
    expect: Dict[str, Any]


def _enum(cls: type, v: Any) -> Any:
    if isinstance(v, cls):
        return v
    try:
        return cls(v)
    except ValueError:
        pass
    try:
        return cls[str(v)]
    except KeyError:
        raise ConfigurationError(f"unknown {cls.__name__}: {v!r}") from None


def _version(v: Any) -> ProtocolVersion:
    try:
        return ProtocolVersion.parse(v)
    except ValueError as e:
        raise ConfigurationError(str(e)) from None


def _hex(v: Any) -> bytes:
    if isinstance(v, (bytes, bytearray)):
        return bytes(v)
    try:
        return bytes.fromhex(str(v))
    except ValueError:
        raise ConfigurationError(f"not a hex string: {v!r}") from None


def _options(v: Any) -> FrozenSet[ServerOption]:
    if isinstance(v, str):
        v = [v]
    return frozenset(_enum(ServerOption, x) for x in (v or []))


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "min_version": _version,
    "max_version": _version,
    "servername_callback": lambda v: _enum(ServernameMode, v),
    "session_ticket": lambda v: _enum(TicketMode, v),
    "verify_callback": lambda v: _enum(VerifyMode, v),
    "ticket_key": _hex,
    "identity_seed": _hex,
    "options": _options,
    "session_tickets": bool,
    "npn_protocols": str,
    "alpn_protocols": str,
    "servername": str,
    "cipher": str,
}


def _build(cls: type, d: Optional[Dict[str, Any]]) -> Any:
    if d is None:
        return cls()
    if not isinstance(d, dict):
        raise ConfigurationError(f"{cls.__name__}: expected a mapping, got {type(d).__name__}")
    known = {f.name for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for k, v in d.items():
        if k not in known:
            raise ConfigurationError(f"{cls.__name__}: unknown key {k!r}")
        conv = _CONVERTERS.get(k)
        kwargs[k] = conv(v) if (conv is not None and v is not None) else v
    return cls(**kwargs)


def negotiation_from_mapping(
    server: Optional[Dict[str, Any]],
    server2: Optional[Dict[str, Any]],
    client: Optional[Dict[str, Any]],
) -> NegotiationConfig:
    return NegotiationConfig(
        server=_build(ServerConfig, server),
        server2=None if server2 is None else _build(ServerConfig, server2),
        client=_build(ClientConfig, client),
    )


def _int(case: str, d: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    v = d.get(key)
    if v is None:
        return default
    if isinstance(v, bool):
        raise ConfigurationError(f"{case}: {key} must be an integer")
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{case}: {key} must be an integer") from None


def case_from_mapping(d: Dict[str, Any]) -> HandshakeCase:
    name = d.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError("case without name")

    mode = _enum(HandshakeMode, d.get("mode", HandshakeMode.SIMPLE.value))
    negotiation = negotiation_from_mapping(d.get("server"), d.get("server2"), d.get("client"))

    resume: Optional[NegotiationConfig] = None
    if any(k in d for k in ("resume_server", "resume_client")):
        resume = negotiation_from_mapping(
            d.get("resume_server", d.get("server")),
            None,
            d.get("resume_client", d.get("client")),
        )

    app_data_size = _int(name, d, "app_data_size", DEFAULT_APP_DATA_SIZE)
    if app_data_size < 0:
        raise ConfigurationError(f"{name}: app_data_size must be >= 0")
    buffer_size = _int(name, d, "buffer_size", DEFAULT_BUFFER_SIZE)
    if buffer_size <= 0:
        raise ConfigurationError(f"{name}: buffer_size must be > 0")
    channel_capacity = _int(name, d, "channel_capacity", None)
    if channel_capacity is not None and channel_capacity <= 0:
        raise ConfigurationError(f"{name}: channel_capacity must be > 0")

    cfg = HandshakeTestConfig(
        negotiation=negotiation,
        mode=mode,
        resume_negotiation=resume,
        app_data_size=app_data_size,
        buffer_size=buffer_size,
        channel_capacity=channel_capacity,
        name=name,
    )
    return HandshakeCase(name=name, config=cfg, expect=dict(d.get("expect") or {}))


def load_cases(path: "str | Path") -> List[HandshakeCase]:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    raw = data.get("cases", [])
    if not isinstance(raw, list):
        raise ConfigurationError(f"{p}: 'cases' must be a list")
    return [case_from_mapping(c) for c in raw]
