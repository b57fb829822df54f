# MIT License © 2025 Motohiro Suzuki
"""
protocol/sim_engine.py

Deterministic in-process secure-transport engine (one per endpoint).

Flight structure:

    client                                server
    ClientHello            ------->
                                          (server-name routing, version,
                                           cipher, resumption, ALPN, NPN)
                           <-------       ServerHello
                           <-------       NewSessionTicket   (if expected)
                           <-------       Finished
    NextProtocol           ------->       (if NPN was advertised)
    Finished               ------->

Key schedule:
- full handshake : X25519 shared secret -> session master
                   (HKDF over both randoms); connection secret = master
- resumption     : connection secret = HKDF(session master, both randoms)
- Finished       : HMAC(derive(conn, label), sha256(transcript))
- app records    : AES-GCM (or null) with per-direction key/iv, seq nonce

Protocol faults raise Alert internally; the engine sends the fatal alert,
records it in its own Observations and reports ERROR. close_notify is
exchanged by shutdown() and never recorded as an alert.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import replace
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from crypto import sig
from crypto.aead import AEADError, NONCE_LEN, get_aead_backend, seq_nonce
from crypto.hkdf import derive, finished_mac, mac_equal
from crypto.kex import KEY_SHARE_LEN, KeyShare
from policy.alpn import check_protocol_name, decode_protocol_list
from policy.configurator import EndpointContext
from policy.servername import ServernameDecision
from protocol.config import ServerOption
from protocol.endpoint import Observations, PeerRole
from protocol.engine import IOResult, ProtocolEngine
from protocol.errors import EngineError, check
from protocol.failure import (
    Alert,
    AlertDescription,
    AlertLevel,
    AlertPayload,
    Failure,
    FailureCode,
    FailureLayer,
    FailurePhase,
)
from protocol.hs_tlv import (
    HS_CLIENT_HELLO,
    HS_FINISHED,
    HS_NEW_SESSION_TICKET,
    HS_NEXT_PROTOCOL,
    HS_SERVER_HELLO,
    RANDOM_LEN,
    ClientHello,
    Finished,
    NewSessionTicket,
    NextProtocol,
    ServerHello,
    message_type,
)
from protocol.session import (
    SESSION_ID_LEN,
    SessionHandle,
    decode_session_state,
    encode_session_state,
)
from protocol.versions import ProtocolVersion, negotiate_version
from transport.channel import ChannelEnd, ReadStatus, WriteStatus
from transport.record import CT_ALERT, CT_APP_DATA, CT_HANDSHAKE, MAX_FRAGMENT, RECORD_OVERHEAD, Record

_READ_CHUNK = 16 * 1024
_AEAD_TAG_LEN = 16


def app_data_wire_size(n: int) -> int:
    """Channel bytes taken by one application write of n plaintext bytes."""
    records = -(-n // MAX_FRAGMENT)
    return n + records * (RECORD_OVERHEAD + _AEAD_TAG_LEN)


class HandshakeState(str, Enum):
    CLIENT_START = "CLIENT_START"
    CLIENT_EXPECT_SERVER_HELLO = "CLIENT_EXPECT_SERVER_HELLO"
    CLIENT_EXPECT_FINISHED = "CLIENT_EXPECT_FINISHED"
    SERVER_EXPECT_CLIENT_HELLO = "SERVER_EXPECT_CLIENT_HELLO"
    SERVER_EXPECT_FINISHED = "SERVER_EXPECT_FINISHED"
    CONNECTED = "CONNECTED"
    FAILED = "FAILED"


class SimEngine(ProtocolEngine):
    def __init__(
        self,
        role: PeerRole,
        context: EndpointContext,
        channel: ChannelEnd,
        observations: Observations,
        *,
        secondary: Optional[EndpointContext] = None,
        session_in: Optional[SessionHandle] = None,
    ) -> None:
        self.role = role
        # ticket crypto and the session cache always stay on the initial context
        self._initial = context
        self._active = context
        self._secondary = secondary
        self._chan = channel
        self._obs = observations
        self._session_in = session_in if role == PeerRole.CLIENT else None

        self._state = (
            HandshakeState.CLIENT_START if role == PeerRole.CLIENT else HandshakeState.SERVER_EXPECT_CLIENT_HELLO
        )
        self._rbuf = bytearray()
        self._transcript = hashlib.sha256()

        self._client_random = b""
        self._server_random = b""
        self._key_share: Optional[KeyShare] = None
        self._conn_secret = b""

        self._version: Optional[ProtocolVersion] = None
        self._resumed = False
        self._alpn: Optional[str] = None
        self._npn: Optional[str] = None
        self._npn_expected = False
        self._ticket_expected = False
        self._sni_ack = False
        self._session: Optional[SessionHandle] = None

        self._aead = get_aead_backend(context.cipher)
        self._write_key = b""
        self._write_iv = b""
        self._read_key = b""
        self._read_iv = b""
        self._write_seq = 0
        self._read_seq = 0
        self._plain = bytearray()
        self._close_sent = False
        self._close_received = False

        self._handlers: Dict[Tuple[HandshakeState, int], Callable[[bytes], None]] = {
            (HandshakeState.CLIENT_EXPECT_SERVER_HELLO, HS_SERVER_HELLO): self._client_handle_server_hello,
            (HandshakeState.CLIENT_EXPECT_FINISHED, HS_NEW_SESSION_TICKET): self._client_handle_new_session_ticket,
            (HandshakeState.CLIENT_EXPECT_FINISHED, HS_FINISHED): self._client_handle_finished,
            (HandshakeState.SERVER_EXPECT_CLIENT_HELLO, HS_CLIENT_HELLO): self._server_handle_client_hello,
            (HandshakeState.SERVER_EXPECT_FINISHED, HS_NEXT_PROTOCOL): self._server_handle_next_protocol,
            (HandshakeState.SERVER_EXPECT_FINISHED, HS_FINISHED): self._server_handle_finished,
        }

    # =========================
    # ProtocolEngine
    # =========================

    def do_handshake(self) -> IOResult:
        if self._state == HandshakeState.CONNECTED:
            return IOResult.OK
        if self._state == HandshakeState.FAILED:
            return IOResult.ERROR
        try:
            if self._state == HandshakeState.CLIENT_START:
                self._send_client_hello()
                self._state = HandshakeState.CLIENT_EXPECT_SERVER_HELLO
                return IOResult.WANT_READ
            return self._drive_handshake()
        except Alert as a:
            return self._abort(a.failure)

    def read(self, max_bytes: int) -> Tuple[IOResult, bytes]:
        if self._state == HandshakeState.FAILED:
            return IOResult.ERROR, b""
        if self._state != HandshakeState.CONNECTED:
            raise EngineError("read before the handshake completed")
        if not self._plain and not self._close_received:
            try:
                self._fill_plaintext()
            except Alert as a:
                self._abort(a.failure)
                return IOResult.ERROR, b""
        if self._plain:
            n = max(0, int(max_bytes))
            out = bytes(self._plain[:n])
            del self._plain[:n]
            return IOResult.OK, out
        if self._state == HandshakeState.FAILED:
            return IOResult.ERROR, b""
        if self._close_received:
            return IOResult.ZERO_RETURN, b""
        return IOResult.WANT_READ, b""

    def write(self, data: bytes) -> Tuple[IOResult, int]:
        if self._state == HandshakeState.FAILED:
            return IOResult.ERROR, 0
        if self._state != HandshakeState.CONNECTED:
            raise EngineError("write before the handshake completed")
        b = bytes(data)
        if self._close_sent:
            return IOResult.ERROR, 0
        if not b:
            return IOResult.OK, 0

        # one record per fragment, all of them in a single channel write;
        # sequence numbers only advance once the channel took everything
        wire = bytearray()
        seq = self._write_seq
        for off in range(0, len(b), MAX_FRAGMENT):
            nonce = seq_nonce(self._write_iv, seq)
            ct = self._aead.encrypt(self._write_key, nonce, b[off:off + MAX_FRAGMENT], bytes([CT_APP_DATA]))
            wire += Record(CT_APP_DATA, self._record_version(), ct).to_bytes()
            seq += 1
        st = self._chan.write(bytes(wire))
        if st == WriteStatus.WROTE_ALL:
            self._write_seq = seq
            return IOResult.OK, len(b)
        if st == WriteStatus.WOULD_BLOCK:
            return IOResult.WANT_WRITE, 0
        self._abort(self._fault(FailureCode.ERR_TRANSPORT, "channel closed", layer=FailureLayer.TRANSPORT).failure)
        return IOResult.ERROR, 0

    def shutdown(self) -> IOResult:
        if self._state == HandshakeState.FAILED:
            return IOResult.ERROR
        if self._state != HandshakeState.CONNECTED:
            raise EngineError("shutdown before the handshake completed")
        try:
            if not self._close_sent:
                self._write_alert(AlertLevel.WARNING, AlertDescription.close_notify)
                self._close_sent = True
            while not self._close_received:
                rec = self._next_record()
                if rec is None:
                    return IOResult.WANT_READ
                if rec.content_type == CT_APP_DATA:
                    # discarded during closure
                    self._decrypt(rec)
                    self._plain.clear()
                    continue
                if rec.content_type == CT_ALERT:
                    alert = self._on_peer_alert(rec.payload)
                    if not alert.is_close_notify:
                        return self._peer_aborted(alert)
                    continue
                raise self._fault(FailureCode.ERR_UNEXPECTED_MESSAGE, "handshake message during closure")
        except Alert as a:
            return self._abort(a.failure)
        return IOResult.OK

    def version(self) -> Optional[ProtocolVersion]:
        return self._version

    def session_reused(self) -> bool:
        return self._resumed

    def alpn_selected(self) -> Optional[str]:
        return self._alpn

    def npn_negotiated(self) -> Optional[str]:
        return self._npn

    def session(self) -> Optional[SessionHandle]:
        if self._state != HandshakeState.CONNECTED:
            return None
        return self._session

    def close(self) -> None:
        self._chan.release()

    # =========================
    # Handshake driver
    # =========================

    def _drive_handshake(self) -> IOResult:
        while self._state != HandshakeState.CONNECTED:
            rec = self._next_record()
            if rec is None:
                return IOResult.WANT_READ
            if rec.content_type == CT_ALERT:
                return self._peer_aborted(self._on_peer_alert(rec.payload))
            if rec.content_type != CT_HANDSHAKE:
                raise self._fault(FailureCode.ERR_UNEXPECTED_MESSAGE, "application data during handshake")
            self._handle(rec.payload)
        return IOResult.OK

    def _handle(self, payload: bytes) -> None:
        try:
            mt = message_type(payload)
        except ValueError as e:
            raise self._fault(FailureCode.ERR_PARSE, str(e)) from None
        handler = self._handlers.get((self._state, mt))
        if handler is None:
            raise self._fault(
                FailureCode.ERR_UNEXPECTED_MESSAGE,
                f"message type {mt} in state {self._state.value}",
            )
        handler(payload)

    # ---- client ----

    def _send_client_hello(self) -> None:
        cfg = self._initial.config
        offer = self._session_in
        ticket: Optional[bytes] = None
        if cfg.session_tickets:
            ticket = offer.ticket if offer is not None else b""

        self._client_random = os.urandom(RANDOM_LEN)
        self._key_share = KeyShare()
        ch = ClientHello(
            min_version=int(cfg.min_version),
            max_version=int(cfg.max_version),
            random=self._client_random,
            cipher=cfg.cipher,
            key_share=self._key_share.public_bytes(),
            session_id=offer.session_id if offer is not None else b"",
            server_name=cfg.servername,
            alpn=self._initial.alpn_offer,
            npn=self._initial.npn_selector is not None,
            ticket=ticket,
        )
        self._send_handshake(ch.to_bytes())

    def _client_handle_server_hello(self, payload: bytes) -> None:
        sh = self._parse(ServerHello, payload)
        self._transcript.update(payload)
        cfg = self._initial.config

        version = self._parse_version(sh.version)
        if not (cfg.min_version <= version <= cfg.max_version):
            raise self._fault(FailureCode.ERR_VERSION_UNSUPPORTED, f"server chose {version.label}")
        if sh.cipher != cfg.cipher:
            raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, f"server chose cipher {sh.cipher!r}")
        if len(sh.random) != RANDOM_LEN:
            raise self._fault(FailureCode.ERR_PARSE, "bad server random")
        self._version = version
        self._server_random = sh.random

        if sh.sni_ack and cfg.servername is None:
            raise self._fault(FailureCode.ERR_UNSUPPORTED_EXTENSION, "unsolicited server name acknowledgement")

        if sh.alpn is not None:
            if self._initial.alpn_offer is None:
                raise self._fault(FailureCode.ERR_UNSUPPORTED_EXTENSION, "unsolicited ALPN selection")
            if sh.alpn not in decode_protocol_list(self._initial.alpn_offer):
                raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, f"server selected unoffered protocol {sh.alpn!r}")
            self._alpn = check_protocol_name(sh.alpn)

        if sh.npn is not None:
            if self._initial.npn_selector is None:
                raise self._fault(FailureCode.ERR_UNSUPPORTED_EXTENSION, "unsolicited next-protocol advertisement")
            advertised = self._decode_list(sh.npn)
            self._npn = check_protocol_name(self._initial.npn_selector.select(advertised).protocol)

        if sh.ticket_expected and not cfg.session_tickets:
            raise self._fault(FailureCode.ERR_UNSUPPORTED_EXTENSION, "unsolicited session ticket")
        self._ticket_expected = sh.ticket_expected

        offer = self._session_in
        if sh.resumed:
            if offer is None or sh.session_id != offer.session_id:
                raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, "server resumed a session that was not offered")
            if offer.version != version or offer.cipher != sh.cipher:
                raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, "resumed session parameters changed")
            self._resumed = True
            master = offer.master_secret
            self._conn_secret = derive(master, b"resumption", self._randoms())
            ticket = offer.ticket
        else:
            if sh.key_share is None:
                raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, "missing server key share")
            verdict = self._initial.verifier.verify(
                sh.cert or b"",
                sh.signed_bytes(self._client_random),
                sh.signature or b"",
            )
            if not verdict.ok:
                raise Alert(verdict.unwrap_err())
            try:
                shared = self._key_share.exchange(sh.key_share)
            except ValueError as e:
                raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, str(e)) from None
            master = derive(shared, b"master", self._randoms())
            self._conn_secret = master
            ticket = b""

        self._session = SessionHandle(
            session_id=sh.session_id,
            master_secret=master,
            version=version,
            cipher=sh.cipher,
            alpn=self._alpn,
            ticket=ticket,
        )
        self._state = HandshakeState.CLIENT_EXPECT_FINISHED

    def _client_handle_new_session_ticket(self, payload: bytes) -> None:
        if not self._ticket_expected:
            raise self._fault(FailureCode.ERR_UNEXPECTED_MESSAGE, "session ticket was not announced")
        nst = self._parse(NewSessionTicket, payload)
        self._transcript.update(payload)
        self._session = self._session.with_ticket(nst.ticket)
        self._ticket_expected = False

    def _client_handle_finished(self, payload: bytes) -> None:
        fin = self._parse(Finished, payload)
        if not mac_equal(fin.verify_data, self._finished_data(b"server finished")):
            raise self._fault(FailureCode.ERR_FINISHED_MISMATCH, "server Finished does not verify", layer=FailureLayer.CRYPTO)
        self._transcript.update(payload)

        if self._npn is not None:
            self._send_handshake(NextProtocol(protocol=self._npn).to_bytes())
        self._send_finished(b"client finished")
        self._install_keys()
        self._state = HandshakeState.CONNECTED

    # ---- server ----

    def _server_handle_client_hello(self, payload: bytes) -> None:
        ch = self._parse(ClientHello, payload)
        self._transcript.update(payload)
        self._client_random = ch.random

        self._route_servername(ch.server_name)
        active = self._active
        cfg = active.config

        version = negotiate_version(
            self._parse_version(ch.min_version),
            self._parse_version(ch.max_version),
            cfg.min_version,
            cfg.max_version,
        )
        if version is None:
            raise self._fault(FailureCode.ERR_VERSION_UNSUPPORTED, "no protocol version in common")
        self._version = version
        if ch.cipher != active.cipher:
            raise self._fault(FailureCode.ERR_NO_SHARED_CIPHER, f"client offered {ch.cipher!r}")
        if len(ch.key_share) != KEY_SHARE_LEN:
            raise self._fault(FailureCode.ERR_ILLEGAL_PARAMETER, "bad client key share")

        tickets_in_use = ch.ticket is not None and ServerOption.NO_TICKET not in active.options
        resumable = self._find_resumable(ch, tickets_in_use)

        self._alpn = self._server_select_alpn(ch)
        npn_wire: Optional[bytes] = None
        # next-protocol negotiation does not exist in TLSv1.3
        if ch.npn and active.npn_advertiser is not None and version < ProtocolVersion.TLSv1_3:
            npn_wire = active.npn_advertiser.advertise()
            self._npn_expected = True

        self._server_random = os.urandom(RANDOM_LEN)
        sh = ServerHello(
            version=int(version),
            random=self._server_random,
            cipher=active.cipher,
            session_id=b"",
            sni_ack=self._sni_ack,
            alpn=self._alpn,
            npn=npn_wire,
            ticket_expected=tickets_in_use,
        )
        if resumable is not None:
            self._resumed = True
            master = resumable.master_secret
            session_id = resumable.session_id
            self._conn_secret = derive(master, b"resumption", self._randoms())
            sh = replace(sh, session_id=session_id, resumed=True)
        else:
            ks = KeyShare()
            master = derive(ks.exchange(ch.key_share), b"master", self._randoms())
            session_id = os.urandom(SESSION_ID_LEN)
            self._conn_secret = master
            sh = replace(sh, session_id=session_id, key_share=ks.public_bytes())
            sh = replace(
                sh,
                cert=active.identity.public_key,
                signature=sig.sign(active.identity.secret_key, sh.signed_bytes(ch.random)),
            )

        self._session = SessionHandle(
            session_id=session_id,
            master_secret=master,
            version=version,
            cipher=active.cipher,
            alpn=self._alpn,
        )
        self._send_handshake(sh.to_bytes())
        if tickets_in_use:
            self._send_new_session_ticket()
        self._send_finished(b"server finished")
        self._state = HandshakeState.SERVER_EXPECT_FINISHED

    def _route_servername(self, name: Optional[str]) -> None:
        router = self._initial.router
        if router is None:
            return
        routing = router.route(name)
        if routing.decision == ServernameDecision.ALERT_FATAL:
            raise self._fault(
                FailureCode.ERR_SERVERNAME_REJECTED,
                f"unrecognised server name {name!r}",
                layer=FailureLayer.POLICY,
            )
        self._obs.servername = routing.role
        self._sni_ack = routing.decision == ServernameDecision.OK
        if routing.switch_to_secondary:
            check(self._secondary is not None, "server-name routing without a secondary context")
            # option flags come from the secondary context from here on
            self._active = self._secondary

    def _find_resumable(self, ch: ClientHello, tickets_in_use: bool) -> Optional[SessionHandle]:
        if ServerOption.NO_RESUMPTION in self._active.options:
            return None
        candidate: Optional[SessionHandle] = None
        if tickets_in_use:
            if ch.ticket:
                state = self._initial.ticket_policy.open(ch.ticket, self._obs)
                if state is not None:
                    try:
                        candidate = decode_session_state(state)
                    except ValueError:
                        candidate = None
        elif ch.session_id:
            candidate = self._initial.session_cache.get(ch.session_id)

        if candidate is None:
            return None
        if candidate.version != self._version or candidate.cipher != self._active.cipher:
            return None
        return candidate

    def _server_select_alpn(self, ch: ClientHello) -> Optional[str]:
        selector = self._active.alpn_selector
        if ch.alpn is None or selector is None:
            return None
        res = selector.select(self._decode_list(ch.alpn))
        if not res.ok:
            raise Alert(res.unwrap_err())
        return check_protocol_name(res.unwrap())

    def _send_new_session_ticket(self) -> None:
        sealed = self._initial.ticket_policy.seal(encode_session_state(self._session), self._obs)
        # a failed seal still completes the handshake, with an empty ticket
        self._send_handshake(NewSessionTicket(ticket=sealed or b"").to_bytes())

    def _server_handle_next_protocol(self, payload: bytes) -> None:
        if not self._npn_expected or self._npn is not None:
            raise self._fault(FailureCode.ERR_UNEXPECTED_MESSAGE, "next protocol was not advertised")
        np = self._parse(NextProtocol, payload)
        self._transcript.update(payload)
        self._npn = check_protocol_name(np.protocol)

    def _server_handle_finished(self, payload: bytes) -> None:
        fin = self._parse(Finished, payload)
        if not mac_equal(fin.verify_data, self._finished_data(b"client finished")):
            raise self._fault(FailureCode.ERR_FINISHED_MISMATCH, "client Finished does not verify", layer=FailureLayer.CRYPTO)
        self._transcript.update(payload)
        self._install_keys()
        self._initial.session_cache.add(self._session)
        self._state = HandshakeState.CONNECTED

    # =========================
    # Records
    # =========================

    def _record_version(self) -> int:
        return int(self._version if self._version is not None else ProtocolVersion.TLSv1)

    def _pull(self) -> None:
        while True:
            r = self._chan.read(_READ_CHUNK)
            if r.status == ReadStatus.WOULD_BLOCK or (r.status == ReadStatus.COUNT and r.count == 0):
                return
            if r.status == ReadStatus.FATAL:
                raise self._fault(FailureCode.ERR_TRANSPORT, "channel closed", layer=FailureLayer.TRANSPORT)
            self._rbuf += r.data

    def _next_record(self) -> Optional[Record]:
        self._pull()
        try:
            return Record.pop_from(self._rbuf)
        except ValueError as e:
            raise self._fault(FailureCode.ERR_PARSE, str(e)) from None

    def _send_handshake(self, blob: bytes) -> None:
        self._transcript.update(blob)
        st = self._chan.write(Record(CT_HANDSHAKE, self._record_version(), blob).to_bytes())
        if st != WriteStatus.WROTE_ALL:
            raise self._fault(FailureCode.ERR_TRANSPORT, f"handshake write: {st.value}", layer=FailureLayer.TRANSPORT)

    def _write_alert(self, level: AlertLevel, description: AlertDescription) -> None:
        payload = AlertPayload(level=level, description=description).encode()
        st = self._chan.write(Record(CT_ALERT, self._record_version(), payload).to_bytes())
        if st != WriteStatus.WROTE_ALL:
            raise self._fault(FailureCode.ERR_TRANSPORT, f"alert write: {st.value}", layer=FailureLayer.TRANSPORT)
        self._obs.on_alert_sent(description)

    def _on_peer_alert(self, payload: bytes) -> AlertPayload:
        try:
            alert = AlertPayload.decode(payload)
        except ValueError as e:
            raise self._fault(FailureCode.ERR_PARSE, str(e)) from None
        self._obs.on_alert_received(alert.description)
        if alert.is_close_notify:
            self._close_received = True
        return alert

    def _fill_plaintext(self) -> None:
        while not self._plain:
            rec = self._next_record()
            if rec is None:
                return
            if rec.content_type == CT_APP_DATA:
                self._plain += self._decrypt(rec)
            elif rec.content_type == CT_ALERT:
                alert = self._on_peer_alert(rec.payload)
                if not alert.is_close_notify:
                    self._peer_aborted(alert)
                return
            else:
                raise self._fault(FailureCode.ERR_UNEXPECTED_MESSAGE, "handshake message after completion")

    def _decrypt(self, rec: Record) -> bytes:
        nonce = seq_nonce(self._read_iv, self._read_seq)
        try:
            pt = self._aead.decrypt(self._read_key, nonce, rec.payload, bytes([CT_APP_DATA]))
        except AEADError as e:
            raise self._fault(FailureCode.ERR_BAD_RECORD, str(e), layer=FailureLayer.CRYPTO) from None
        self._read_seq += 1
        return pt

    # =========================
    # Keys / transcript
    # =========================

    def _randoms(self) -> bytes:
        return self._client_random + self._server_random

    def _finished_data(self, label: bytes) -> bytes:
        return finished_mac(derive(self._conn_secret, label), self._transcript.copy().digest())

    def _send_finished(self, label: bytes) -> None:
        self._send_handshake(Finished(verify_data=self._finished_data(label)).to_bytes())

    def _install_keys(self) -> None:
        kl = self._aead.key_len
        c_key = derive(self._conn_secret, b"client write key", length=kl)
        c_iv = derive(self._conn_secret, b"client write iv", length=NONCE_LEN)
        s_key = derive(self._conn_secret, b"server write key", length=kl)
        s_iv = derive(self._conn_secret, b"server write iv", length=NONCE_LEN)
        if self.role == PeerRole.CLIENT:
            self._write_key, self._write_iv, self._read_key, self._read_iv = c_key, c_iv, s_key, s_iv
        else:
            self._write_key, self._write_iv, self._read_key, self._read_iv = s_key, s_iv, c_key, c_iv

    # =========================
    # Failure paths
    # =========================

    def _phase(self) -> FailurePhase:
        if self._close_sent:
            return FailurePhase.CLOSE
        if self._state == HandshakeState.CONNECTED:
            return FailurePhase.DATA
        return FailurePhase.HANDSHAKE

    def _fault(self, code: FailureCode, detail: str, *, layer: FailureLayer = FailureLayer.PROTOCOL) -> Alert:
        return Alert(Failure(layer=layer, phase=self._phase(), code=code, fatal=True, detail=detail))

    def _abort(self, failure: Failure) -> IOResult:
        self._obs.failure = failure
        self._state = HandshakeState.FAILED
        if failure.code != FailureCode.ERR_TRANSPORT:
            desc = AlertDescription.from_failure_code(failure.code)
            payload = AlertPayload(level=AlertLevel.FATAL, description=desc).encode()
            st = self._chan.write(Record(CT_ALERT, self._record_version(), payload).to_bytes())
            if st == WriteStatus.WROTE_ALL:
                self._obs.on_alert_sent(desc)
        return IOResult.ERROR

    def _peer_aborted(self, alert: AlertPayload) -> IOResult:
        self._obs.failure = Failure(
            layer=FailureLayer.PROTOCOL,
            phase=self._phase(),
            code=FailureCode.ERR_PEER_ALERT,
            fatal=True,
            detail=f"peer sent alert {alert.description}",
        )
        self._state = HandshakeState.FAILED
        return IOResult.ERROR

    # ---- parsing helpers ----

    def _parse(self, cls, payload: bytes):
        try:
            return cls.parse(payload)
        except ValueError as e:
            raise self._fault(FailureCode.ERR_PARSE, f"bad {cls.__name__}: {e}") from None

    def _parse_version(self, v: int) -> ProtocolVersion:
        try:
            return ProtocolVersion(v)
        except ValueError:
            raise self._fault(FailureCode.ERR_VERSION_UNSUPPORTED, f"unknown protocol version 0x{v:04x}") from None

    def _decode_list(self, wire: bytes):
        try:
            return decode_protocol_list(wire)
        except ValueError as e:
            raise self._fault(FailureCode.ERR_PARSE, f"bad protocol list: {e}") from None
