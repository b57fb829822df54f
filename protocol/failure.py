# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional


class FailureLayer(str, Enum):
    PROTOCOL = "protocol"
    CRYPTO = "crypto"
    TRANSPORT = "transport"
    POLICY = "policy"


class FailurePhase(str, Enum):
    HANDSHAKE = "handshake"
    DATA = "data"
    CLOSE = "close"


class FailureCode(str, Enum):
    ERR_PARSE = "ERR_PARSE"
    ERR_UNEXPECTED_MESSAGE = "ERR_UNEXPECTED_MESSAGE"
    ERR_VERSION_UNSUPPORTED = "ERR_VERSION_UNSUPPORTED"
    ERR_AUTH_FAILED = "ERR_AUTH_FAILED"
    ERR_BAD_SIGNATURE = "ERR_BAD_SIGNATURE"
    ERR_FINISHED_MISMATCH = "ERR_FINISHED_MISMATCH"
    ERR_BAD_RECORD = "ERR_BAD_RECORD"
    ERR_SERVERNAME_REJECTED = "ERR_SERVERNAME_REJECTED"
    ERR_NO_APPLICATION_PROTOCOL = "ERR_NO_APPLICATION_PROTOCOL"
    ERR_UNSUPPORTED_EXTENSION = "ERR_UNSUPPORTED_EXTENSION"
    ERR_ILLEGAL_PARAMETER = "ERR_ILLEGAL_PARAMETER"
    ERR_NO_SHARED_CIPHER = "ERR_NO_SHARED_CIPHER"
    ERR_TRANSPORT = "ERR_TRANSPORT"
    ERR_INTERNAL = "ERR_INTERNAL"

    # the peer aborted first
    ERR_PEER_ALERT = "ERR_PEER_ALERT"


@dataclass(frozen=True)
class Failure:
    """
    Unified error carrier.
    detail is LOCAL-ONLY (never put on the wire).
    """
    layer: FailureLayer
    phase: FailurePhase
    code: FailureCode
    fatal: bool
    detail: Optional[str] = None

    def redacted(self) -> "Failure":
        return Failure(
            layer=self.layer,
            phase=self.phase,
            code=self.code,
            fatal=self.fatal,
            detail=None,
        )


class AlertLevel(IntEnum):
    WARNING = 1
    FATAL = 2


class AlertDescription(IntEnum):
    """
    Wire-stable alert codes (TLS registry values).
    """
    close_notify = 0
    unexpected_message = 10
    bad_record_mac = 20
    handshake_failure = 40
    bad_certificate = 42
    certificate_unknown = 46
    illegal_parameter = 47
    decode_error = 50
    decrypt_error = 51
    protocol_version = 70
    internal_error = 80
    unsupported_extension = 110
    unrecognized_name = 112
    no_application_protocol = 120

    @staticmethod
    def from_failure_code(code: FailureCode) -> "AlertDescription":
        m = {
            FailureCode.ERR_PARSE: AlertDescription.decode_error,
            FailureCode.ERR_UNEXPECTED_MESSAGE: AlertDescription.unexpected_message,
            FailureCode.ERR_VERSION_UNSUPPORTED: AlertDescription.protocol_version,
            FailureCode.ERR_AUTH_FAILED: AlertDescription.handshake_failure,
            FailureCode.ERR_BAD_SIGNATURE: AlertDescription.decrypt_error,
            FailureCode.ERR_FINISHED_MISMATCH: AlertDescription.decrypt_error,
            FailureCode.ERR_BAD_RECORD: AlertDescription.bad_record_mac,
            FailureCode.ERR_SERVERNAME_REJECTED: AlertDescription.unrecognized_name,
            FailureCode.ERR_NO_APPLICATION_PROTOCOL: AlertDescription.no_application_protocol,
            FailureCode.ERR_UNSUPPORTED_EXTENSION: AlertDescription.unsupported_extension,
            FailureCode.ERR_ILLEGAL_PARAMETER: AlertDescription.illegal_parameter,
            FailureCode.ERR_NO_SHARED_CIPHER: AlertDescription.handshake_failure,
            FailureCode.ERR_INTERNAL: AlertDescription.internal_error,
        }
        return m.get(code, AlertDescription.internal_error)


@dataclass(frozen=True)
class AlertPayload:
    """
    Payload of an alert record:
      - 1 byte: level (1 warning, 2 fatal)
      - 1 byte: description
    """
    level: int
    description: int

    def encode(self) -> bytes:
        return bytes([int(self.level) & 0xFF, int(self.description) & 0xFF])

    @staticmethod
    def decode(b: bytes) -> "AlertPayload":
        if len(b) != 2:
            raise ValueError("alert payload must be 2 bytes")
        return AlertPayload(level=b[0], description=b[1])

    @property
    def is_close_notify(self) -> bool:
        return self.description == AlertDescription.close_notify


class Alert(Exception):
    """
    Raised inside an engine when the local side must abort with a fatal alert.
    """

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.detail or failure.code.value)
        self.failure = failure

    @property
    def description(self) -> AlertDescription:
        return AlertDescription.from_failure_code(self.failure.code)