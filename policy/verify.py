# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

from enum import Enum

from crypto import sig
from protocol.errors import ConfigurationError
from protocol.failure import Failure, FailureCode, FailureLayer, FailurePhase
from protocol.result import Result


class VerifyMode(str, Enum):
    DEFAULT = "Default"
    ACCEPT_ALL = "AcceptAll"
    REJECT_ALL = "RejectAll"


def _auth_failure(code: FailureCode, detail: str) -> Failure:
    return Failure(
        layer=FailureLayer.CRYPTO,
        phase=FailurePhase.HANDSHAKE,
        code=code,
        fatal=True,
        detail=detail,
    )


class CertificateVerifier:
    mode: VerifyMode

    def verify(self, public_key: bytes, signed: bytes, signature: bytes) -> Result[None]:
        raise NotImplementedError


class DefaultVerifier(CertificateVerifier):
    """Checks the server's signature over the handshake parameters."""

    mode = VerifyMode.DEFAULT

    def verify(self, public_key: bytes, signed: bytes, signature: bytes) -> Result[None]:
        if not public_key or not signature:
            return Result.Err(_auth_failure(FailureCode.ERR_AUTH_FAILED, "missing certificate"))
        if not sig.verify(public_key, signed, signature):
            return Result.Err(_auth_failure(FailureCode.ERR_BAD_SIGNATURE, "server signature does not verify"))
        return Result.Ok()


class AcceptAllVerifier(CertificateVerifier):
    mode = VerifyMode.ACCEPT_ALL

    def verify(self, public_key: bytes, signed: bytes, signature: bytes) -> Result[None]:
        return Result.Ok()


class RejectAllVerifier(CertificateVerifier):
    mode = VerifyMode.REJECT_ALL

    def verify(self, public_key: bytes, signed: bytes, signature: bytes) -> Result[None]:
        return Result.Err(_auth_failure(FailureCode.ERR_AUTH_FAILED, "application verification failure"))


def make_verifier(mode: VerifyMode) -> CertificateVerifier:
    if mode == VerifyMode.DEFAULT:
        return DefaultVerifier()
    if mode == VerifyMode.ACCEPT_ALL:
        return AcceptAllVerifier()
    if mode == VerifyMode.REJECT_ALL:
        return RejectAllVerifier()
    raise ConfigurationError(f"unknown verify mode: {mode}")
