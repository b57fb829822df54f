# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations


class HarnessError(Exception):
    pass


class ConfigurationError(HarnessError):
    """Settings that cannot be installed on an endpoint."""
    pass


class ContractViolation(HarnessError):
    """
    Defensive assertion: a scheduler, engine or configuration contract was
    broken. Aborts the run; never classified into the outcome record.
    """
    pass


class EngineError(HarnessError):
    pass


def check(cond: bool, msg: str) -> None:
    if not cond:
        raise ContractViolation(msg)
