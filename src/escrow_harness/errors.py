"""Escrow harness error codes and exceptions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ErrorCategory(IntEnum):
    TRANSPORT = 0x01
    FUNDING = 0x02
    SUBMISSION = 0x03
    VERIFICATION = 0x04
    CODEC = 0x05
    CONFIG = 0x06


class ErrorCode(IntEnum):
    # Transport
    CONNECTIVITY = 0x0100
    RPC_ERROR = 0x0101

    # Funding
    FUNDING_EXHAUSTED = 0x0200

    # Submission
    CONFIRMATION_TIMEOUT = 0x0300
    TRANSACTION_REJECTED = 0x0301

    # Verification
    INVARIANT_VIOLATION = 0x0400
    ACCOUNT_NOT_FOUND = 0x0401

    # Codec
    ENCODING = 0x0500
    DECODING = 0x0501

    # Config
    CONFIG = 0x0600

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory(self.value >> 8)


@dataclass(frozen=True)
class HarnessError(Exception):
    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.name}({self.code:#06x}): {self.message}"


# Allow Python's Exception machinery to set __traceback__/__context__/__cause__
# while keeping dataclass fields frozen.
_EXCEPTION_ATTRS = frozenset(("__traceback__", "__context__", "__cause__", "__suppress_context__"))
_frozen_setattr = HarnessError.__setattr__


def _harness_error_setattr(self: HarnessError, name: str, value: object) -> None:
    if name in _EXCEPTION_ATTRS:
        object.__setattr__(self, name, value)
    else:
        _frozen_setattr(self, name, value)


HarnessError.__setattr__ = _harness_error_setattr  # type: ignore[method-assign]


def err(code: ErrorCode, message: str) -> HarnessError:
    return HarnessError(code=code, message=message)
