"""
ReliefChain Error Taxonomy

Registry operations report failures as a discriminated `Response` rather than
a raised exception. Inside an operation a precondition violation raises
`RegistryFault`; the ledger catches it at the call boundary, discards every
effect of the call and turns it into `Response.failure(code)`.

Numeric codes are part of the public interface: they appear in CLI output
and stay fixed across releases.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Generic, Optional, TypeVar


class ErrorCode(IntEnum):
    """Registry error codes."""
    NOT_OWNER = 100
    NOT_FOUND = 101
    INVALID_URI = 102
    INVALID_METADATA = 103
    NOT_AUTHORIZED = 104
    INVALID_QUANTITY = 106
    TOKEN_LOCKED = 108
    INVALID_RECIPIENT = 109
    TOO_MANY_TAGS = 112
    NOT_VERIFIED = 113
    INVALID_VERSION = 114
    HISTORY_FULL = 115
    INVALID_STATUS = 116
    PAUSED = 117
    NOT_ADMIN = 118
    INVALID_DURATION = 119
    LICENSE_EXPIRED = 120


class RegistryFault(Exception):
    """A precondition violation that aborts the current call."""

    def __init__(self, code: ErrorCode, detail: str = ""):
        self.code = code
        self.detail = detail
        message = f"{code.name} ({int(code)})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


def require(condition: bool, code: ErrorCode, detail: str = "") -> None:
    """Raise RegistryFault(code) unless condition holds."""
    if not condition:
        raise RegistryFault(code, detail)


T = TypeVar("T")


@dataclass(frozen=True)
class Response(Generic[T]):
    """Outcome of a mutating call: either ok with a value or a failure code."""
    ok: bool
    value: Optional[T] = None
    error: Optional[ErrorCode] = None

    @classmethod
    def success(cls, value: T) -> "Response[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: ErrorCode) -> "Response[T]":
        return cls(ok=False, error=code)

    def unwrap(self) -> T:
        """Return the value or raise the fault this response carries."""
        if not self.ok:
            raise RegistryFault(self.error)
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        return {"ok": False, "error": self.error.name, "code": int(self.error)}
