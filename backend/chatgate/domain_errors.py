"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class QuotaExceededError(DomainError):
    """Daily message limit reached for the identity."""

    def __init__(self, *, used: int, limit: int):
        super().__init__(
            code="QUOTA_EXCEEDED",
            http_status=429,
            message="Daily limit reached",
            details={"used": used, "limit": limit},
        )


class GenerationError(Exception):
    """Every configured AI provider failed (or none is configured)."""

    code = "GENERATION_FAILED"


class TokenErrorKind(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    UNKNOWN_SUBJECT = "unknown_subject"


_TOKEN_ERROR_CODES = {
    TokenErrorKind.INVALID_SIGNATURE: "TOKEN_INVALID",
    TokenErrorKind.EXPIRED: "TOKEN_EXPIRED",
    TokenErrorKind.UNKNOWN_SUBJECT: "TOKEN_SUBJECT_UNKNOWN",
}


class TokenVerificationError(DomainError):
    """Session token rejected; `kind` is kept for diagnostics only."""

    def __init__(self, kind: TokenErrorKind, message: str = "Could not validate credentials"):
        super().__init__(code=_TOKEN_ERROR_CODES[kind], http_status=401, message=message)
        self.kind = kind


class HandshakeStateError(RuntimeError):
    """Handshake registry invariant violated (programming error)."""
