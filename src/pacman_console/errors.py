"""Error taxonomy for backend failures.

Every failure surfaced by the client carries one of a fixed set of
error kinds so callers can branch on semantics rather than on text:

- database_locked: another package operation holds the lock, retry later
- timeout / network_error: transient, usually retryable
- cancelled: the user asked for it, not a real failure

When the backend reports a structured error (``{"code", "message"}``)
its code is authoritative. ``classify`` only runs on free-form failure
text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of backend error kinds."""

    TIMEOUT = "timeout"
    DATABASE_LOCKED = "database_locked"
    NETWORK_ERROR = "network_error"
    TRANSACTION_FAILED = "transaction_failed"
    VALIDATION_ERROR = "validation_error"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    INTERNAL_ERROR = "internal_error"

    @property
    def retryable(self) -> bool:
        """Whether retrying the same command later may succeed."""
        return self in _RETRYABLE

    @classmethod
    def from_code(cls, code: Any) -> ErrorKind:
        """Map a backend error code to a kind, unknown codes are internal errors."""
        try:
            return cls(code)
        except ValueError:
            return cls.INTERNAL_ERROR


_RETRYABLE = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.DATABASE_LOCKED, ErrorKind.NETWORK_ERROR}
)


class ClientError(Exception):
    """A classified failure of a backend command.

    Attributes:
        kind: The error kind callers branch on
        message: Human readable description
        details: Optional extra context supplied by the backend
    """

    def __init__(self, kind: ErrorKind, message: str, details: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render as the backend's structured error envelope."""
        data: dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data

    def __repr__(self) -> str:
        return f"ClientError(kind={self.kind.value!r}, message={self.message!r})"


# Ordered: first match wins.
_PATTERNS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.TIMEOUT, ("timed out", "timeout")),
    (ErrorKind.DATABASE_LOCKED, ("unable to lock database", "database is locked")),
    (ErrorKind.NETWORK_ERROR, ("connection", "network", "resolve host")),
    (ErrorKind.TRANSACTION_FAILED, ("transaction", "commit")),
    (ErrorKind.CANCELLED, ("cancelled", "canceled")),
    (ErrorKind.NOT_FOUND, ("not found",)),
    (ErrorKind.PERMISSION_DENIED, ("permission denied",)),
    (ErrorKind.VALIDATION_ERROR, ("invalid", "validation")),
]


def classify(message: str) -> ErrorKind:
    """Classify free-form failure text into an ErrorKind.

    Case-insensitive substring match against known failure signatures.
    Never fails; text that matches nothing is an internal error.
    """
    text = (message or "").lower()
    for kind, needles in _PATTERNS:
        if any(needle in text for needle in needles):
            return kind
    return ErrorKind.INTERNAL_ERROR
