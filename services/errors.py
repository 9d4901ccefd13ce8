"""Error taxonomy and classification for sync failures."""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    TRANSIENT_SERVER = "TRANSIENT_SERVER"
    PERMANENT_CLIENT = "PERMANENT_CLIENT"
    CONFLICT = "CONFLICT"
    UNKNOWN = "UNKNOWN"

    @property
    def retryable(self) -> bool:
        return self in {
            ErrorCategory.TRANSIENT_NETWORK,
            ErrorCategory.TRANSIENT_SERVER,
            ErrorCategory.UNKNOWN,
        }


class SyncError(Exception):
    """Base class for errors raised by the sync engine."""


class UnknownEntityTypeError(SyncError):
    def __init__(self, value) -> None:
        super().__init__(f"unknown entity type: {value!r}")
        self.value = value


class PayloadValidationError(SyncError):
    """Raised when an outbox payload does not match its entity shape."""


class QueueItemError(SyncError):
    """Raised for invalid operator actions on queue rows."""


class ApiError(SyncError):
    """A failed API call, already classified."""

    def __init__(
        self,
        message: str,
        *,
        http_status: Optional[int] = None,
        category: Optional[ErrorCategory] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.http_status = http_status
        self.category = category or classify(http_status, message)
        self.retry_after = retry_after


TRANSIENT_SERVER_CODES = {408, 425, 429, 500, 502, 503, 504}

# Checked in order: payload problems never succeed on retry.
_PERMANENT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"missing required field",
        r"validation failed",
        r"schema validation",
        r"invalid payload",
        r"malformed",
        r"invalid json",
        r"cannot be null",
        r"unauthori[sz]ed",
        r"forbidden",
    )
]

_NETWORK_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"timed? ?out",
        r"connection (refused|reset|aborted)",
        r"ECONNREFUSED|ECONNRESET|ETIMEDOUT|ENOTFOUND",
        r"network (error|is unreachable)",
        r"name or service not known",
        r"temporary failure in name resolution",
    )
]

_SERVER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"service unavailable",
        r"temporarily unavailable",
        r"rate limit",
        r"too many requests",
    )
]


def classify(http_status: Optional[int], message: Optional[str] = None) -> ErrorCategory:
    """Map an HTTP status and/or error message to an :class:`ErrorCategory`."""

    text = message or ""
    if http_status:
        code = int(http_status)
        if code == 409:
            return ErrorCategory.CONFLICT
        if code in TRANSIENT_SERVER_CODES or code >= 500:
            return ErrorCategory.TRANSIENT_SERVER
        if 400 <= code < 500:
            return ErrorCategory.PERMANENT_CLIENT

    for pattern in _PERMANENT_PATTERNS:
        if pattern.search(text):
            return ErrorCategory.PERMANENT_CLIENT
    for pattern in _NETWORK_PATTERNS:
        if pattern.search(text):
            return ErrorCategory.TRANSIENT_NETWORK
    for pattern in _SERVER_PATTERNS:
        if pattern.search(text):
            return ErrorCategory.TRANSIENT_SERVER
    return ErrorCategory.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, ApiError):
        return exc.category
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorCategory.TRANSIENT_NETWORK
    return classify(None, f"{type(exc).__name__}: {exc}")


__all__ = [
    "ApiError",
    "ErrorCategory",
    "PayloadValidationError",
    "QueueItemError",
    "SyncError",
    "TRANSIENT_SERVER_CODES",
    "UnknownEntityTypeError",
    "classify",
    "classify_exception",
]
