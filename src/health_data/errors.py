"""Typed error taxonomy for the health data engine.

Every failure that crosses a component boundary is a ``HealthDataError``
carrying an ``ErrorKind``.  Errors raised by a lower layer that are already
typed pass through unchanged; anything else is wrapped at the boundary where
it was caught via ``wrap_error`` (the original exception is chained as
``__cause__``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure categories shared by the registry, scheduler, hub and engine."""

    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    DUPLICATE_PROVIDER = "DUPLICATE_PROVIDER"
    PROVIDER_INIT_FAILED = "PROVIDER_INIT_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DATA_FETCH_ERROR = "DATA_FETCH_ERROR"
    INVALID_METRIC = "INVALID_METRIC"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    SUBSCRIPTION_ERROR = "SUBSCRIPTION_ERROR"
    CLEANUP_ERROR = "CLEANUP_ERROR"
    POLLING_ERROR = "POLLING_ERROR"
    PRIORITY_ERROR = "PRIORITY_ERROR"


class HealthDataError(Exception):
    """Domain error raised by providers and the orchestration engine.

    Attributes:
        kind:    The ErrorKind tag.
        message: Human-readable description.
        cause:   Underlying exception or diagnostic payload, if any.
    """

    def __init__(self, kind: ErrorKind, message: str = "", cause: Any = None) -> None:
        self.kind = kind
        self.message = message or kind.value
        self.cause = cause
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"HealthDataError({self.kind.value}, {self.message!r})"

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


def wrap_error(exc: BaseException, kind: ErrorKind, message: str) -> HealthDataError:
    """Return ``exc`` unchanged if typed, else a new error of ``kind``.

    Callers raise the result with ``raise wrap_error(...) from exc`` so the
    original traceback stays attached.

    Args:
        exc:     The caught exception.
        kind:    Kind to use when ``exc`` is untyped.
        message: Context message for the wrapper.

    Returns:
        A HealthDataError.
    """
    if isinstance(exc, HealthDataError):
        return exc
    return HealthDataError(kind, message, cause=exc)
