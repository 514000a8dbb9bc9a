"""
core/errors.py -- Typed error taxonomy shared by every HuntGate layer.

Every expected failure raised by the store, the credential engine, or the
authorization gate is a HuntError subclass. Each subclass carries exactly one
ErrorKind, so the HTTP boundary can map kind -> status code with a single
lookup table instead of isinstance chains. Anything that is NOT a HuntError
is an unclassified internal fault: it is logged and surfaced as a generic 500.

No layer retries on a HuntError. A ConflictError in particular is a business
outcome (duplicate registration, lost write race), not a transient fault.

Layer rule: core/ is the kernel. This module imports nothing from api/,
auth/, or challenges/.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of expected failure kinds. The value doubles as the wire error code."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    VALIDATION = "validation_error"


class HuntError(Exception):
    """Base class for typed, expected failures.

    message is safe to show to the caller. detail is an optional structured
    payload (e.g. the natural key that collided) and must never contain
    secrets such as password hashes or raw tokens.
    """

    kind: ErrorKind

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(HuntError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(HuntError):
    kind = ErrorKind.CONFLICT


class UnauthorizedError(HuntError):
    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(HuntError):
    kind = ErrorKind.FORBIDDEN


class ValidationError(HuntError):
    kind = ErrorKind.VALIDATION
