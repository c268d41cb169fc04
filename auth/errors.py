"""
auth/errors.py -- Error taxonomy for the credential and session core.

Every failure a core operation can report is one of a closed set of kinds.
Services raise the matching exception; the HTTP boundary (api/main.py) maps
ErrorKind to a status code in a single handler. Nothing in auth/ knows about
HTTP.

Security:
  UnauthorizedError carries the same generic message for every cause (unknown
  email, wrong password, bad/expired/rotated/revoked token). Callers must not
  pass cause-specific text into it -- that would reintroduce an oracle.

  InternalError never carries detail to the caller. The underlying exception
  is logged where it is caught and chained via `raise ... from`.

Layer rule: auth/ imports only stdlib + third-party libraries.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    INTERNAL = "internal_error"


class AuthError(Exception):
    """Base class for all errors raised by auth/ services."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed or weak input. The message may name the specific problem."""

    kind = ErrorKind.VALIDATION
    default_message = "Invalid input."


class ConflictError(AuthError):
    kind = ErrorKind.CONFLICT
    default_message = "Email already registered."


class UnauthorizedError(AuthError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Invalid credentials or token."


class NotFoundError(AuthError):
    # Not raised by the session core; kept for collaborators sharing the taxonomy.
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found."


class InternalError(AuthError):
    kind = ErrorKind.INTERNAL
