"""
auth/models.py -- Domain dataclasses for credential and session entities.

Pattern: Data class (pure data container, zero logic). The store maps rows
to these; services pass them around; api/models.py maps them to the HTTP
contract.

Layer rule: auth/ imports only stdlib + third-party libraries.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    email is always stored normalized (stripped, lower-cased); see
    auth.validation.normalize_email. password_hash is the argon2 PHC string and
    must never be logged or returned to a caller -- use profile() instead.
    """

    id: str
    email: str
    password_hash: str
    created_at: str | None = None

    def profile(self) -> UserProfile:
        return UserProfile(id=self.id, email=self.email)


@dataclass(frozen=True)
class UserProfile:
    """The public view of a user: safe to return from any operation."""

    id: str
    email: str


@dataclass
class RefreshToken:
    """One live refresh secret, stored by digest only.

    The raw secret exists only in the AuthResult handed back to the caller.
    A row is deleted on rotation, logout, or password reset; a row whose
    expires_at has passed is treated as absent.
    """

    token_hash: str
    user_id: str
    expires_at: datetime
    created_at: str | None = None


@dataclass
class PasswordResetToken:
    """A single-use password reset grant. used_at is None until consumed."""

    token_hash: str
    user_id: str
    expires_at: datetime
    used_at: datetime | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified claims of an access token. Never persisted."""

    subject: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Outcome of register / login / refresh.

    refresh_token is the raw secret -- the only moment it exists outside the
    caller's memory. expires_in is the access token lifetime in seconds.
    """

    user: UserProfile
    access_token: str
    refresh_token: str
    expires_in: int
