"""
auth/tokens.py -- Password hashing, opaque secret digests, and JWT access tokens.

Security design decisions:
  Passwords: argon2id via argon2-cffi. Argon2 is memory-hard, so GPU/ASIC
       brute force of low-entropy secrets is expensive. Every hash() call gets
       a fresh random salt and the output is the PHC string
       ($argon2id$v=19$m=...,t=...,p=...$salt$hash), so verification reads its
       own parameters and cost can be raised without a migration. verify()
       returns False for a mismatch AND for a malformed hash -- callers cannot
       tell the two apart [C2].

  Timing equalization: CredentialHasher keeps a dummy hash computed once at
       construction. Login runs verify_dummy() when the email is unknown, so
       response time does not reveal whether an account exists [C1].

  Refresh / reset secrets: secrets.token_urlsafe(32) gives 256 bits of
       entropy. We store SHA-256(secret) as hex. No salt: the digest is a
       lookup key, and salting would make lookup-by-digest impossible. The
       entropy of the secret is what makes the digest safe to store.

  JWT: python-jose with HS256. Tokens carry sub, exp, iat and a random jti
       (two tokens for the same user issued in the same second still differ).
       verify() raises UnauthorizedError on any failure -- bad signature,
       expired, malformed, missing subject -- with one generic message. There
       is no revocation list: an access token stays valid until exp even after
       logout. The short TTL bounds that window.

Layer rule: no imports from api/. Settings are injected, never read here.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError
from jose import JWTError, jwt

from auth.errors import InternalError, UnauthorizedError
from auth.models import AccessClaims

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("todoauth.tokens")

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (argon2id)
# ---------------------------------------------------------------------------


class CredentialHasher:
    """One-way password hashing with per-call salt and configurable cost.

    Usage:
        hasher = CredentialHasher.from_settings(settings)
        digest = hasher.hash("Goodpass1")
        hasher.verify("Goodpass1", digest)   # True
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._hasher = PasswordHasher(time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism)
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones [C1].
        self._dummy_hash = self._hasher.hash(secrets.token_hex(16))

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialHasher:
        return cls(
            time_cost=settings.password_hash_time_cost,
            memory_cost=settings.password_hash_memory_cost,
            parallelism=settings.password_hash_parallelism,
        )

    def hash(self, password: str) -> str:
        """Return the argon2id PHC string for password. Raises InternalError on failure."""
        try:
            return self._hasher.hash(password)
        except HashingError as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise InternalError() from exc

    def verify(self, password: str, digest: str) -> bool:
        """Return True only if password matches digest. Never raises [C2]."""
        try:
            return self._hasher.verify(digest, password)
        except (VerificationError, InvalidHashError):
            return False

    def verify_dummy(self, password: str) -> None:
        """Spend the same work as a real verify() against a throwaway hash [C1]."""
        self.verify(password, self._dummy_hash)


# ---------------------------------------------------------------------------
# Opaque secrets (refresh + password reset)
# ---------------------------------------------------------------------------


def generate_secret() -> str:
    """Return a new URL-safe secret with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def digest_token(secret: str) -> str:
    """Return SHA-256(secret) as 64 lowercase hex chars. Deterministic by design."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# JWT access tokens
# ---------------------------------------------------------------------------


class AccessTokenCodec:
    """Issue and verify stateless, signed, short-lived bearer tokens."""

    def __init__(self, secret_key: str, ttl_minutes: int = 15) -> None:
        self._secret_key = secret_key
        self.ttl_minutes = ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessTokenCodec:
        return cls(secret_key=settings.jwt_secret, ttl_minutes=settings.access_token_ttl_minutes)

    def issue(self, user_id: str, ttl_minutes: int | None = None) -> str:
        """Encode a signed JWT for user_id expiring ttl_minutes from now.

        Args:
            user_id:     Stored as the JWT subject claim.
            ttl_minutes: Token lifetime. If None (default), uses the codec TTL
                         (Settings.access_token_ttl_minutes).
        """
        duration = self.ttl_minutes if ttl_minutes is None else ttl_minutes
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + timedelta(minutes=duration),
            "jti": uuid.uuid4().hex,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Access token encoding failed: %s", type(exc).__name__)
            raise InternalError() from exc

    def verify(self, token: str) -> AccessClaims:
        """Decode and verify a JWT. Raises UnauthorizedError on any failure.

        The reason (signature, expiry, shape) is deliberately discarded.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise UnauthorizedError() from exc
        subject = payload.get("sub")
        exp = payload.get("exp")
        if not isinstance(subject, str) or not subject or not isinstance(exp, (int, float)):
            raise UnauthorizedError()
        return AccessClaims(subject=subject, expires_at=datetime.fromtimestamp(exp, tz=timezone.utc))
