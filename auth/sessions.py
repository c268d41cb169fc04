"""
auth/sessions.py -- Registration, login, refresh rotation, and logout.

A session is a live row in refresh_tokens. Its life:

    Active(token_hash) --refresh--> Rotated (old row deleted, new row inserted)
                       --logout---> Revoked (row deleted)
                       --reset----> Revoked (all of the user's rows deleted)
                       --time-----> Expired (row present, treated as absent)

All session truth lives in the store. SessionManager holds no mutable state
of its own, so any number of concurrent requests can share one instance.

Security:
  [C1] login() runs a password verification even when the email is unknown,
       so timing does not reveal which accounts exist.
  [R1] refresh() deletes the presented row BEFORE issuing the new pair and
       refuses to continue unless that delete removed exactly one live row
       (CredentialStore.rotate_refresh_token). The old secret is dead the
       moment a refresh is attempted, whether or not the response reaches
       the client, and two racing refreshes of one secret cannot both succeed.
  Every authentication failure raises UnauthorizedError with the same message.
  Store failures arrive as InternalError and are passed through unchanged.

Password hashing is CPU-bound and runs in a worker thread (asyncio.to_thread)
so it never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import ConflictError, UnauthorizedError, ValidationError
from auth.models import AuthResult, RefreshToken, User
from auth.tokens import digest_token, generate_secret
from auth.validation import validate_email, validate_password

if TYPE_CHECKING:
    from auth.store import CredentialStore
    from auth.tokens import AccessTokenCodec, CredentialHasher
    from core.config import Settings

logger = logging.getLogger("todoauth.sessions")


class SessionManager:
    """Orchestrates the credential hasher, token codec and store into sessions.

    Usage:
        manager = SessionManager(store, hasher, codec, settings)
        result = await manager.register("a@example.com", "Aa123456")
        result = await manager.refresh(result.refresh_token)
        await manager.logout(result.refresh_token)
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: CredentialHasher,
        codec: AccessTokenCodec,
        settings: Settings,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.refresh_ttl = timedelta(days=settings.refresh_token_ttl_days)

    async def register(self, email: str, password: str) -> AuthResult:
        """Create an account and open its first session.

        Raises ValidationError for a malformed email or weak password and
        ConflictError if the email is already registered.
        """
        normalized = validate_email(email)
        validate_password(password)

        if await self.store.get_user_by_email(normalized) is not None:
            raise ConflictError()

        password_hash = await asyncio.to_thread(self.hasher.hash, password)
        # A concurrent registration that wins the insert makes create_user raise ConflictError.
        user = await self.store.create_user(User(id=str(uuid.uuid4()), email=normalized, password_hash=password_hash))

        logger.info("User registered: user_id=%s", user.id)
        return await self._issue_token_pair(user)

    async def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and open a new session. Raises UnauthorizedError on any failure."""
        try:
            normalized = validate_email(email)
        except ValidationError:
            normalized = None

        user = await self.store.get_user_by_email(normalized) if normalized else None
        if user is None:
            # Equalize timing -- do NOT return early before hashing [C1]
            await asyncio.to_thread(self.hasher.verify_dummy, password)
            logger.debug("Login rejected: unknown email")
            raise UnauthorizedError()

        if not await asyncio.to_thread(self.hasher.verify, password, user.password_hash):
            logger.debug("Login rejected: bad password for user_id=%s", user.id)
            raise UnauthorizedError()

        logger.info("User logged in: user_id=%s", user.id)
        return await self._issue_token_pair(user)

    async def refresh(self, refresh_secret: str) -> AuthResult:
        """Exchange a refresh secret for a brand-new token pair (rotation) [R1].

        Raises UnauthorizedError if the secret is unknown, expired, already
        rotated, or revoked.
        """
        if not refresh_secret:
            raise UnauthorizedError()

        # Delete first. None means unknown, expired, or already spent by a
        # concurrent request.
        user_id = await self.store.rotate_refresh_token(digest_token(refresh_secret), datetime.now(timezone.utc))
        if user_id is None:
            logger.debug("Refresh rejected: unknown, expired, or already rotated token")
            raise UnauthorizedError()

        user = await self.store.get_user_by_id(user_id)
        if user is None:
            raise UnauthorizedError()

        logger.info("Session refreshed: user_id=%s", user.id)
        return await self._issue_token_pair(user)

    async def logout(self, refresh_secret: str) -> None:
        """Revoke one session. Raises UnauthorizedError if nothing was revoked.

        The access token issued alongside stays valid until it expires; there
        is no access-token revocation list.
        """
        if not refresh_secret:
            raise UnauthorizedError()
        if not await self.store.delete_refresh_token(digest_token(refresh_secret)):
            raise UnauthorizedError()
        logger.info("Session revoked")

    async def _issue_token_pair(self, user: User) -> AuthResult:
        """Create an access token and a new stored refresh secret for user."""
        access_token = self.codec.issue(user.id)
        refresh_secret = generate_secret()
        await self.store.add_refresh_token(
            RefreshToken(
                token_hash=digest_token(refresh_secret),
                user_id=user.id,
                expires_at=datetime.now(timezone.utc) + self.refresh_ttl,
            )
        )
        return AuthResult(
            user=user.profile(),
            access_token=access_token,
            refresh_token=refresh_secret,
            expires_in=self.codec.ttl_minutes * 60,
        )
