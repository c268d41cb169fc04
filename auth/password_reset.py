"""
auth/password_reset.py -- Time-boxed, single-use password reset.

Lifecycle of a grant:

    NoRequest --request()--> Requested(token_hash, expires_at)
                             --confirm()--> Consumed
                             --time------> Expired

Security:
  [E1] request() answers the same way whether or not the email belongs to an
       account. Only a malformed email is reported back.
  [E2] confirm() reports one generic error for a grant that is unknown,
       already used, or expired. No oracle for guessing which.
  [E3] The password change, the mark-used, and the revocation of every
       refresh token of the user are one store transaction
       (CredentialStore.consume_reset_token). A failure in any step leaves
       all three undone.
  A new request deletes the user's earlier grants, so at most one is live.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.errors import InternalError, UnauthorizedError
from auth.mailer import DeliveryError, build_reset_email
from auth.models import PasswordResetToken
from auth.tokens import digest_token, generate_secret
from auth.validation import validate_email, validate_password

if TYPE_CHECKING:
    from auth.mailer import Mailer
    from auth.store import CredentialStore
    from auth.tokens import CredentialHasher
    from core.config import Settings

logger = logging.getLogger("todoauth.password_reset")

INVALID_RESET_TOKEN = "Invalid or expired reset token."


class PasswordResetWorkflow:
    """Request and confirm password resets.

    Usage:
        workflow = PasswordResetWorkflow(store, hasher, mailer, settings)
        await workflow.request("a@example.com")          # mails a link
        await workflow.confirm(token_from_link, "Newpass123")
    """

    def __init__(
        self,
        store: CredentialStore,
        hasher: CredentialHasher,
        mailer: Mailer,
        settings: Settings,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.mailer = mailer
        self.ttl_minutes = settings.password_reset_ttl_minutes
        self.url_base = settings.password_reset_url_base.rstrip("/")
        self.app_name = settings.app_name

    def reset_link(self, secret: str) -> str:
        return f"{self.url_base}/reset?token={secret}"

    async def request(self, email: str) -> None:
        """Start a reset for email, if it belongs to an account [E1].

        Raises ValidationError for a malformed email and InternalError if the
        reset mail could not be delivered.
        """
        normalized = validate_email(email)
        user = await self.store.get_user_by_email(normalized)
        if user is None:
            logger.debug("Reset requested for unknown email")
            return

        secret = generate_secret()
        await self.store.replace_reset_token(
            PasswordResetToken(
                token_hash=digest_token(secret),
                user_id=user.id,
                expires_at=datetime.now(timezone.utc) + timedelta(minutes=self.ttl_minutes),
            )
        )

        subject, body = build_reset_email(self.reset_link(secret), self.ttl_minutes, self.app_name)
        try:
            await self.mailer.send(user.email, subject, body)
        except DeliveryError as exc:
            logger.error("Reset mail delivery failed for user_id=%s: %s", user.id, exc)
            raise InternalError() from exc

        logger.info("Password reset requested: user_id=%s", user.id)

    async def confirm(self, token: str, new_password: str) -> None:
        """Spend a reset grant and set the new password [E2][E3].

        Raises ValidationError for a weak password and UnauthorizedError if the
        grant is unknown, used, or expired.
        """
        validate_password(new_password)
        if not token:
            raise UnauthorizedError(INVALID_RESET_TOKEN)

        # Hash outside the transaction so the write lock is held only briefly.
        password_hash = await asyncio.to_thread(self.hasher.hash, new_password)
        user_id = await self.store.consume_reset_token(digest_token(token), password_hash, datetime.now(timezone.utc))
        if user_id is None:
            logger.debug("Reset confirm rejected: unknown, used, or expired grant")
            raise UnauthorizedError(INVALID_RESET_TOKEN)

        logger.info("Password reset completed, all sessions revoked: user_id=%s", user_id)
