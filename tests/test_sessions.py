"""
tests/test_sessions.py -- SessionManager behaviour.

Coverage:
  - register -> refresh -> logout -> refresh-again end to end
  - duplicate registration is a conflict and leaves the first account intact
  - wrong password and unknown email fail identically
  - rotation: a refresh secret works exactly once
  - logout is single-shot; expired refresh rows are rejected
  - concurrent refreshes of one secret: exactly one wins, on memory and file stores
  - store failures reach the caller as InternalError
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from auth.errors import ConflictError, ErrorKind, InternalError, UnauthorizedError, ValidationError
from auth.models import AuthResult, RefreshToken
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.tokens import AccessTokenCodec, digest_token

pytestmark = pytest.mark.asyncio

EMAIL = "a@example.com"
PASSWORD = "Aa123456"


async def test_full_session_lifecycle(sessions: SessionManager, codec: AccessTokenCodec) -> None:
    registered = await sessions.register(EMAIL, PASSWORD)
    assert registered.user.email == EMAIL
    assert registered.expires_in == 15 * 60
    assert codec.verify(registered.access_token).subject == registered.user.id

    refreshed = await sessions.refresh(registered.refresh_token)
    assert refreshed.user == registered.user
    assert refreshed.refresh_token != registered.refresh_token
    assert refreshed.access_token != registered.access_token

    await sessions.logout(refreshed.refresh_token)

    with pytest.raises(UnauthorizedError):
        await sessions.refresh(refreshed.refresh_token)


class TestRegister:
    async def test_email_is_normalized(self, sessions: SessionManager, store: CredentialStore) -> None:
        result = await sessions.register("  A@Example.COM ", PASSWORD)
        assert result.user.email == EMAIL
        assert await store.get_user_by_email(EMAIL) is not None

    async def test_password_is_stored_hashed(self, sessions: SessionManager, store: CredentialStore) -> None:
        await sessions.register(EMAIL, PASSWORD)
        user = await store.get_user_by_email(EMAIL)
        assert PASSWORD not in user.password_hash
        assert user.password_hash.startswith("$argon2id$")

    async def test_duplicate_is_conflict(self, sessions: SessionManager, store: CredentialStore) -> None:
        await sessions.register(EMAIL, PASSWORD)
        original_hash = (await store.get_user_by_email(EMAIL)).password_hash

        with pytest.raises(ConflictError) as exc_info:
            await sessions.register("A@example.com", "Other1234")
        assert exc_info.value.kind is ErrorKind.CONFLICT
        assert (await store.get_user_by_email(EMAIL)).password_hash == original_hash

    async def test_invalid_email(self, sessions: SessionManager) -> None:
        with pytest.raises(ValidationError, match="invalid email"):
            await sessions.register("invalid-email", PASSWORD)

    @pytest.mark.parametrize("password", ["short1", "onlyletters", "12345678"])
    async def test_weak_password(self, sessions: SessionManager, store: CredentialStore, password: str) -> None:
        with pytest.raises(ValidationError):
            await sessions.register(EMAIL, password)
        assert await store.get_user_by_email(EMAIL) is None


class TestLogin:
    async def test_login_opens_new_session(self, sessions: SessionManager) -> None:
        registered = await sessions.register(EMAIL, PASSWORD)
        logged_in = await sessions.login("A@EXAMPLE.com", PASSWORD)

        assert logged_in.user == registered.user
        assert logged_in.refresh_token != registered.refresh_token
        # Both sessions are live at once.
        await sessions.refresh(registered.refresh_token)
        await sessions.refresh(logged_in.refresh_token)

    async def test_wrong_password_and_unknown_email_look_the_same(self, sessions: SessionManager) -> None:
        await sessions.register(EMAIL, PASSWORD)

        with pytest.raises(UnauthorizedError) as wrong_password:
            await sessions.login(EMAIL, "Wrongpass1")
        with pytest.raises(UnauthorizedError) as unknown_email:
            await sessions.login("nobody@example.com", PASSWORD)

        assert wrong_password.value.message == unknown_email.value.message

    async def test_malformed_email_is_unauthorized(self, sessions: SessionManager) -> None:
        with pytest.raises(UnauthorizedError):
            await sessions.login("not-an-email", PASSWORD)


class TestRefresh:
    async def test_secret_works_only_once(self, sessions: SessionManager) -> None:
        registered = await sessions.register(EMAIL, PASSWORD)
        await sessions.refresh(registered.refresh_token)

        with pytest.raises(UnauthorizedError):
            await sessions.refresh(registered.refresh_token)

    @pytest.mark.parametrize("secret", ["", "never-issued"])
    async def test_unknown_secret(self, sessions: SessionManager, secret: str) -> None:
        with pytest.raises(UnauthorizedError):
            await sessions.refresh(secret)

    async def test_expired_secret(self, sessions: SessionManager, store: CredentialStore) -> None:
        registered = await sessions.register(EMAIL, PASSWORD)
        await store.add_refresh_token(
            RefreshToken(
                token_hash=digest_token("stale-secret"),
                user_id=registered.user.id,
                expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
            )
        )
        with pytest.raises(UnauthorizedError):
            await sessions.refresh("stale-secret")

    async def test_new_refresh_row_has_configured_lifetime(
        self, sessions: SessionManager, store: CredentialStore
    ) -> None:
        registered = await sessions.register(EMAIL, PASSWORD)
        record = await store.get_refresh_token(digest_token(registered.refresh_token))
        remaining = record.expires_at - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)


class TestLogout:
    async def test_logout_twice_fails(self, sessions: SessionManager) -> None:
        registered = await sessions.register(EMAIL, PASSWORD)
        await sessions.logout(registered.refresh_token)

        with pytest.raises(UnauthorizedError):
            await sessions.logout(registered.refresh_token)

    async def test_logout_revokes_only_that_session(self, sessions: SessionManager) -> None:
        first = await sessions.register(EMAIL, PASSWORD)
        second = await sessions.login(EMAIL, PASSWORD)
        await sessions.logout(first.refresh_token)

        await sessions.refresh(second.refresh_token)

    async def test_empty_secret(self, sessions: SessionManager) -> None:
        with pytest.raises(UnauthorizedError):
            await sessions.logout("")


class TestConcurrentRefresh:
    @staticmethod
    async def _race(manager: SessionManager, secret: str) -> list:
        return await asyncio.gather(*(manager.refresh(secret) for _ in range(5)), return_exceptions=True)

    async def test_one_winner_on_shared_memory_store(self, sessions: SessionManager) -> None:
        registered = await sessions.register(EMAIL, PASSWORD)

        outcomes = await self._race(sessions, registered.refresh_token)

        assert sum(isinstance(o, AuthResult) for o in outcomes) == 1
        assert sum(isinstance(o, UnauthorizedError) for o in outcomes) == 4

    async def test_one_winner_on_file_store(self, tmp_path, hasher, codec, settings) -> None:
        store = CredentialStore(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
        await store.create_schema()
        try:
            manager = SessionManager(store, hasher, codec, settings)
            registered = await manager.register(EMAIL, PASSWORD)

            outcomes = await self._race(manager, registered.refresh_token)

            assert sum(isinstance(o, AuthResult) for o in outcomes) == 1
            assert sum(isinstance(o, UnauthorizedError) for o in outcomes) == 4
        finally:
            await store.close()


async def test_store_failure_surfaces_as_internal_error(sessions: SessionManager, store: CredentialStore) -> None:
    await sessions.register(EMAIL, PASSWORD)
    async with store.engine.begin() as conn:
        await conn.execute(text("DROP TABLE refresh_tokens"))

    with pytest.raises(InternalError):
        await sessions.login(EMAIL, PASSWORD)
