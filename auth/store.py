"""
auth/store.py -- Async SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_refresh_token / _row_to_reset_token are the mappers.
Service code never touches SQL directly.

Concurrency:
  All methods are coroutines over an AsyncEngine. The engine's pool bounds
  how many store connections are open at once (db_pool_size, no overflow).
  Each method is a single short transaction; there is no in-process session
  state, so concurrent requests only meet each other inside the database.

  In-memory SQLite is the exception: every caller shares ONE connection
  (StaticPool), so two transactions would interleave on it and one caller's
  rollback could undo another's write. For that URL every store method holds
  an asyncio.Lock for the whole transaction.

  rotate_refresh_token() and consume_reset_token() are the conditional
  writes that make a secret single-use: each re-checks liveness in its
  WHERE clause and trusts only the affected row count. Both run inside one
  engine.begin() block, which rolls back on any exception -- including
  CancelledError when the caller goes away mid-write.

Errors:
  Driver failures never leave the store as SQLAlchemy exceptions. They are
  logged and re-raised as auth.errors.InternalError; a duplicate email in
  create_user() is the one integrity failure callers act on, and it becomes
  ConflictError.

Security:
  All queries use bound parameters. No f-strings in SQL.
  UNIQUE(email) on users and UNIQUE(token_hash) on both token tables are
  enforced by the database, not by a read-then-write check in code.

Timestamps are ISO 8601 UTC strings with microsecond precision, so string
comparison in SQL orders them chronologically.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, MetaData, String, Table, Text, event, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from auth.errors import ConflictError, InternalError
from auth.models import PasswordResetToken, RefreshToken, User

logger = logging.getLogger("todoauth.store")

_DEFAULT_DB_URL = "sqlite+aiosqlite:///./todo_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # SHA-256 hex, unique by PK
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("token_hash", String(64), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),  # NULL = unconsumed
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable foreign keys (for ON DELETE CASCADE) on every new connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """WAL lets readers proceed while a writer holds the database."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _is_memory_url(db_url: str) -> bool:
    return db_url.startswith("sqlite") and (":memory:" in db_url or "mode=memory" in db_url)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, RefreshToken and PasswordResetToken records.

    Usage:
        store = CredentialStore("sqlite+aiosqlite:///:memory:")
        await store.create_schema()
        await store.create_user(User(id=..., email="a@example.com", password_hash=...))
        user = await store.get_user_by_email("a@example.com")
        await store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, pool_size: int = 5) -> None:
        is_sqlite = db_url.startswith("sqlite")
        engine_args: dict = {}
        if not is_sqlite:
            # SQLite drivers pick their own pool class (StaticPool for :memory:),
            # which rejects sizing arguments.
            engine_args = {"pool_size": pool_size, "max_overflow": 0, "pool_pre_ping": True}
        self.engine: AsyncEngine = create_async_engine(db_url, **engine_args)
        # One shared connection: transactions must not interleave on it.
        self._shared_lock: asyncio.Lock | None = asyncio.Lock() if _is_memory_url(db_url) else None
        if is_sqlite:
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)
            if self._shared_lock is None:
                event.listen(self.engine.sync_engine, "connect", _set_wal_mode)

    # ------------------------------------------------------------------
    # Connection scopes
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _begin(self, operation: str) -> AsyncIterator[AsyncConnection]:
        """Yield a connection inside a transaction that commits on clean exit.

        Any SQLAlchemyError raised inside the block rolls the transaction back
        and surfaces as InternalError; the driver detail goes to the log only.
        """
        async with self._shared_lock or nullcontext():
            try:
                async with self.engine.begin() as conn:
                    yield conn
            except SQLAlchemyError as exc:
                logger.error("Store operation %s failed: %s", operation, exc)
                raise InternalError() from exc

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[AsyncConnection]:
        """Read-only counterpart of _begin()."""
        async with self._shared_lock or nullcontext():
            try:
                async with self.engine.connect() as conn:
                    yield conn
            except SQLAlchemyError as exc:
                logger.error("Store operation %s failed: %s", operation, exc)
                raise InternalError() from exc

    async def create_schema(self) -> None:
        """Create all tables if missing. Idempotent -- safe on every startup."""
        async with self._begin("create_schema") as conn:
            await conn.run_sync(_metadata.create_all)

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query, False otherwise."""
        try:
            async with self._connect("ping") as conn:
                result = await conn.execute(select(1))
                return result.scalar() == 1
        except InternalError:
            return False

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(self, user: User) -> User:
        """Insert a new user and return it with created_at filled in.

        Raises ConflictError if the email already exists. The UNIQUE index is
        the authoritative duplicate check when two registrations race.
        """
        created_at = _now_iso()
        async with self._shared_lock or nullcontext():
            try:
                async with self.engine.begin() as conn:
                    await conn.execute(
                        _users.insert().values(
                            id=user.id,
                            email=user.email,
                            password_hash=user.password_hash,
                            created_at=created_at,
                        )
                    )
            except IntegrityError as exc:
                raise ConflictError() from exc
            except SQLAlchemyError as exc:
                logger.error("Store operation create_user failed: %s", exc)
                raise InternalError() from exc
        return User(id=user.id, email=user.email, password_hash=user.password_hash, created_at=created_at)

    async def get_user_by_email(self, email: str) -> User | None:
        """Look up a user by exact (already normalized) email. Returns None if not found."""
        async with self._connect("get_user_by_email") as conn:
            row = (await conn.execute(_users.select().where(_users.c.email == email))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_user_by_id(self, user_id: str) -> User | None:
        async with self._connect("get_user_by_id") as conn:
            row = (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    async def add_refresh_token(self, token: RefreshToken) -> None:
        async with self._begin("add_refresh_token") as conn:
            await conn.execute(
                _refresh_tokens.insert().values(
                    token_hash=token.token_hash,
                    user_id=token.user_id,
                    expires_at=_iso(token.expires_at),
                    created_at=_now_iso(),
                )
            )

    async def get_refresh_token(self, token_hash: str) -> RefreshToken | None:
        """Point lookup by digest, expired rows included."""
        async with self._connect("get_refresh_token") as conn:
            row = (
                await conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash))
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    async def rotate_refresh_token(self, token_hash: str, now: datetime) -> str | None:
        """Spend a live refresh token. Returns its owner's user_id, or None.

        The DELETE repeats the liveness condition (digest matches, not
        expired at `now`) and only a rowcount of exactly 1 counts as success,
        so when several requests present the same secret at once only one of
        them gets a user_id back. An expired row is left for purge_expired().
        """
        live = (_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.expires_at > _iso(now))
        async with self._begin("rotate_refresh_token") as conn:
            row = (await conn.execute(select(_refresh_tokens.c.user_id).where(live))).fetchone()
            if row is None:
                return None
            deleted = await conn.execute(_refresh_tokens.delete().where(live))
            if deleted.rowcount != 1:
                return None
        return row.user_id

    async def delete_refresh_token(self, token_hash: str) -> bool:
        """Delete one refresh token. Returns True only if a row was deleted."""
        async with self._begin("delete_refresh_token") as conn:
            result = await conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token_hash == token_hash))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    async def replace_reset_token(self, token: PasswordResetToken) -> None:
        """Delete any earlier reset rows for the user, then insert this one.

        Both statements share one transaction, so a user never has two
        active reset grants at once.
        """
        async with self._begin("replace_reset_token") as conn:
            await conn.execute(_password_resets.delete().where(_password_resets.c.user_id == token.user_id))
            await conn.execute(
                _password_resets.insert().values(
                    token_hash=token.token_hash,
                    user_id=token.user_id,
                    expires_at=_iso(token.expires_at),
                    used_at=None,
                    created_at=_now_iso(),
                )
            )

    async def get_reset_token(self, token_hash: str) -> PasswordResetToken | None:
        async with self._connect("get_reset_token") as conn:
            row = (
                await conn.execute(_password_resets.select().where(_password_resets.c.token_hash == token_hash))
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    async def consume_reset_token(self, token_hash: str, password_hash: str, now: datetime) -> str | None:
        """Atomically spend a reset grant and apply its password change.

        In one transaction:
          1. mark the row used -- only if it is unused and not expired
          2. set the owner's password_hash
          3. delete every refresh token the owner holds

        The conditional UPDATE in step 1 is what makes a grant single-use
        even when two confirmations race: only one of them updates a row.

        Returns the owner's user_id, or None if the grant was absent, used,
        or expired (in which case nothing was written). A failure in any step
        rolls back all three and raises InternalError.
        """
        now_iso = _iso(now)
        async with self._begin("consume_reset_token") as conn:
            row = (
                await conn.execute(
                    select(_password_resets.c.user_id).where(
                        (_password_resets.c.token_hash == token_hash)
                        & (_password_resets.c.used_at.is_(None))
                        & (_password_resets.c.expires_at > now_iso)
                    )
                )
            ).fetchone()
            if row is None:
                return None
            user_id = row.user_id
            marked = await conn.execute(
                _password_resets.update()
                .where((_password_resets.c.token_hash == token_hash) & (_password_resets.c.used_at.is_(None)))
                .values(used_at=now_iso)
            )
            if marked.rowcount != 1:
                return None
            await conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            await conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return user_id

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def purge_expired(self, now: datetime) -> tuple[int, int]:
        """Delete expired refresh rows and expired or used reset rows.

        Returns (refresh_rows_deleted, reset_rows_deleted). Expired rows are
        already treated as absent by every lookup; this only reclaims space.
        """
        now_iso = _iso(now)
        async with self._begin("purge_expired") as conn:
            refresh = await conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= now_iso))
            resets = await conn.execute(
                _password_resets.delete().where(
                    (_password_resets.c.expires_at <= now_iso) | (_password_resets.c.used_at.is_not(None))
                )
            )
        return refresh.rowcount, resets.rowcount

    async def close(self) -> None:
        await self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=_parse(row.expires_at),
        created_at=row.created_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=_parse(row.expires_at),
        used_at=_parse(row.used_at),
        created_at=row.created_at,
    )
