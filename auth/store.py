"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. SQLUserStore, SQLRefreshTokenStore and
SQLAuditStore are the repositories; the _row_to_* functions are the mappers.
Service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only refresh-token hashes are stored, never plaintexts.

Atomicity:
  increment_failed_login and rotate each run inside one engine.begin()
  transaction. The failed-attempt counter is incremented in SQL
  (failed_login_attempts + 1), never read into Python and written back, so
  concurrent wrong-password attempts cannot lose a count.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so string comparison in SQL matches chronological order.

Every SQLAlchemyError is re-raised as auth.errors.StoreError.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import StoreError, UserAlreadyExistsError
from auth.models import AuditAction, AuditLog, RefreshToken, Role, User, normalize_email, utcnow

logger = logging.getLogger("authkeep.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("is_locked", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),  # NULL = no expiry (indefinite when is_locked)
    Column("last_login_at", String(32)),
    Column("last_login_ip", String(45), nullable=False, server_default=""),  # fits IPv6
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("is_revoked", Integer, nullable=False, server_default="0", index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("action", String(32), nullable=False, index=True),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("metadata_json", Text, nullable=False, server_default="{}"),
    Column("created_at", String(32), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into the core's StoreError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, type(exc).__name__)
        raise StoreError() from exc


def create_db_engine(db_url: str) -> Engine:
    """Create an engine and make sure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class SQLUserStore:
    """Repository for User entities."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user: User) -> None:
        """Insert a new user.

        Raises UserAlreadyExistsError on the UNIQUE(email) violation. That is
        also how a concurrent registration that slipped past exists_by_email()
        is detected.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(_users.insert().values(**_user_to_row(user)))
        except IntegrityError as exc:
            raise UserAlreadyExistsError() from exc
        except SQLAlchemyError as exc:
            logger.error("Store operation users.create failed: %s", type(exc).__name__)
            raise StoreError() from exc

    def find_by_id(self, user_id: str) -> User | None:
        with _store_errors("users.find_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email(self, email: str) -> User | None:
        with _store_errors("users.find_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists_by_email(self, email: str) -> bool:
        with _store_errors("users.exists_by_email"), self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == normalize_email(email))).fetchone()
        return row is not None

    def update(self, user: User) -> bool:
        """Write every mutable column. Returns False if the user row is gone."""
        values = _user_to_row(user)
        values.pop("id")
        values.pop("created_at")
        with _store_errors("users.update"), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
        return result.rowcount > 0

    def increment_failed_login(self, user_id: str, max_attempts: int, locked_until: datetime) -> User | None:
        now = _iso(utcnow())
        with _store_errors("users.increment_failed_login"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=_users.c.failed_login_attempts + 1, updated_at=now)
            )
            if result.rowcount == 0:
                return None
            conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.failed_login_attempts >= max_attempts))
                .values(is_locked=1, locked_until=_iso(locked_until))
            )
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def clear_expired_lock(self, user_id: str, now: datetime) -> bool:
        with _store_errors("users.clear_expired_lock"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.is_locked == 1)
                    & _users.c.locked_until.is_not(None)
                    & (_users.c.locked_until <= _iso(now))
                )
                .values(is_locked=0, locked_until=None, failed_login_attempts=0, updated_at=_iso(now))
            )
        return result.rowcount > 0

    def record_successful_login(self, user_id: str, ip_address: str, now: datetime) -> bool:
        with _store_errors("users.record_successful_login"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    failed_login_attempts=0,
                    is_locked=0,
                    locked_until=None,
                    last_login_at=_iso(now),
                    last_login_ip=ip_address,
                    updated_at=_iso(now),
                )
            )
        return result.rowcount > 0

    def update_password_hash(self, user_id: str, password_hash: str, now: datetime) -> bool:
        with _store_errors("users.update_password_hash"), self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(password_hash=password_hash, updated_at=_iso(now))
            )
        return result.rowcount > 0


class SQLRefreshTokenStore:
    """Repository for RefreshToken entities. Lookups are by hash only."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, token: RefreshToken) -> None:
        with _store_errors("refresh_tokens.create"), self.engine.begin() as conn:
            conn.execute(_refresh_tokens.insert().values(**_token_to_row(token)))

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        """O(1) via the UNIQUE index on token_hash."""
        with _store_errors("refresh_tokens.find_by_hash"), self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def revoke_by_hash(self, token_hash: str) -> bool:
        """Revoke one token. Returns False if it was unknown or already revoked."""
        with _store_errors("refresh_tokens.revoke_by_hash"), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1, updated_at=_iso(utcnow()))
            )
        return result.rowcount > 0

    def revoke_all_by_user(self, user_id: str) -> int:
        """Revoke every live token of a user in a single UPDATE. Returns the count."""
        with _store_errors("refresh_tokens.revoke_all_by_user"), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1, updated_at=_iso(utcnow()))
            )
        return result.rowcount

    def rotate(self, old_hash: str, replacement: RefreshToken) -> bool:
        with _store_errors("refresh_tokens.rotate"), self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == old_hash) & (_refresh_tokens.c.is_revoked == 0))
                .values(is_revoked=1, updated_at=_iso(utcnow()))
            )
            if result.rowcount == 0:
                return False
            conn.execute(_refresh_tokens.insert().values(**_token_to_row(replacement)))
        return True

    def delete_expired(self, now: datetime) -> int:
        """Delete tokens whose expiry has passed. Returns number of rows removed."""
        with _store_errors("refresh_tokens.delete_expired"), self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < _iso(now)))
        return result.rowcount


class SQLAuditStore:
    """Append-only repository for AuditLog entries. There is no update or delete."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, entry: AuditLog) -> None:
        with _store_errors("audit_logs.create"), self.engine.begin() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    id=entry.id,
                    user_id=entry.user_id,
                    action=entry.action.value,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    metadata_json=json.dumps(entry.metadata, default=str),
                    created_at=_iso(entry.created_at),
                )
            )

    def list_by_user(self, user_id: str, limit: int = 100) -> list[AuditLog]:
        """Return a user's audit entries, newest first."""
        with _store_errors("audit_logs.list_by_user"), self.engine.connect() as conn:
            rows = conn.execute(
                _audit_logs.select()
                .where(_audit_logs.c.user_id == user_id)
                .order_by(_audit_logs.c.created_at.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_audit(r) for r in rows]


class CredentialDatabase:
    """Owns the engine and the three repositories built on it.

    Usage:
        db = CredentialDatabase("sqlite:///authkeep.db")
        db.users.find_by_email("a@example.com")
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        self.users = SQLUserStore(self.engine)
        self.refresh_tokens = SQLRefreshTokenStore(self.engine)
        self.audit = SQLAuditStore(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_to_row(user: User) -> dict:
    return {
        "id": user.id,
        "email": normalize_email(user.email),
        "password_hash": user.password_hash,
        "role": user.role.value,
        "is_verified": 1 if user.is_verified else 0,
        "failed_login_attempts": user.failed_login_attempts,
        "is_locked": 1 if user.is_locked else 0,
        "locked_until": _iso(user.locked_until),
        "last_login_at": _iso(user.last_login_at),
        "last_login_ip": user.last_login_ip,
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        is_verified=bool(row.is_verified),
        failed_login_attempts=row.failed_login_attempts,
        is_locked=bool(row.is_locked),
        locked_until=_parse(row.locked_until),
        last_login_at=_parse(row.last_login_at),
        last_login_ip=row.last_login_ip or "",
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _token_to_row(token: RefreshToken) -> dict:
    return {
        "id": token.id,
        "user_id": token.user_id,
        "token_hash": token.token_hash,
        "expires_at": _iso(token.expires_at),
        "is_revoked": 1 if token.is_revoked else 0,
        "created_at": _iso(token.created_at),
        "updated_at": _iso(token.updated_at),
    }


def _row_to_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=_parse(row.expires_at),
        is_revoked=bool(row.is_revoked),
        created_at=_parse(row.created_at),
        updated_at=_parse(row.updated_at),
    )


def _row_to_audit(row) -> AuditLog:
    return AuditLog(
        id=row.id,
        user_id=row.user_id,
        action=AuditAction(row.action),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        metadata=json.loads(row.metadata_json or "{}"),
        created_at=_parse(row.created_at),
    )
