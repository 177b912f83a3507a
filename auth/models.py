"""
auth/models.py -- Domain dataclasses for credential lifecycle entities.

Pattern: Data class. Entities own their shape plus the small state
transitions that must stay consistent with their invariants (lockout,
token validity); stores and the service do the I/O.

Time: every timestamp is a timezone-aware UTC datetime. Methods that depend
on the current time take `now` as an argument so callers (and tests) control
the clock.

Layer rule: no imports from api/. stdlib only.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

# Audit user_id for pre-authentication failures (e.g. login with an unknown
# email). The nil UUID never collides with a generated id.
UNKNOWN_USER_ID = str(uuid.UUID(int=0))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup. Uniqueness is case-insensitive."""
    return email.strip().lower()


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class AuditAction(str, Enum):
    """Closed vocabulary of audit events."""

    REGISTER = "register"
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


@dataclass
class UserProfile:
    """Outward projection of a User. Never carries the password hash."""

    id: str
    email: str
    role: Role
    is_verified: bool
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "is_verified": self.is_verified,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class User:
    """An identity with its credential and lockout state.

    password_hash is excluded from repr so an accidental log line or
    traceback cannot leak it. Use profile() for anything leaving the core.

    Lockout: is_locked with locked_until=None is an indefinite lock (only an
    operator clears it). With locked_until set, the lock lapses on its own
    once that moment passes.
    """

    email: str
    password_hash: str = field(repr=False)
    role: Role = Role.USER
    id: str = field(default_factory=new_id)
    is_verified: bool = False
    failed_login_attempts: int = 0
    is_locked: bool = False
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    last_login_ip: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_account_locked(self, now: datetime) -> bool:
        if not self.is_locked:
            return False
        if self.locked_until is not None and now >= self.locked_until:
            return False
        return True

    def has_expired_lock(self, now: datetime) -> bool:
        """True when the stored lock flag is set but its window has passed."""
        return self.is_locked and self.locked_until is not None and now >= self.locked_until

    def clear_lockout(self) -> None:
        self.failed_login_attempts = 0
        self.is_locked = False
        self.locked_until = None

    def record_login(self, ip_address: str, now: datetime) -> None:
        """Successful login: reset lockout state and stamp last-login data."""
        self.clear_lockout()
        self.last_login_at = now
        self.last_login_ip = ip_address
        self.updated_at = now

    def set_password_hash(self, password_hash: str, now: datetime) -> None:
        self.password_hash = password_hash
        self.updated_at = now

    def profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            email=self.email,
            role=self.role,
            is_verified=self.is_verified,
            created_at=self.created_at,
        )


@dataclass
class RefreshToken:
    """Server-side record of one refresh token.

    Only token_hash is stored -- the plaintext goes to the client once and is
    never persisted. A stolen copy of the table therefore cannot be replayed.
    Revocation is one-way: nothing in the codebase sets is_revoked back to False.
    """

    user_id: str
    token_hash: str
    expires_at: datetime
    id: str = field(default_factory=new_id)
    is_revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def issue(cls, user_id: str, token_hash: str, ttl: timedelta, now: datetime) -> RefreshToken:
        return cls(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=now + ttl,
            created_at=now,
            updated_at=now,
        )

    def is_valid(self, now: datetime) -> bool:
        return not self.is_revoked and now < self.expires_at

    def revoke(self, now: datetime) -> None:
        self.is_revoked = True
        self.updated_at = now


@dataclass(frozen=True)
class AuditLog:
    """Immutable record of a security-relevant event."""

    user_id: str
    action: AuditAction
    ip_address: str = ""
    user_agent: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass
class TokenPair:
    """Result of a refresh: new access token plus the rotated refresh plaintext."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class LoginResult:
    """Result of a successful login."""

    access_token: str
    refresh_token: str
    expires_in: int
    user: UserProfile
    token_type: str = "Bearer"
