"""
auth/ports.py -- Capability interfaces consumed by AuthService.

Each port is a typing.Protocol: implementations satisfy it structurally, no
base class required. Two implementations exist for every store port:

  auth/store.py   -- SQLAlchemy Core (production)
  auth/memory.py  -- dict + threading.Lock (tests, embedding)

Store contract:
  - "not found" is signalled by returning None / False / 0, never by raising.
  - Infrastructure failures raise auth.errors.StoreError.
  - UserStore.create raises UserAlreadyExistsError when the email is taken,
    including when a concurrent insert wins the UNIQUE race.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import AuditLog, RefreshToken, User


class UserStore(Protocol):
    def create(self, user: User) -> None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def find_by_email(self, email: str) -> User | None: ...

    def exists_by_email(self, email: str) -> bool: ...

    def update(self, user: User) -> bool: ...

    def increment_failed_login(self, user_id: str, max_attempts: int, locked_until: datetime) -> User | None:
        """Atomically add one failed attempt and lock once the count reaches max_attempts.

        The increment and the conditional lock happen in one unit of work so
        concurrent failures for the same user can never lose a count. Returns
        the updated User, or None if the user no longer exists.
        """
        ...

    def clear_expired_lock(self, user_id: str, now: datetime) -> bool:
        """Clear lock flags and the failed counter if the lock window ended at or before now.

        Conditional: a lock that is still active (or indefinite) is left
        untouched. Returns True if a row changed.
        """
        ...

    def record_successful_login(self, user_id: str, ip_address: str, now: datetime) -> bool:
        """Reset the lockout columns and stamp last_login_at/last_login_ip.

        Touches no other column, so a password change committed while the
        login was verifying is never overwritten. Returns False if the user is gone.
        """
        ...

    def update_password_hash(self, user_id: str, password_hash: str, now: datetime) -> bool: ...


class RefreshTokenStore(Protocol):
    def create(self, token: RefreshToken) -> None: ...

    def find_by_hash(self, token_hash: str) -> RefreshToken | None: ...

    def revoke_by_hash(self, token_hash: str) -> bool: ...

    def revoke_all_by_user(self, user_id: str) -> int: ...

    def rotate(self, old_hash: str, replacement: RefreshToken) -> bool:
        """Revoke old_hash and insert replacement as one unit of work.

        The revoke is conditional on the old token still being unrevoked. If
        it matched nothing (already revoked, e.g. a concurrent refresh won),
        nothing is inserted and False is returned.
        """
        ...

    def delete_expired(self, now: datetime) -> int: ...


class AuditStore(Protocol):
    def create(self, entry: AuditLog) -> None: ...

    def list_by_user(self, user_id: str, limit: int = 100) -> list[AuditLog]: ...


class TokenIssuer(Protocol):
    @property
    def access_token_ttl(self) -> int:
        """Access-token lifetime in seconds."""
        ...

    def issue_access_token(self, user_id: str) -> str: ...

    def issue_refresh_token(self) -> tuple[str, str]:
        """Return (plaintext, hash). Only the hash may be persisted."""
        ...

    def hash_token(self, plaintext: str) -> str: ...

    def validate_access_token(self, token: str) -> str:
        """Return the embedded user id; raise InvalidTokenError / TokenExpiredError."""
        ...


class PasswordHasher(Protocol):
    def hash(self, plain: str) -> str: ...

    def verify(self, plain: str, hashed: str) -> bool: ...

    def dummy_verify(self, plain: str) -> None:
        """Burn the same work as verify() for an account that does not exist."""
        ...


class PasswordPolicy(Protocol):
    def validate_strength(self, password: str) -> None: ...
