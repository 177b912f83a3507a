"""
auth/memory.py -- In-memory implementations of the store ports.

Used by the unit tests and by anything embedding AuthService without a
database. Each store owns one threading.Lock and holds it for the whole of
every operation, which gives the same per-row atomicity the SQL stores get
from transactions (increment_failed_login, rotate).

Entities are copied on the way in and on the way out so callers can never
mutate stored state by holding on to a returned object.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime

from auth.errors import StoreError, UserAlreadyExistsError
from auth.models import AuditLog, RefreshToken, User, normalize_email, utcnow


class InMemoryUserStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, User] = {}

    def _find_email(self, email: str) -> User | None:
        key = normalize_email(email)
        for user in self._by_id.values():
            if user.email == key:
                return user
        return None

    def create(self, user: User) -> None:
        with self._lock:
            if self._find_email(user.email) is not None:
                raise UserAlreadyExistsError()
            stored = copy.deepcopy(user)
            stored.email = normalize_email(stored.email)
            self._by_id[stored.id] = stored

    def find_by_id(self, user_id: str) -> User | None:
        with self._lock:
            user = self._by_id.get(user_id)
            return copy.deepcopy(user) if user is not None else None

    def find_by_email(self, email: str) -> User | None:
        with self._lock:
            user = self._find_email(email)
            return copy.deepcopy(user) if user is not None else None

    def exists_by_email(self, email: str) -> bool:
        with self._lock:
            return self._find_email(email) is not None

    def update(self, user: User) -> bool:
        with self._lock:
            if user.id not in self._by_id:
                return False
            stored = copy.deepcopy(user)
            stored.email = normalize_email(stored.email)
            self._by_id[user.id] = stored
            return True

    def increment_failed_login(self, user_id: str, max_attempts: int, locked_until: datetime) -> User | None:
        with self._lock:
            user = self._by_id.get(user_id)
            if user is None:
                return None
            user.failed_login_attempts += 1
            user.updated_at = utcnow()
            if user.failed_login_attempts >= max_attempts:
                user.is_locked = True
                user.locked_until = locked_until
            return copy.deepcopy(user)

    def clear_expired_lock(self, user_id: str, now: datetime) -> bool:
        with self._lock:
            user = self._by_id.get(user_id)
            if user is None or not user.has_expired_lock(now):
                return False
            user.clear_lockout()
            user.updated_at = now
            return True

    def record_successful_login(self, user_id: str, ip_address: str, now: datetime) -> bool:
        with self._lock:
            user = self._by_id.get(user_id)
            if user is None:
                return False
            user.record_login(ip_address, now)
            return True

    def update_password_hash(self, user_id: str, password_hash: str, now: datetime) -> bool:
        with self._lock:
            user = self._by_id.get(user_id)
            if user is None:
                return False
            user.set_password_hash(password_hash, now)
            return True


class InMemoryRefreshTokenStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_hash: dict[str, RefreshToken] = {}

    def create(self, token: RefreshToken) -> None:
        with self._lock:
            if token.token_hash in self._by_hash:
                raise StoreError("Duplicate refresh token hash.")
            self._by_hash[token.token_hash] = copy.deepcopy(token)

    def find_by_hash(self, token_hash: str) -> RefreshToken | None:
        with self._lock:
            token = self._by_hash.get(token_hash)
            return copy.deepcopy(token) if token is not None else None

    def _revoke(self, token_hash: str) -> bool:
        token = self._by_hash.get(token_hash)
        if token is None or token.is_revoked:
            return False
        token.revoke(utcnow())
        return True

    def revoke_by_hash(self, token_hash: str) -> bool:
        with self._lock:
            return self._revoke(token_hash)

    def revoke_all_by_user(self, user_id: str) -> int:
        with self._lock:
            live = [t for t in self._by_hash.values() if t.user_id == user_id and not t.is_revoked]
            now = utcnow()
            for token in live:
                token.revoke(now)
            return len(live)

    def rotate(self, old_hash: str, replacement: RefreshToken) -> bool:
        with self._lock:
            if replacement.token_hash in self._by_hash:
                raise StoreError("Duplicate refresh token hash.")
            if not self._revoke(old_hash):
                return False
            self._by_hash[replacement.token_hash] = copy.deepcopy(replacement)
            return True

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [h for h, t in self._by_hash.items() if t.expires_at < now]
            for token_hash in expired:
                del self._by_hash[token_hash]
            return len(expired)

    def all_for_user(self, user_id: str) -> list[RefreshToken]:
        """Test helper: every stored token of a user, revoked or not."""
        with self._lock:
            return [copy.deepcopy(t) for t in self._by_hash.values() if t.user_id == user_id]


class InMemoryAuditStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[AuditLog] = []

    def create(self, entry: AuditLog) -> None:
        with self._lock:
            self._entries.append(entry)

    def list_by_user(self, user_id: str, limit: int = 100) -> list[AuditLog]:
        with self._lock:
            matching = [e for e in self._entries if e.user_id == user_id]
        return list(reversed(matching))[:limit]

    @property
    def entries(self) -> list[AuditLog]:
        """Every entry in insertion order."""
        with self._lock:
            return list(self._entries)
