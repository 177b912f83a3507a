"""
tests/test_models.py -- Unit tests for the entity state transitions in auth.models.

Covers:
  - User lockout predicates (timed, indefinite, expired)
  - record_login resets lockout state
  - RefreshToken validity (revoked, expired, boundary)
  - password hash never appears in repr; profile() omits it
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.models import UNKNOWN_USER_ID, RefreshToken, Role, User, normalize_email

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _user(**kwargs) -> User:
    return User(email="a@x.com", password_hash="$2b$04$secret", **kwargs)


class TestUserLockout:
    def test_unlocked_by_default(self) -> None:
        assert not _user().is_account_locked(NOW)

    def test_timed_lock(self) -> None:
        user = _user(is_locked=True, locked_until=NOW + timedelta(minutes=15))
        assert user.is_account_locked(NOW)
        assert user.is_account_locked(NOW + timedelta(minutes=14, seconds=59))
        assert not user.is_account_locked(NOW + timedelta(minutes=15))

    def test_indefinite_lock(self) -> None:
        user = _user(is_locked=True)
        assert user.is_account_locked(NOW + timedelta(days=365))
        assert not user.has_expired_lock(NOW + timedelta(days=365))

    def test_expired_lock_detected(self) -> None:
        user = _user(is_locked=True, locked_until=NOW)
        assert user.has_expired_lock(NOW)
        assert not user.has_expired_lock(NOW - timedelta(seconds=1))

    def test_record_login_resets(self) -> None:
        user = _user(failed_login_attempts=3, is_locked=True, locked_until=NOW)
        user.record_login("10.0.0.1", NOW)
        assert user.failed_login_attempts == 0
        assert not user.is_locked
        assert user.locked_until is None
        assert user.last_login_at == NOW
        assert user.last_login_ip == "10.0.0.1"


class TestUserProjection:
    def test_repr_hides_password_hash(self) -> None:
        assert "$2b$04$secret" not in repr(_user())

    def test_profile(self) -> None:
        user = _user(role=Role.ADMIN, is_verified=True)
        profile = user.profile()
        assert profile.id == user.id
        assert profile.role is Role.ADMIN
        assert "password_hash" not in profile.to_dict()
        assert profile.to_dict()["role"] == "admin"


class TestRefreshToken:
    def test_issue_sets_expiry(self) -> None:
        token = RefreshToken.issue("u1", "h1", timedelta(days=30), NOW)
        assert token.expires_at == NOW + timedelta(days=30)
        assert token.is_valid(NOW)

    def test_expiry_boundary(self) -> None:
        token = RefreshToken.issue("u1", "h1", timedelta(seconds=10), NOW)
        assert token.is_valid(NOW + timedelta(seconds=9))
        assert not token.is_valid(NOW + timedelta(seconds=10))

    def test_revoked_is_invalid(self) -> None:
        token = RefreshToken.issue("u1", "h1", timedelta(days=30), NOW)
        token.revoke(NOW)
        assert not token.is_valid(NOW)


def test_normalize_email() -> None:
    assert normalize_email("  A@X.Com ") == "a@x.com"


def test_unknown_user_id_is_nil_uuid() -> None:
    assert UNKNOWN_USER_ID == "00000000-0000-0000-0000-000000000000"
