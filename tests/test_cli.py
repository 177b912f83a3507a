"""
tests/test_cli.py -- Tests for the maintenance CLI in main.py.

Each test points DATABASE_URL at a throwaway SQLite file under tmp_path and
clears the get_settings() cache so the CLI reads it.

Covers:
  - create-admin creates a verified admin and rejects duplicates
  - create-admin rejects invalid emails, mismatched and weak passwords
  - purge-tokens removes only expired refresh tokens
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import timedelta

import pytest

import main
from auth.models import RefreshToken, Role, utcnow
from auth.store import CredentialDatabase
from core.config import get_settings


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> Generator[str, None, None]:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


def _answers(monkeypatch, *values: str) -> None:
    replies = iter(values)
    monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": next(replies))


class TestCreateAdmin:
    def test_creates_verified_admin(self, db_url: str, monkeypatch, capsys) -> None:
        _answers(monkeypatch, "Adm1n!Secret", "Adm1n!Secret")
        assert main.main(["create-admin", "Root@Example.com"]) == 0
        assert "root@example.com" in capsys.readouterr().out

        database = CredentialDatabase(db_url)
        try:
            user = database.users.find_by_email("root@example.com")
        finally:
            database.close()
        assert user.role is Role.ADMIN
        assert user.is_verified is True

    def test_duplicate(self, db_url: str, monkeypatch, capsys) -> None:
        _answers(monkeypatch, "Adm1n!Secret", "Adm1n!Secret", "Adm1n!Secret", "Adm1n!Secret")
        assert main.main(["create-admin", "root@example.com"]) == 0
        assert main.main(["create-admin", "root@example.com"]) == 1
        assert "already exists" in capsys.readouterr().out

    def test_mismatched_passwords(self, db_url: str, monkeypatch, capsys) -> None:
        _answers(monkeypatch, "Adm1n!Secret", "Different!1")
        assert main.main(["create-admin", "root@example.com"]) == 1
        assert "do not match" in capsys.readouterr().out

    def test_invalid_email(self, db_url: str, monkeypatch, capsys) -> None:
        """The address is checked before any password prompt."""
        monkeypatch.setattr(main.getpass, "getpass", lambda prompt="": pytest.fail("prompted for a password"))
        assert main.main(["create-admin", "not-an-email"]) == 1
        assert "Invalid email address" in capsys.readouterr().out

        database = CredentialDatabase(db_url)
        try:
            assert database.users.find_by_email("not-an-email") is None
        finally:
            database.close()

    def test_weak_password(self, db_url: str, monkeypatch, capsys) -> None:
        _answers(monkeypatch, "weak", "weak")
        assert main.main(["create-admin", "root@example.com"]) == 1
        out = capsys.readouterr().out
        assert "Password rejected" in out
        assert "at least 8 characters" in out


class TestPurgeTokens:
    def test_purges_expired_only(self, db_url: str, capsys) -> None:
        database = CredentialDatabase(db_url)
        now = utcnow()
        try:
            database.refresh_tokens.create(RefreshToken.issue("u1", "old", timedelta(days=1), now - timedelta(days=2)))
            database.refresh_tokens.create(RefreshToken.issue("u1", "live", timedelta(days=1), now))
        finally:
            database.close()

        assert main.main(["purge-tokens"]) == 0
        assert "1 expired refresh token(s) removed" in capsys.readouterr().out

        database = CredentialDatabase(db_url)
        try:
            assert database.refresh_tokens.find_by_hash("old") is None
            assert database.refresh_tokens.find_by_hash("live") is not None
        finally:
            database.close()
