"""
auth/passwords.py -- Password strength policy and bcrypt hashing.

PasswordPolicy: stateless strength check run on Register, ChangePassword and
    the create-admin CLI. Collects every failed rule before raising so the
    API can tell the user everything that is wrong in one response.

BcryptHasher: bcrypt directly, no passlib wrapper. passlib's internal
    wrap-bug detection creates a password longer than 72 bytes, which bcrypt
    4.x rejects with an explicit error. Direct bcrypt usage is simpler and has
    no compatibility shim.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import unicodedata

import bcrypt

from auth.errors import WeakPasswordError

# bcrypt only reads the first 72 bytes; current bcrypt releases raise on more.
_BCRYPT_MAX_BYTES = 72

DEFAULT_DENY_LIST: tuple[str, ...] = (
    "password",
    "12345678",
    "qwerty",
    "abc123",
    "password123",
)


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def _is_special(char: str) -> bool:
    # Unicode punctuation (P*) or symbol (S*) categories.
    return unicodedata.category(char)[0] in ("P", "S")


class PasswordPolicy:
    """Configurable password strength rules.

    The deny-list is matched case-insensitively as a substring, so
    "MyPassword1!" is rejected because it contains "password".
    """

    def __init__(
        self,
        min_length: int = 8,
        require_upper: bool = True,
        require_lower: bool = True,
        require_digit: bool = True,
        require_special: bool = True,
        deny_list: tuple[str, ...] | list[str] = DEFAULT_DENY_LIST,
    ) -> None:
        self.min_length = min_length
        self.require_upper = require_upper
        self.require_lower = require_lower
        self.require_digit = require_digit
        self.require_special = require_special
        self.deny_list = tuple(word.lower() for word in deny_list if word)

    def violations(self, password: str) -> list[str]:
        """Return a human-readable reason for every rule the password fails."""
        reasons: list[str] = []
        if len(password) < self.min_length:
            reasons.append(f"must be at least {self.min_length} characters")
        if self.require_upper and not any(c.isupper() for c in password):
            reasons.append("must contain an uppercase letter")
        if self.require_lower and not any(c.islower() for c in password):
            reasons.append("must contain a lowercase letter")
        if self.require_digit and not any(c.isdigit() for c in password):
            reasons.append("must contain a digit")
        if self.require_special and not any(_is_special(c) for c in password):
            reasons.append("must contain a punctuation or symbol character")
        lowered = password.lower()
        if any(word in lowered for word in self.deny_list):
            reasons.append("must not contain a common password")
        return reasons

    def validate_strength(self, password: str) -> None:
        reasons = self.violations(password)
        if reasons:
            raise WeakPasswordError(reasons)


class BcryptHasher:
    """bcrypt password hashing with a configurable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Input is cut to its first 72 bytes before hashing. The API layer caps
        input at 128 characters.
        """
        return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except ValueError:
            # Malformed or non-bcrypt hash.
            return False

    def dummy_verify(self, plain: str) -> None:
        """Timing equalization for unknown accounts.

        Runs a full bcrypt check against a throwaway hash of the same cost so
        the response time of "no such user" matches "wrong password".
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("authkeep_timing_dummy")
        self.verify(plain, self._dummy_hash)
