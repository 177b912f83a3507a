"""
auth/errors.py -- Typed error taxonomy for the credential lifecycle.

Every failure AuthService raises is an AuthError subclass carrying one of the
ErrorKind values below. The API layer maps kind -> HTTP status in a single
exception handler, so callers never see a bare or untyped error.

Expected conditions (bad password, locked account, stale token) and the one
infrastructure kind (StoreError) share the hierarchy so a route handler can
catch AuthError once. StoreError is the only kind that indicates the
operation did not run to completion.

Layer rule: stdlib only.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum


class ErrorKind(str, Enum):
    USER_NOT_FOUND = "user_not_found"
    USER_ALREADY_EXISTS = "user_already_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    WEAK_PASSWORD = "weak_password"
    INVALID_PASSWORD = "invalid_password"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    MISSING_TOKEN = "missing_token"
    INVALID_INPUT = "invalid_input"
    STORE_FAILURE = "store_failure"


class AuthError(Exception):
    """Base class. Subclasses pin `kind` and a default user-facing message."""

    kind: ErrorKind = ErrorKind.STORE_FAILURE
    default_message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class UserNotFoundError(AuthError):
    kind = ErrorKind.USER_NOT_FOUND
    default_message = "User not found."


class UserAlreadyExistsError(AuthError):
    kind = ErrorKind.USER_ALREADY_EXISTS
    default_message = "User already exists."


class InvalidCredentialsError(AuthError):
    """Wrong password OR unknown email. Deliberately indistinguishable outward."""

    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid credentials."


class AccountLockedError(AuthError):
    kind = ErrorKind.ACCOUNT_LOCKED
    default_message = "Account is locked. Please try again later."

    def __init__(self, locked_until: datetime | None = None, message: str | None = None) -> None:
        # None means the lock is indefinite.
        self.locked_until = locked_until
        super().__init__(message)


class WeakPasswordError(AuthError):
    """Password rejected by PasswordPolicy. `reasons` lists every failed rule."""

    kind = ErrorKind.WEAK_PASSWORD
    default_message = (
        "Password is too weak. Must be at least 8 characters with uppercase, "
        "lowercase, number, and special character."
    )

    def __init__(self, reasons: list[str] | None = None, message: str | None = None) -> None:
        self.reasons = list(reasons or [])
        super().__init__(message)


class InvalidPasswordError(AuthError):
    """Old-password mismatch during a password change."""

    kind = ErrorKind.INVALID_PASSWORD
    default_message = "Invalid password."


class InvalidTokenError(AuthError):
    kind = ErrorKind.INVALID_TOKEN
    default_message = "Invalid or expired token."


class TokenExpiredError(AuthError):
    kind = ErrorKind.TOKEN_EXPIRED
    default_message = "Invalid or expired token."


class TokenRevokedError(AuthError):
    kind = ErrorKind.TOKEN_REVOKED
    default_message = "Invalid or expired token."


class MissingTokenError(AuthError):
    kind = ErrorKind.MISSING_TOKEN
    default_message = "Missing refresh token."


class InvalidInputError(AuthError):
    """Malformed identifier (e.g. a user id that is not a UUID)."""

    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input."


class StoreError(AuthError):
    """Opaque persistence failure. Never retried inside the core."""

    kind = ErrorKind.STORE_FAILURE
    default_message = "Storage operation failed."
