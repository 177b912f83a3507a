"""
auth/service.py -- AuthService: the credential lifecycle orchestrator.

Composes the store ports, the token issuer, the password hasher and the
password policy into the public operations:

  register, login, refresh, logout, logout_all, change_password,
  get_profile, verify_access_token, purge_expired_tokens

Every failure is an auth.errors.AuthError subclass. Audit writes are
best-effort: _audit() logs and swallows any exception, so an audit outage can
never block authentication.

Lockout policy (per user):
  - N consecutive wrong passwords (N = max_login_attempts) lock the account
    for account_lock_duration. The Nth attempt itself already answers
    AccountLocked.
  - While locked, even the correct password is refused.
  - Once the lock window has passed, the next login clears the stale lock
    flags and the failed counter in the store before the password check, so
    the user starts again with a full set of attempts.
  - Any successful login resets the counter.

Refresh tokens are strictly single-use. Rotation revokes the presented token
and inserts its replacement in one store transaction; a token that has been
rotated, revoked or has expired never re-authorizes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth import ports
from auth.errors import (
    AccountLockedError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidPasswordError,
    InvalidTokenError,
    MissingTokenError,
    StoreError,
    TokenExpiredError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from auth.models import (
    UNKNOWN_USER_ID,
    AuditAction,
    AuditLog,
    LoginResult,
    RefreshToken,
    Role,
    TokenPair,
    User,
    UserProfile,
    normalize_email,
    utcnow,
)
from auth.passwords import BcryptHasher, PasswordPolicy
from auth.tokens import JWTTokenIssuer

logger = logging.getLogger("authkeep.auth")


@dataclass(frozen=True)
class AuthConfig:
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=30)
    max_login_attempts: int = 5
    account_lock_duration: timedelta = timedelta(minutes=15)

    @classmethod
    def from_settings(cls, settings) -> AuthConfig:
        """Build from core.config.Settings."""
        return cls(
            access_token_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_token_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            max_login_attempts=settings.max_login_attempts,
            account_lock_duration=timedelta(seconds=settings.account_lock_seconds),
        )


def _parse_user_id(user_id: str | None) -> str:
    """Return the canonical UUID string or raise InvalidInputError."""
    if not user_id:
        raise InvalidInputError("Missing user id.")
    try:
        return str(uuid.UUID(str(user_id)))
    except ValueError as exc:
        raise InvalidInputError("Malformed user id.") from exc


class AuthService:
    """Use-case layer for the credential lifecycle.

    Stateless between calls: everything durable lives behind the store
    ports. `clock` exists so tests can move time forward across a lockout
    window or past a token expiry.
    """

    def __init__(
        self,
        users: ports.UserStore,
        refresh_tokens: ports.RefreshTokenStore,
        audit: ports.AuditStore,
        tokens: ports.TokenIssuer,
        hasher: ports.PasswordHasher,
        policy: ports.PasswordPolicy,
        config: AuthConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users = users
        self._refresh_tokens = refresh_tokens
        self._audit_store = audit
        self._tokens = tokens
        self._hasher = hasher
        self._policy = policy
        self._config = config or AuthConfig()
        self._clock = clock

    @property
    def config(self) -> AuthConfig:
        return self._config

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, role: Role = Role.USER, verified: bool = False) -> UserProfile:
        """Create an account. Issues no tokens.

        role/verified are for operator tooling (the create-admin command);
        the public API always registers unverified plain users.
        """
        email = normalize_email(email)
        if self._users.exists_by_email(email):
            raise UserAlreadyExistsError()
        self._policy.validate_strength(password)

        now = self._clock()
        user = User(
            email=email,
            password_hash=self._hasher.hash(password),
            role=role,
            is_verified=verified,
            created_at=now,
            updated_at=now,
        )
        # create() raises UserAlreadyExistsError itself if a concurrent
        # registration took the email after the exists check.
        self._users.create(user)
        self._audit(user.id, AuditAction.REGISTER)
        logger.info("Registered user %s (role=%s)", user.id, role.value)
        return user.profile()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip_address: str = "", user_agent: str = "") -> LoginResult:
        email = normalize_email(email)
        user = self._users.find_by_email(email)
        if user is None:
            # Same bcrypt cost as a real check: no user enumeration by timing.
            self._hasher.dummy_verify(password)
            self._audit(
                UNKNOWN_USER_ID,
                AuditAction.LOGIN_FAILED,
                ip_address,
                user_agent,
                metadata={"email": email},
            )
            logger.warning("Login failed for unknown email from %s", ip_address or "unknown")
            raise InvalidCredentialsError()

        now = self._clock()
        if user.is_account_locked(now):
            self._audit(user.id, AuditAction.ACCOUNT_LOCKED, ip_address, user_agent)
            logger.warning("Login refused for locked user %s", user.id)
            raise AccountLockedError(user.locked_until)

        if user.has_expired_lock(now):
            self._users.clear_expired_lock(user.id, now)
            user.clear_lockout()

        if not self._hasher.verify(password, user.password_hash):
            self._record_failed_login(user, now, ip_address, user_agent)

        # Narrow write: a password change committed during verify must survive.
        self._users.record_successful_login(user.id, ip_address, now)
        user.record_login(ip_address, now)

        access_token = self._tokens.issue_access_token(user.id)
        refresh_plain, refresh_hash = self._tokens.issue_refresh_token()
        self._refresh_tokens.create(RefreshToken.issue(user.id, refresh_hash, self._config.refresh_token_ttl, now))

        self._audit(user.id, AuditAction.LOGIN, ip_address, user_agent)
        logger.info("User %s logged in from %s", user.id, ip_address or "unknown")
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_plain,
            expires_in=self._tokens.access_token_ttl,
            user=user.profile(),
        )

    def _record_failed_login(self, user: User, now: datetime, ip_address: str, user_agent: str) -> None:
        """Count the failure atomically in the store, audit it, and raise."""
        updated = self._users.increment_failed_login(
            user.id,
            self._config.max_login_attempts,
            now + self._config.account_lock_duration,
        )
        attempts = updated.failed_login_attempts if updated is not None else user.failed_login_attempts + 1
        self._audit(
            user.id,
            AuditAction.LOGIN_FAILED,
            ip_address,
            user_agent,
            metadata={"failed_attempts": attempts},
        )
        if updated is not None and updated.is_account_locked(now):
            self._audit(
                user.id,
                AuditAction.ACCOUNT_LOCKED,
                ip_address,
                user_agent,
                metadata={"locked_until": updated.locked_until.isoformat() if updated.locked_until else None},
            )
            logger.warning("User %s locked after %d failed attempts", user.id, attempts)
            raise AccountLockedError(updated.locked_until)
        logger.warning("Login failed for user %s (%d consecutive)", user.id, attempts)
        raise InvalidCredentialsError()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, presented: str | None) -> TokenPair:
        if not presented:
            raise MissingTokenError()

        old_hash = self._tokens.hash_token(presented)
        stored = self._refresh_tokens.find_by_hash(old_hash)
        if stored is None:
            raise InvalidTokenError()

        now = self._clock()
        if not stored.is_valid(now):
            logger.warning("Refresh with stale token for user %s (revoked=%s)", stored.user_id, stored.is_revoked)
            raise TokenExpiredError()

        new_plain, new_hash = self._tokens.issue_refresh_token()
        replacement = RefreshToken.issue(stored.user_id, new_hash, self._config.refresh_token_ttl, now)
        if not self._refresh_tokens.rotate(old_hash, replacement):
            # Lost the race against a concurrent refresh of the same token.
            logger.warning("Concurrent reuse of refresh token for user %s", stored.user_id)
            raise TokenExpiredError()

        access_token = self._tokens.issue_access_token(stored.user_id)
        self._audit(stored.user_id, AuditAction.TOKEN_REFRESH)
        return TokenPair(
            access_token=access_token,
            refresh_token=new_plain,
            expires_in=self._tokens.access_token_ttl,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(
        self,
        user_id: str | None,
        presented: str | None,
        ip_address: str = "",
        user_agent: str = "",
    ) -> None:
        """End one session. Never raises: partial failures are logged only."""
        if presented:
            try:
                self._refresh_tokens.revoke_by_hash(self._tokens.hash_token(presented))
            except StoreError:
                logger.warning("Could not revoke refresh token during logout", exc_info=True)

        try:
            canonical_id = _parse_user_id(user_id)
        except InvalidInputError:
            return
        self._audit(canonical_id, AuditAction.LOGOUT, ip_address, user_agent)
        logger.info("User %s logged out", canonical_id)

    def logout_all(self, user_id: str, ip_address: str = "", user_agent: str = "") -> int:
        """Revoke every live refresh token of the user. Returns how many were revoked."""
        canonical_id = _parse_user_id(user_id)
        revoked = self._refresh_tokens.revoke_all_by_user(canonical_id)
        self._audit(
            canonical_id,
            AuditAction.LOGOUT,
            ip_address,
            user_agent,
            metadata={"all_sessions": True},
        )
        logger.info("User %s logged out of all sessions (%d revoked)", canonical_id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        """Replace the password and revoke every refresh token of the user.

        Revoking all sessions forces re-login on every other device.
        """
        canonical_id = _parse_user_id(user_id)
        user = self._users.find_by_id(canonical_id)
        if user is None:
            raise UserNotFoundError()
        if not self._hasher.verify(old_password, user.password_hash):
            raise InvalidPasswordError()
        self._policy.validate_strength(new_password)

        if not self._users.update_password_hash(canonical_id, self._hasher.hash(new_password), self._clock()):
            raise UserNotFoundError()

        try:
            self._refresh_tokens.revoke_all_by_user(canonical_id)
        except StoreError:
            logger.error("Password changed for user %s but session revocation failed", canonical_id)
            raise
        self._audit(canonical_id, AuditAction.PASSWORD_CHANGE)
        logger.info("User %s changed password", canonical_id)

    def get_profile(self, user_id: str) -> UserProfile:
        canonical_id = _parse_user_id(user_id)
        user = self._users.find_by_id(canonical_id)
        if user is None:
            raise UserNotFoundError()
        return user.profile()

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def verify_access_token(self, token: str | None) -> str:
        """Return the user id embedded in a valid access token."""
        if not token:
            raise MissingTokenError("Missing access token.")
        return self._tokens.validate_access_token(token)

    def purge_expired_tokens(self) -> int:
        """Delete expired refresh tokens. Returns the number removed."""
        removed = self._refresh_tokens.delete_expired(self._clock())
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _audit(
        self,
        user_id: str,
        action: AuditAction,
        ip_address: str = "",
        user_agent: str = "",
        metadata: dict | None = None,
    ) -> None:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=metadata or {},
            created_at=self._clock(),
        )
        try:
            self._audit_store.create(entry)
        except Exception:
            logger.warning("Audit write failed for action %s", action.value, exc_info=True)


def build_auth_service(database, settings, clock: Callable[[], datetime] = utcnow) -> AuthService:
    """Wire the production AuthService from a CredentialDatabase and Settings.

    Shared by the API lifespan and the maintenance CLI.
    """
    return AuthService(
        users=database.users,
        refresh_tokens=database.refresh_tokens,
        audit=database.audit,
        tokens=JWTTokenIssuer(settings.secret_key, settings.access_token_ttl_seconds),
        hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
        policy=PasswordPolicy(),
        config=AuthConfig.from_settings(settings),
        clock=clock,
    )
