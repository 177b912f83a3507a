"""
auth/tokens.py -- Access-token signing and refresh-token generation.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY
       and carry user_id and expiry. Validation pins the algorithm list to
       HS256, so an "alg": "none" or RS/HS confusion token is rejected before
       the signature is even considered.

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits of entropy --
       brute-force is computationally infeasible. Only SHA-256(plaintext) is
       stored. A plain digest (no salt, no bcrypt) is correct here: the input
       is already high-entropy, and a deterministic hash is what allows an
       O(1) lookup of a presented token by its stored hash.

  SECRET_KEY: sourced from core.config.get_settings() by the caller and passed
       in, so tests can build an issuer with any key.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError

_ALGORITHM = "HS256"
_REFRESH_TOKEN_BYTES = 32


class JWTTokenIssuer:
    """Production TokenIssuer.

    Usage:
        issuer = JWTTokenIssuer(secret_key=settings.secret_key, access_token_ttl=900)
        token = issuer.issue_access_token(user.id)
        user_id = issuer.validate_access_token(token)
    """

    def __init__(self, secret_key: str, access_token_ttl: int) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self._access_token_ttl = access_token_ttl

    @property
    def access_token_ttl(self) -> int:
        return self._access_token_ttl

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "user_id": user_id,
            "iat": now,
            "exp": now + timedelta(seconds=self._access_token_ttl),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate_access_token(self, token: str) -> str:
        """Verify signature, algorithm and expiry; return the user id claim.

        Raises TokenExpiredError for a well-signed but expired token and
        InvalidTokenError for everything else (bad signature, wrong algorithm,
        malformed token, missing user_id).
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc
        user_id = payload.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidTokenError("user_id missing in token.")
        return user_id

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(self) -> tuple[str, str]:
        plaintext = secrets.token_urlsafe(_REFRESH_TOKEN_BYTES)
        return plaintext, self.hash_token(plaintext)

    def hash_token(self, plaintext: str) -> str:
        """Unpadded base64url SHA-256 digest. Deterministic for a given plaintext."""
        digest = hashlib.sha256(plaintext.encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
