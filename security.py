"""Password hashing and the four signed token categories.

Access, refresh, email-verification and password-reset tokens are all HS256
JWTs, but each category is signed with its own secret and carries a ``type``
claim, so a token minted for one purpose never verifies for another.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import Settings

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"
EMAIL_VERIFY = "email_verify"
PASSWORD_RESET = "password_reset"


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpiredError(TokenError):
    pass


class TokenInvalidError(TokenError):
    pass


class PasswordHasher:
    def __init__(self, rounds: int = 10):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return self._context.verify(password, password_hash)
        except ValueError:
            # Unrecognised or corrupt stored digest
            return False


class TokenService:
    def __init__(self, settings: Settings):
        self.algorithm = settings.jwt_algorithm
        self.secrets = {
            ACCESS: settings.access_token_secret,
            REFRESH: settings.refresh_token_secret,
            EMAIL_VERIFY: settings.email_verify_token_secret,
            PASSWORD_RESET: settings.password_reset_token_secret,
        }
        self.lifetimes = {
            ACCESS: timedelta(minutes=settings.access_token_expire_minutes),
            REFRESH: timedelta(seconds=settings.refresh_token_expire_seconds),
            EMAIL_VERIFY: timedelta(minutes=settings.email_verify_token_expire_minutes),
            PASSWORD_RESET: timedelta(minutes=settings.password_reset_token_expire_minutes),
        }

    # -----------------------------
    # Issuing
    # -----------------------------
    def _encode(
        self,
        kind: str,
        claims: Dict[str, Any],
        expires_at: Optional[datetime] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        if expires_at is None:
            expires_at = now + (expires_delta if expires_delta is not None else self.lifetimes[kind])
        to_encode = dict(claims)
        to_encode.update({
            "type": kind,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        })
        return jwt.encode(to_encode, self.secrets[kind], algorithm=self.algorithm)

    def create_access_token(self, user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        claims = {
            "sub": str(user["_id"]),
            "username": user.get("username"),
            "email": user.get("email"),
            "role": user.get("role", "user"),
        }
        return self._encode(ACCESS, claims, expires_delta=expires_delta)

    def create_refresh_token(self, user: Dict[str, Any], expires_at: Optional[datetime] = None) -> str:
        """Mint a refresh token.

        A fresh login gets the full refresh lifetime. Rotation passes the
        presented token's ``exp`` as ``expires_at`` so the session keeps its
        original absolute deadline instead of sliding forward.
        """
        claims = {"sub": str(user["_id"]), "email": user.get("email")}
        return self._encode(REFRESH, claims, expires_at=expires_at)

    def create_email_verify_token(self, email: str, expires_delta: Optional[timedelta] = None) -> str:
        return self._encode(EMAIL_VERIFY, {"email": email}, expires_delta=expires_delta)

    def create_password_reset_token(self, email: str, expires_delta: Optional[timedelta] = None) -> str:
        return self._encode(PASSWORD_RESET, {"email": email}, expires_delta=expires_delta)

    # -----------------------------
    # Verifying
    # -----------------------------
    def _decode(self, kind: str, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secrets[kind], algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError(f"{kind} token expired")
        except JWTError as e:
            raise TokenInvalidError(f"{kind} token invalid: {e}")
        if payload.get("type") != kind:
            raise TokenInvalidError(f"expected {kind} token, got {payload.get('type')!r}")
        return payload

    def decode_access(self, token: str) -> Dict[str, Any]:
        return self._decode(ACCESS, token)

    def decode_refresh(self, token: str) -> Dict[str, Any]:
        return self._decode(REFRESH, token)

    def decode_email_verify(self, token: str) -> Dict[str, Any]:
        return self._decode(EMAIL_VERIFY, token)

    def decode_password_reset(self, token: str) -> Dict[str, Any]:
        return self._decode(PASSWORD_RESET, token)

    def rotate_refresh_token(self, user: Dict[str, Any], payload: Dict[str, Any]) -> str:
        """New refresh token that expires exactly when the presented one does."""
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return self.create_refresh_token(user, expires_at=expires_at)

    @staticmethod
    def seconds_remaining(payload: Dict[str, Any]) -> int:
        return max(0, int(payload["exp"] - datetime.now(timezone.utc).timestamp()))
