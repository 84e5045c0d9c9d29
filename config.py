"""Application settings.

Everything process-wide (database, token secrets, mail, CORS origin) lives on
one Settings object that is built once at startup and handed to create_app().
"""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "connetwork"

    # One secret per token category
    access_token_secret: str = "dev-access-secret-change-me"
    refresh_token_secret: str = "dev-refresh-secret-change-me"
    email_verify_token_secret: str = "dev-email-verify-secret-change-me"
    password_reset_token_secret: str = "dev-password-reset-secret-change-me"
    jwt_algorithm: str = "HS256"

    access_token_expire_minutes: int = Field(15, gt=0)
    refresh_token_expire_seconds: int = Field(60 * 60 * 24, gt=0)
    email_verify_token_expire_minutes: int = Field(60, gt=0)
    password_reset_token_expire_minutes: int = Field(15, gt=0)

    bcrypt_rounds: int = Field(10, ge=4, le=31)

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    mail_from: str = "Connetwork Forum <no-reply@connetwork.local>"

    frontend_url: str = "http://localhost:3000"
    cookie_secure: bool = False
    log_level: str = "INFO"

    @model_validator(mode="after")
    def secrets_are_distinct(self):
        secrets = [
            self.access_token_secret,
            self.refresh_token_secret,
            self.email_verify_token_secret,
            self.password_reset_token_secret,
        ]
        if any(not s for s in secrets):
            raise ValueError("Token secrets must not be empty")
        if len(set(secrets)) != len(secrets):
            raise ValueError("Each token category needs its own secret key")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to dev defaults."""
        defaults = cls()
        settings = cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            database_name=os.getenv("DATABASE_NAME", defaults.database_name),
            access_token_secret=os.getenv("ACCESS_TOKEN_SECRET_KEY", defaults.access_token_secret),
            refresh_token_secret=os.getenv("REFRESH_TOKEN_SECRET_KEY", defaults.refresh_token_secret),
            email_verify_token_secret=os.getenv("EMAIL_VERIFY_TOKEN_SECRET_KEY", defaults.email_verify_token_secret),
            password_reset_token_secret=os.getenv("RESET_PASSWORD_TOKEN_SECRET_KEY", defaults.password_reset_token_secret),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRATION_MINUTES", defaults.access_token_expire_minutes)),
            refresh_token_expire_seconds=int(os.getenv("REFRESH_TOKEN_EXPIRATION", defaults.refresh_token_expire_seconds)),
            email_verify_token_expire_minutes=int(os.getenv("EMAIL_VERIFY_TOKEN_EXPIRATION_MINUTES", defaults.email_verify_token_expire_minutes)),
            password_reset_token_expire_minutes=int(os.getenv("RESET_PASSWORD_TOKEN_EXPIRATION_MINUTES", defaults.password_reset_token_expire_minutes)),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", defaults.bcrypt_rounds)),
            smtp_host=os.getenv("SMTP_HOST", defaults.smtp_host),
            smtp_port=int(os.getenv("SMTP_PORT", defaults.smtp_port)),
            smtp_username=os.getenv("SMTP_USERNAME") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_use_tls=_env_bool("SMTP_USE_TLS", defaults.smtp_use_tls),
            mail_from=os.getenv("MAIL_FROM", defaults.mail_from),
            frontend_url=os.getenv("REACT_APP_URL", defaults.frontend_url),
            cookie_secure=_env_bool("COOKIE_SECURE", defaults.cookie_secure),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        )
        if settings.access_token_secret == defaults.access_token_secret:
            logger.warning("Using development token secrets; set *_SECRET_KEY in production")
        return settings
