"""Application settings loaded from environment for the dental-auth backend.

This module defines the :class:`Settings` model (based on Pydantic's
``BaseSettings``). A single instance is built at process start by
:func:`get_settings` and handed to the services and the app factory, which
never read configuration from the environment on their own.

Notable fields include the database connection URL, JWT configuration,
lockout thresholds, password policy knobs and the SMTP relay used for
verification and reset emails.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

BACKEND_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BACKEND_DIR / ".env"


class Settings(BaseSettings):
    """Environment-backed application settings.

    Attributes:
        ENVIRONMENT: Deployment name; ``production`` hides error details.
        LOG_LEVEL: Log level applied by ``create_app``.
        APP_URL: Public base URL used to build links in emails.
        CORS_ORIGINS: Comma-separated list of allowed browser origins.
        DATABASE_URL_ASYNC: Async database URL for SQLAlchemy.

        SECRET_KEY: JWT signing secret.
        ALGORITHM: JWT signing algorithm.
        ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime in minutes.
        REFRESH_TOKEN_EXPIRE_DAYS: Refresh token lifetime in days.
        REFRESH_TOKEN_RETENTION_DAYS: How long expired refresh tokens are
            kept for the audit trail before cleanup deletes them.
        EMAIL_VERIFICATION_EXPIRE_HOURS: Lifetime of verification tokens.
        PASSWORD_RESET_EXPIRE_MINUTES: Lifetime of password reset tokens.

        MAX_FAILED_ATTEMPTS: Failed logins before an account is locked.
        LOCKOUT_DURATION_MINUTES: How long a lock lasts.
        PASSWORD_MIN_LENGTH: Minimum password length.
        PASSWORD_HISTORY_COUNT: Number of previous passwords that may not
            be reused.
        BCRYPT_ROUNDS: bcrypt cost factor.
        REQUIRE_EMAIL_VERIFICATION: Whether unverified users may log in.

        EMAIL_*: SMTP relay configuration; disabled by default.
        RATE_LIMIT_ENABLED: Toggle for the per-IP auth rate limits.
        RATE_LIMIT_REDIS_URL: Optional Redis URL; in-process windows otherwise.
    """

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    APP_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:4200,http://localhost:3000"

    DATABASE_URL_ASYNC: str = "sqlite+aiosqlite:///./dental_auth.db"

    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_TOKEN_RETENTION_DAYS: int = 30
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    MAX_FAILED_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_HISTORY_COUNT: int = 3
    BCRYPT_ROUNDS: int = 10
    REQUIRE_EMAIL_VERIFICATION: bool = False

    EMAIL_ENABLED: bool = False
    EMAIL_HOST: str = "smtp.gmail.com"
    EMAIL_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USER: str = ""
    EMAIL_PASSWORD: str = ""
    EMAIL_FROM: str = "noreply@dentalapp.com"

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REDIS_URL: str | None = None

    class Config:
        env_file = str(ENV_FILE)
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Build the process-wide settings instance once."""
    return Settings()
