"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: repository root
_BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Qodari IAM"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "qodari_iam"
    POSTGRES_USER: str = "qodari"
    POSTGRES_PASSWORD: str = "qodari"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    # Identity provider
    IAM_ISSUER: str = "http://localhost:8000"
    IAM_APP_SLUG: str = "iam"
    APP_URL: str = "http://localhost:3000"
    TRUST_PROXY_HEADERS: bool = False

    # Sessions
    SESSION_COOKIE_NAME: str = "qodari_iam_session"
    SESSION_TTL_SECONDS: int = 60 * 60 * 24 * 7
    SESSION_ACTIVITY_RESOLUTION_SECONDS: int = 60

    # Login lockout
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15

    # MFA
    MFA_CODE_TTL_SECONDS: int = 180
    MFA_MAX_ATTEMPTS: int = 5
    MFA_RESEND_COOLDOWN_SECONDS: int = 60

    # Password reset
    PASSWORD_RESET_TTL_SECONDS: int = 3600

    # Rate Limiting (windows in milliseconds)
    LOGIN_RATE_LIMIT_PER_IP: int = 20
    LOGIN_RATE_LIMIT_PER_EMAIL: int = 5
    LOGIN_RATE_LIMIT_WINDOW_MS: int = 15 * 60 * 1000
    TOKEN_RATE_LIMIT_PER_IP: int = 30
    TOKEN_RATE_LIMIT_PER_CLIENT: int = 60
    TOKEN_RATE_LIMIT_WINDOW_MS: int = 5 * 60 * 1000
    MFA_VERIFY_RATE_LIMIT_PER_IP: int = 10
    MFA_VERIFY_RATE_LIMIT_WINDOW_MS: int = 5 * 60 * 1000
    PASSWORD_RESET_RATE_LIMIT_PER_IP: int = 5
    PASSWORD_RESET_RATE_LIMIT_PER_EMAIL: int = 3
    PASSWORD_RESET_RATE_LIMIT_WINDOW_MS: int = 15 * 60 * 1000

    # Cleanup scheduler
    PAUSE_SCHEDULER: bool = False
    RUN_EMBEDDED_SCHEDULER: bool = True
    CLEANUP_INTERVAL_SECONDS: int = 60 * 60 * 24
    RATE_LIMIT_RETENTION_SECONDS: int = 60 * 60 * 24

    # Email (SMTP)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    MAIL_FROM: str = ""
    MAIL_FROM_NAME: str = "Qodari IAM"
    # Writes unsent email bodies (MFA codes, reset links) to the DEBUG log.
    MAIL_LOG_BODIES: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated origins from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            CORS_ORIGINS=http://localhost:3000,http://example.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(origin).strip() for origin in parsed if str(origin).strip()]

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def get_log_file(self) -> str:
        """Resolve log file path; empty means stream logging only."""
        p = self.LOG_FILE
        if not p:
            return ""
        if p.startswith(".."):
            return str(_BASE_DIR / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate runtime security defaults in production.

        Raises:
            ValueError: If insecure defaults are detected.
        """
        if not self.is_production:
            return

        if not self.IAM_ISSUER or self.IAM_ISSUER == "http://localhost:8000":
            raise ValueError("IAM_ISSUER must be set to the public issuer URL in production.")

        if not self.IAM_ISSUER.startswith("https://"):
            raise ValueError("IAM_ISSUER must use https in production.")

        if not self.APP_URL.startswith("https://"):
            raise ValueError("APP_URL must use https in production (session cookies are Secure).")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
