import logging
import warnings
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class AppMode(str, Enum):
    DEV = "dev"
    PROD = "prod"


class Settings(BaseSettings):
    # Application mode - defaults to DEV for safety
    # SECURITY: In production, explicitly set APP_MODE=prod
    APP_MODE: AppMode = AppMode.DEV

    # Debug mode - MUST be False in production
    DEBUG: bool = False

    # Database (SQLite default for dev, use PostgreSQL in production)
    DATABASE_URL: str = "sqlite+aiosqlite:///./auth_service.db"

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # JWT Configuration
    # SECURITY: both secrets have no default and MUST differ.
    # Generate with: python -c "import secrets; print(secrets.token_urlsafe(64))"
    JWT_ACCESS_TOKEN_SECRET: str = ""
    JWT_REFRESH_TOKEN_SECRET: str = ""
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 180  # 3 hours
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    JWT_ISSUER: str = "session-auth-service"
    JWT_AUDIENCE: str = "session-auth-clients"

    # Argon2 work factors. Refresh tokens are hashed on every issuance and
    # verified on every refresh, so they get a lighter time cost than passwords.
    PASSWORD_HASH_TIME_COST: int = 3
    REFRESH_TOKEN_HASH_TIME_COST: int = 2
    HASH_MEMORY_COST_KIB: int = 65536
    HASH_PARALLELISM: int = 2

    # Role assigned at registration; never taken from the request body
    DEFAULT_USER_ROLE: str = "USER"

    # Expired refresh token sweeper
    TOKEN_SWEEP_ENABLED: bool = True
    TOKEN_SWEEP_INTERVAL_SECONDS: int = 3600

    # Rate Limiting (requests per window per IP)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_AUTH: int = 10  # login
    RATE_LIMIT_REGISTER: int = 5
    RATE_LIMIT_REFRESH: int = 30
    RATE_LIMIT_WINDOW: int = 60  # window in seconds

    # Trusted proxy networks (comma-separated CIDR notation)
    # Example: "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16"
    # SECURITY: Only IPs from these networks are trusted to set X-Forwarded-For headers
    TRUSTED_PROXIES: Optional[str] = None

    CORS_ALLOWED_ORIGINS: str = ""  # Comma-separated list of allowed origins

    LOG_LEVEL: str = "INFO"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """
        Get allowed CORS origins.

        SECURITY: never returns ["*"]; cookies are sent with credentials.
        """
        origins = []

        if self.APP_MODE == AppMode.DEV:
            origins = [
                "http://localhost:3000",
                "http://localhost:5173",
                "http://127.0.0.1:3000",
                "http://127.0.0.1:5173",
            ]

        if self.CORS_ALLOWED_ORIGINS:
            custom_origins = [
                o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()
            ]
            origins.extend(custom_origins)

        if not origins and self.APP_MODE == AppMode.PROD:
            logger.warning(
                "SECURITY WARNING: No CORS_ALLOWED_ORIGINS configured in production. "
                "Cross-origin requests will be blocked."
            )

        return origins

    @property
    def is_dev(self) -> bool:
        return self.APP_MODE == AppMode.DEV

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env variables


def _validate_settings(settings: Settings) -> Settings:
    """
    Validate settings and warn/error on security issues.

    Missing token secrets are fatal in every mode: the service cannot sign
    or verify anything without them.
    """
    missing = [
        name
        for name in ("JWT_ACCESS_TOKEN_SECRET", "JWT_REFRESH_TOKEN_SECRET")
        if not getattr(settings, name)
    ]
    if missing:
        error_msg = (
            f"CRITICAL CONFIGURATION ERROR: {', '.join(missing)} not set. "
            "Both token secrets must be provided via environment variables."
        )
        logger.critical(error_msg)
        raise ValueError(error_msg)

    if settings.JWT_ACCESS_TOKEN_SECRET == settings.JWT_REFRESH_TOKEN_SECRET:
        error_msg = (
            "JWT_ACCESS_TOKEN_SECRET and JWT_REFRESH_TOKEN_SECRET are identical. "
            "An access token could then be replayed as a refresh token signature."
        )
        if settings.APP_MODE == AppMode.PROD:
            logger.critical(error_msg)
            raise ValueError(error_msg)
        warnings.warn(error_msg, SecurityWarning, stacklevel=2)

    if settings.APP_MODE == AppMode.PROD:
        # CRITICAL: Fail fast if DEBUG is enabled in production
        if settings.DEBUG:
            error_msg = (
                "CRITICAL SECURITY ERROR: DEBUG=True in production! "
                "Debug mode exposes sensitive information in error responses. "
                "Set DEBUG=False or remove the DEBUG environment variable."
            )
            logger.critical(error_msg)
            raise ValueError(error_msg)

        for name in ("JWT_ACCESS_TOKEN_SECRET", "JWT_REFRESH_TOKEN_SECRET"):
            if len(getattr(settings, name)) < 32:
                warnings.warn(
                    f"{name} appears to be weak (less than 32 characters). "
                    "Consider using a longer, more random key for production.",
                    SecurityWarning,
                    stacklevel=2,
                )

        if not settings.TRUSTED_PROXIES:
            logger.warning(
                "TRUSTED_PROXIES not configured in production. "
                "If behind a reverse proxy, device binding and rate limiting "
                "will see the proxy address instead of the client."
            )

    return settings


class SecurityWarning(UserWarning):
    """Warning for security-related configuration issues."""
    pass


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    This function validates settings on first access and raises errors
    for critical misconfigurations.
    """
    settings = Settings()
    return _validate_settings(settings)
