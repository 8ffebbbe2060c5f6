"""Application settings and configuration.

This module defines all configuration options for the Library Feedback Desk
service. Settings are loaded from environment variables with sensible
defaults.
"""

from typing import Literal

from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Library Feedback Desk", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./libdesk.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    auto_create_tables: bool = Field(default=True, alias="AUTO_CREATE_TABLES")

    # JWT authentication settings. Without JWT_SECRET a random secret is
    # generated per process, so tokens do not survive a restart.
    jwt_secret: str | None = Field(default=None, alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # RSA key used to protect credentials in transit (base64-encoded PEM)
    rsa_private_key: str | None = Field(default=None, alias="RSA_PRIVATE_KEY")
    rsa_key_size: int = Field(default=2048, alias="RSA_KEY_SIZE")

    # Rate limiting
    quota_backend: Literal["database", "redis", "memory"] = Field(
        default="database",
        alias="QUOTA_BACKEND",
    )
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    rate_limit_window_seconds: int = Field(default=15 * 60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_guest: int = Field(default=100, alias="RATE_LIMIT_GUEST")
    rate_limit_user: int = Field(default=1000, alias="RATE_LIMIT_USER")
    rate_limit_admin: int = Field(default=5000, alias="RATE_LIMIT_ADMIN")
    rate_limit_super_admin: int = Field(default=10000, alias="RATE_LIMIT_SUPER_ADMIN")
    rate_limit_path_prefix: str = Field(default="/api", alias="RATE_LIMIT_PATH_PREFIX")
    rate_limit_bypass_paths: list[str] = Field(
        default=["/api/captcha/challenge", "/api/captcha/verify-limit"],
        alias="RATE_LIMIT_BYPASS_PATHS",
    )
    trust_proxy: bool = Field(default=True, alias="TRUST_PROXY")

    # Proof-of-work CAPTCHA used to lift a rate limit
    captcha_algorithm: Literal["SHA-1", "SHA-256", "SHA-512", "BLAKE3"] = Field(
        default="SHA-256",
        alias="CAPTCHA_ALGORITHM",
    )
    captcha_max_number: int = Field(default=100_000, alias="CAPTCHA_MAX_NUMBER")
    captcha_expires_seconds: int = Field(default=60 * 60, alias="CAPTCHA_EXPIRES_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    # Fallback JWT secret generated for this instance when JWT_SECRET is unset.
    _generated_jwt_secret: str | None = PrivateAttr(default=None)

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def rate_limit_window_ms(self) -> int:
        """Return the admission window length in milliseconds."""
        return int(self.rate_limit_window_seconds) * 1000


settings = Settings()
