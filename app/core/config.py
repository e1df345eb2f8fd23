"""Application configuration settings."""

from functools import lru_cache
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

MIN_SECRET_BYTES = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Loaded once at startup and frozen; services receive the instance
    through their constructors.
    """

    # Application
    app_name: str = "NutriVault Auth API"
    app_env: str = "development"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./nutrivault_auth.db"

    # Signed tokens. No defaults: a missing secret must stop the process.
    jwt_access_secret: str
    jwt_refresh_secret: str
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "nutrivault"
    jwt_audience: str = "nutrivault-api"
    access_token_expire_minutes: int = 30
    remember_me_access_token_expire_minutes: int = 24 * 60
    refresh_token_expire_days: int = 30

    # Hashing work factors
    password_hash_rounds: int = 12
    token_hash_rounds: int = 10

    # Lockout
    max_login_attempts: int = 5
    lockout_duration_minutes: int = 30

    # Password reset
    password_reset_expire_minutes: int = 60
    frontend_url: str = "http://localhost:5173"

    # API keys
    api_key_prefix: str = "nv_ak_"

    # Email (SMTP)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "no-reply@nutrivault.local"
    smtp_from_name: str = "NutriVault"
    smtp_use_tls: bool = True

    # CORS / hosts
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
    allowed_hosts: str = "*"

    @field_validator("jwt_access_secret", "jwt_refresh_secret")
    @classmethod
    def _secret_long_enough(cls, value: str) -> str:
        if len(value.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ValueError(f"signing secret must be at least {MIN_SECRET_BYTES} bytes")
        return value

    @field_validator("max_login_attempts", "lockout_duration_minutes", "access_token_expire_minutes")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def _secrets_distinct(self) -> "Settings":
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("access and refresh signing secrets must differ")
        return self

    @property
    def environment(self) -> str:
        """Alias for app_env."""
        return self.app_env

    @property
    def allowed_hosts_list(self) -> List[str]:
        """Get allowed hosts as a list."""
        return [host.strip() for host in self.allowed_hosts.split(",")]

    @property
    def cors_origins_list(self) -> List[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_port and self.smtp_user and self.smtp_password)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        frozen = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
