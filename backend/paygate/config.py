"""
PayGate Configuration Module

Loads environment variables for backend configuration.
"""
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Security Notes:
    - Access and refresh tokens are signed with different secrets
    - A single process-wide key encrypts merchant API secrets at rest
    - Demo defaults below must be overridden outside local development
    """

    # Session tokens (JWT, HS256)
    jwt_access_secret: str = "access_secret_demo_only_change_me"
    jwt_refresh_secret: str = "refresh_secret_demo_only_change_me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7

    # At-rest encryption for merchant API secrets (AES-256-GCM, first 32 bytes used)
    encryption_key: str = "encryption_key_demo_only_change_me_0123456789"

    # Merchant request signing
    replay_window_seconds: int = 300

    # Storage
    storage_backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: str = "./paygate.db"

    # Webhooks
    webhook_timeout_seconds: float = 10.0
    webhook_workers: int = 4
    webhook_queue_size: int = 1000

    # Housekeeping
    pending_transaction_ttl_days: int = 30
    housekeeping_interval_minutes: int = 60

    # Accounts
    email_verification_hours: int = 24
    frontend_url: str = "http://localhost:3001"

    # Server
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["http://localhost:3001"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("encryption_key")
    @classmethod
    def encryption_key_length(cls, v: str) -> str:
        """AES-256 needs 32 bytes of key material."""
        if len(v.encode("utf-8")) < 32:
            raise ValueError("ENCRYPTION_KEY must be at least 32 bytes")
        return v

    @model_validator(mode="after")
    def distinct_token_secrets(self) -> "Settings":
        """Refresh tokens must never verify as access tokens."""
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
        return self

    @property
    def encryption_key_bytes(self) -> bytes:
        """Raw 32-byte AES key."""
        return self.encryption_key.encode("utf-8")[:32]


# Global settings instance
settings = Settings()
