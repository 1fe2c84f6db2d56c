"""
Configuration management using Pydantic Settings.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Database Configuration
    # ===================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./baremint.db",
        description="Database connection string (PostgreSQL in production)"
    )

    # ===================
    # Solana / Helius Configuration
    # ===================
    helius_rpc_url: Optional[str] = Field(
        default=None,
        description="Helius RPC endpoint used for token balance lookups (required for gating)"
    )
    solana_rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        description="Solana RPC endpoint for SOL balance display"
    )
    balance_rpc_timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Timeout applied to every balance RPC request"
    )

    # ===================
    # Webhook Configuration
    # ===================
    helius_webhook_secret: Optional[str] = Field(
        default=None,
        description="Shared secret expected in the Authorization header of Helius webhooks"
    )
    helius_webhook_require_auth: bool = Field(
        default=True,
        description="Reject webhook batches unless a secret is configured and matches"
    )

    # ===================
    # API Server
    # ===================
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")

    @field_validator("helius_rpc_url", "helius_webhook_secret")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty env values as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def async_database_url(self) -> str:
        """Database URL with the async driver selected."""
        url = self.database_url
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
