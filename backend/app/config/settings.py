"""
Application Settings for ContractEar

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Literal, Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Credentials (payment gateway, AI provider, storage) and per-tier price
    identifiers are opaque strings injected at deploy time.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS / URLs
    app_url: str = "http://localhost:3000"
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: str = "sqlite+aiosqlite:///./contractear.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Supabase (identity provider + object storage)
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    audio_bucket: str = "audio-uploads"

    # Paddle (Merchant of Record)
    paddle_api_key: Optional[str] = None
    paddle_environment: Literal["sandbox", "production"] = "sandbox"
    paddle_webhook_secret: Optional[str] = None
    paddle_price_id_single: Optional[str] = None
    paddle_price_id_basic: Optional[str] = None
    paddle_price_id_pro: Optional[str] = None

    # OpenAI-compatible AI provider
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"

    # Retry Configuration (worker AI calls only)
    ai_max_retries: int = 3
    ai_retry_base_delay: float = 2.0

    # Uploads
    max_upload_bytes: int = 25 * 1024 * 1024
    remote_fetch_timeout: float = 15.0

    # Worker
    worker_concurrency: int = 2
    processing_stale_after_minutes: int = 30

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def normalize_database_url(self) -> "Settings":
        """Rewrite plain postgres URLs to the asyncpg driver."""
        if self.database_url.startswith("postgresql://"):
            self.database_url = self.database_url.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        elif self.database_url.startswith("postgres://"):
            self.database_url = self.database_url.replace(
                "postgres://", "postgresql+asyncpg://", 1
            )

        if self.is_production and not self.paddle_webhook_secret:
            raise ValueError("PADDLE_WEBHOOK_SECRET required in production")

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def paddle_api_base(self) -> str:
        """Paddle REST base URL for the configured environment."""
        if self.paddle_environment == "sandbox":
            return "https://sandbox-api.paddle.com"
        return "https://api.paddle.com"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
