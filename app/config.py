"""Application configuration using Pydantic settings."""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM Configuration
    LLM_PROVIDER: str = "openai"  # openai, anthropic, openai_compatible
    LLM_MODEL: str = "gpt-4.1-2025-04-14"
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "http://127.0.0.1:8000/v1"  # For openai_compatible
    LLM_TEMPERATURE: float = 0.3
    LLM_MAX_TOKENS: int = 500

    # Overrides the built-in support agent instruction when set
    SYSTEM_PROMPT: str = ""

    # Reply pipeline limits
    MAX_MESSAGE_LENGTH: int = 2000  # UTF-16 code units
    MAX_HISTORY_MESSAGES: int = 10  # 5 exchanges
    REQUEST_TIMEOUT_SECONDS: float = 15.0

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./support_chat.db"

    # Redis
    REDIS_URL: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_SOCKET_TIMEOUT: float = 2.0  # seconds, per command and per connect

    # History cache
    HISTORY_CACHE_TTL: int = 3600  # seconds
    HISTORY_CACHE_PREFIX: str = "chat:history:"
    CACHE_TIMEOUT_SECONDS: float = 1.0  # upper bound for any single cache operation

    # Rate limiting (fixed windows)
    SESSION_RATE_LIMIT: int = 10
    SESSION_RATE_WINDOW: int = 60  # seconds
    GLOBAL_RATE_LIMIT: int = 1000
    GLOBAL_RATE_WINDOW: int = 60  # seconds

    # Logging
    LOG_LEVEL: str = "INFO"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:5174,http://localhost:8080"

    @field_validator("DATABASE_URL")
    @classmethod
    def _async_driver(cls, value: str) -> str:
        # Hosted Postgres providers hand out postgres:// URLs
        if value.startswith("postgres://"):
            value = value.replace("postgres://", "postgresql://", 1)
        if value.startswith("postgresql://"):
            value = value.replace("postgresql://", "postgresql+asyncpg://", 1)
        if value.startswith("sqlite:///"):
            value = value.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return value

    @property
    def redis_url(self) -> str:
        """Get Redis URL, preferring an explicit REDIS_URL."""
        if self.REDIS_URL:
            return self.REDIS_URL
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse allowed CORS origins into a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience alias
settings = get_settings()
