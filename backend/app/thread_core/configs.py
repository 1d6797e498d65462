"""Application settings loaded from environment variables.

Defines all environment-driven configuration used by the thread core.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed configuration model for the application."""

    # Logging
    LOG_LEVEL: str = "info"

    # Persistence
    DATABASE_URL: str = "sqlite:///./threads.db"

    # Redis fan-out of bus events (disabled when REDIS_HOST is empty)
    REDIS_HOST: Optional[str] = None
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_SSL: bool = False
    REDIS_EVENTS_CHANNEL: str = "thread_core.events"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # LLM parameters
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None

    # Defaults for new conversations
    DEFAULT_PROVIDER_ID: str = "deepseek"
    DEFAULT_MODEL_ID: str = "deepseek-chat"
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_CONTEXT_LENGTH: int = 1000
    DEFAULT_MAX_TOKENS: int = 2000

    # Generation
    PERSIST_RETRY_ATTEMPTS: int = 3
    PERSIST_RETRY_DELAY_SECONDS: float = 0.2
    CONTENT_FLUSH_INTERVAL_MS: int = 200
    MAX_TOOL_ROUNDS: int = 8

    # Search
    SEARCH_RESULT_LIMIT: int = 8
    SEARCH_ENRICH_LIMIT: int = 4

    # Tools
    WORKSPACE_ROOT: str = "./workspace"
    AUTO_APPROVED_PERMISSIONS: list[str] = ["read"]

    # API parameters
    ROOT_PATH_BACKEND: str = ""
    ALLOWED_ORIGINS: list[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
