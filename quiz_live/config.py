"""Environment-driven settings for the QuizLive server."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from quiz_live.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_live.constants.session_constants import (
    DEFAULT_DURATION_SECONDS,
    PARTICIPANT_MIN_BROADCAST_MS,
    PARTICIPANT_MIN_PERSIST_MS,
)


class Settings(BaseSettings):
    """Application configuration read from the environment or ``.env``."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Server
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: str = "*"

    # Storage; an empty URI keeps everything in memory
    mongo_uri: str = ""
    mongo_db: str = "quiz_live"

    # Evaluator
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    ollama_url: str = ""
    ollama_model: str = "llama3"
    evaluator_timeout_seconds: float = 20.0

    # Session behaviour
    participant_min_persist_ms: int = PARTICIPANT_MIN_PERSIST_MS
    participant_min_broadcast_ms: int = PARTICIPANT_MIN_BROADCAST_MS
    default_duration_seconds: int = DEFAULT_DURATION_SECONDS
    auto_reveal_on_all_answered: bool = False
    auto_reveal_on_timeout: bool = False
    presence_sweep_interval_seconds: float = 0.0
    presence_stale_after_seconds: float = 300.0

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from a comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
