"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Chat relay configuration. All values come from environment variables."""

    # Upstream provider (OpenRouter, OpenAI-compatible)
    openrouter_api_key: str = Field(default="")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")
    summary_model: str = Field(default="mistralai/devstral-2512:free")
    summary_max_tokens: int = Field(default=512)

    # Database
    database_path: Path = Field(default=Path("data/chatrelay.db"))

    # Redis (empty disables the customization cache)
    redis_url: str = Field(default="")
    customization_cache_ttl: int = Field(default=86400)

    # Conversation memory
    context_window_size: int = Field(default=5)
    compaction_threshold: int = Field(default=8)
    compaction_retain_window: int = Field(default=5)

    # Temporary chats
    temporary_chat_ttl_hours: int = Field(default=24)
    expiry_sweep_interval: int = Field(default=300)

    # HTTP
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    auth_user_header: str = Field(default="X-User-Id")

    # Logging / diagnostics
    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def cache_enabled(self) -> bool:
        return bool(self.redis_url.strip())


settings = Settings()
