"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    bot_name: str = Field(default="Chatkeeper", alias="BOT_NAME")
    command_prefix: str = Field(default="!", alias="COMMAND_PREFIX")
    owner_name: str = Field(default="Owner", alias="OWNER_NAME")
    # Transport-level chat id of the owner; startup announcements and recovered messages go here.
    owner_id: str = Field(default="", alias="OWNER_ID")

    session_dir: Path = Field(default=Path("session"), alias="SESSION_DIR")
    database_path: Path = Field(default=Path("data/settings.db"), alias="DATABASE_PATH")
    message_cache_path: Path = Field(default=Path("data/messages.db"), alias="MESSAGE_CACHE_PATH")
    commands_dir: Path = Field(default=Path("commands"), alias="COMMANDS_DIR")
    # "package.module:callable" returning a Transport instance.
    transport_factory: str = Field(default="", alias="TRANSPORT_FACTORY")

    message_retention_hours: float = Field(default=24.0, alias="MESSAGE_RETENTION_HOURS")
    cache_cleanup_interval_seconds: float = Field(default=3600.0, alias="CACHE_CLEANUP_INTERVAL_SECONDS")
    stats_flush_interval_seconds: float = Field(default=10.0, alias="STATS_FLUSH_INTERVAL_SECONDS")

    reconnect_base_delay_seconds: float = Field(default=1.0, alias="RECONNECT_BASE_DELAY_SECONDS")
    reconnect_max_delay_seconds: float = Field(default=30.0, alias="RECONNECT_MAX_DELAY_SECONDS")
    max_reconnect_attempts: int = Field(default=10, alias="MAX_RECONNECT_ATTEMPTS")
    startup_announce_delay_seconds: float = Field(default=3.0, alias="STARTUP_ANNOUNCE_DELAY_SECONDS")
    metadata_timeout_seconds: float = Field(default=10.0, alias="METADATA_TIMEOUT_SECONDS")

    auto_reject_calls: bool = Field(default=False, alias="AUTO_REJECT_CALLS")
    anti_delete: bool = Field(default=True, alias="ANTI_DELETE")

    ai_provider: str = Field(default="fast", alias="AI_PROVIDER")
    # Comma-separated provider names tried in order after the requested one fails.
    ai_fallback_providers: str = Field(default="base,fast", alias="AI_FALLBACK_PROVIDERS")
    ai_worker_url: str = Field(default="", alias="AI_WORKER_URL")
    ai_timeout_seconds: float = Field(default=15.0, alias="AI_TIMEOUT_SECONDS")
    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="meta-llama/llama-3.1-8b-instruct", alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )

    message_footer: str = Field(default="", alias="MESSAGE_FOOTER")
    chat_footer: str = Field(default="💬 AI Assistant", alias="CHAT_FOOTER")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def credentials_path(self) -> Path:
        return self.session_dir / "creds.json"


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def fallback_providers(settings: Settings) -> list[str]:
    """Return the ordered fallback provider names.

    Blank entries are dropped; duplicates keep their first position.
    """
    names: list[str] = []
    for raw in settings.ai_fallback_providers.split(","):
        name = raw.strip().lower()
        if name and name not in names:
            names.append(name)
    return names
