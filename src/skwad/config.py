from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Load environment variables from .env and system environment
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server settings
    host: str = Field(default="127.0.0.1", validation_alias="HOST")
    port: int = Field(default=8766, validation_alias="PORT")

    # Debug mode
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Agent directory seed file (workspaces and agents)
    agents_file: Optional[Path] = Field(default=None, validation_alias="AGENTS_FILE")

    # Coordination settings
    session_timeout_seconds: int = Field(
        default=3600, validation_alias="SESSION_TIMEOUT_SECONDS"
    )
    cleanup_interval_seconds: int = Field(
        default=300, validation_alias="CLEANUP_INTERVAL_SECONDS"
    )
    max_read_messages: int = Field(default=100, validation_alias="MAX_READ_MESSAGES")
    max_companions_per_owner: int = Field(
        default=3, validation_alias="MAX_COMPANIONS_PER_OWNER"
    )

    # Autopilot settings
    autopilot_enabled: bool = Field(default=False, validation_alias="AUTOPILOT_ENABLED")
    ai_provider: str = Field(default="openai", validation_alias="AI_PROVIDER")
    ai_api_key: Optional[str] = Field(default=None, validation_alias="AI_API_KEY")

    # Logfire settings
    logfire_enabled: bool = Field(default=False, validation_alias="LOGFIRE_ENABLED")
    logfire_token: Optional[str] = Field(default=None, validation_alias="LOGFIRE_TOKEN")
    logfire_service_name: str = Field(
        default="skwad", validation_alias="LOGFIRE_SERVICE_NAME"
    )

    @property
    def autopilot_active(self) -> bool:
        """Autopilot only runs when enabled and an API key is configured."""
        return self.autopilot_enabled and bool(self.ai_api_key)


def get_settings() -> Settings:
    """Instantiate and return the Settings object."""
    return Settings()
