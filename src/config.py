from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_DIR = Path.home() / ".course_chat"


class Settings(BaseSettings):
    # Load environment variables from .env and system environment
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Connection settings
    ws_url: str = Field(default="ws://localhost:3000", validation_alias="WS_URL")
    reconnection_delay: float = Field(
        default=1.0, ge=0.0, validation_alias="RECONNECTION_DELAY"
    )
    reconnection_attempts: int = Field(
        default=5, ge=0, validation_alias="RECONNECTION_ATTEMPTS"
    )

    # Seconds to wait for a final reply before giving up; 0 disables the watchdog
    reply_timeout_seconds: float = Field(
        default=60.0, ge=0.0, validation_alias="REPLY_TIMEOUT_SECONDS"
    )

    # Identity persistence
    identity_key: str = Field(
        default="hazwoper_chat_user_id", validation_alias="IDENTITY_KEY"
    )
    identity_store_path: Path = Field(
        default=CONFIG_DIR / "storage.json", validation_alias="IDENTITY_STORE_PATH"
    )

    # Debug mode
    debug: bool = Field(default=False, validation_alias="DEBUG")

    # Logfire settings
    logfire_enabled: bool = Field(default=False, validation_alias="LOGFIRE_ENABLED")
    logfire_token: Optional[str] = Field(default=None, validation_alias="LOGFIRE_TOKEN")
    logfire_service_name: str = Field(
        default="course-chat", validation_alias="LOGFIRE_SERVICE_NAME"
    )

    @property
    def reply_timeout(self) -> Optional[float]:
        """Return the reply watchdog bound, or None when disabled."""
        return self.reply_timeout_seconds or None


def get_settings() -> Settings:
    """Instantiate and return the Settings object."""
    return Settings()
