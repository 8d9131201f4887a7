"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings, read from NOTES_* environment variables and .env."""

    model_config = SettingsConfigDict(
        env_prefix="NOTES_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Project info
    PROJECT_NAME: str = "Notes API"
    VERSION: str = "1.0.0"

    # Storage
    DATA_DIR: Path = Path.cwd()
    USERS_DB: str = "users.db"
    STORE_DB: str = "notes.db"

    # Identity policy
    MIN_PASSWORD_LENGTH: int = 6
    MAX_FAILED_ATTEMPTS: int = 5
    LOCKOUT_SECONDS: int = 300

    # Web
    CORS_ORIGINS: list[str] = ["*"]
    COOKIE_NAME: str = "client_id"

    # Client contexts
    MAX_CLIENTS: int = 1000
    CLIENT_IDLE_SECONDS: int = 3600

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path.home() / ".notes-website" / "logs"

    @property
    def users_db_path(self) -> Path:
        return self.DATA_DIR / self.USERS_DB

    @property
    def store_db_path(self) -> Path:
        return self.DATA_DIR / self.STORE_DB


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
