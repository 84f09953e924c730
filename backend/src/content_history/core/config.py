"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """History engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Document store root (markdown files live in drafts/ and published/)
    content_dir: Path = Field(default=Path("content"), validation_alias="CONTENT_DIR")
    history_dir_name: str = Field(default=".history", validation_alias="HISTORY_DIR_NAME")

    # Chain shaping
    max_chain_length: int = Field(
        default=5, ge=1, validation_alias="HISTORY_MAX_CHAIN_LENGTH",
    )
    max_versions: int = Field(default=10, ge=1, validation_alias="HISTORY_MAX_VERSIONS")

    # 0 disables the diff-match-patch time budget so patches are deterministic
    diff_timeout: float = Field(default=0.0, ge=0, validation_alias="HISTORY_DIFF_TIMEOUT")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    @field_validator("history_dir_name")
    @classmethod
    def validate_history_dir_name(cls, value: str) -> str:
        """History directory must be a single path component inside content_dir."""
        value = value.strip()
        if not value or "/" in value or "\\" in value or value in {".", ".."}:
            raise ValueError(
                f"HISTORY_DIR_NAME must be a single directory name, got '{value}'",
            )
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Accept log levels in any case."""
        return value.strip().upper()

    @property
    def history_dir(self) -> Path:
        """Directory holding one JSON history file per document."""
        return self.content_dir / self.history_dir_name

    @property
    def drafts_dir(self) -> Path:
        """Directory of draft markdown documents."""
        return self.content_dir / "drafts"

    @property
    def published_dir(self) -> Path:
        """Directory of published markdown documents."""
        return self.content_dir / "published"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
