"""Configuration management for schedex."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Scheduling defaults
    default_timezone: str = Field(
        default="UTC",
        description="Timezone used to resolve cron schedules when none is given",
    )

    # CLI settings
    log_level: str = Field(
        default="WARNING",
        description="Log level for the schedex CLI when not running verbose",
    )
    preview_count: int = Field(
        default=5,
        ge=1,
        description="Number of upcoming runs shown by 'schedex next'",
    )


# Global settings instance
settings = Settings()
