"""Configuration settings for the contributor rewards backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Contributor Rewards API"
    log_level: str = "info"
    cors_origins: list[str] = ["*"]

    # Claim listing
    default_page_size: int = 20
    max_page_size: int = 100

    # Bootstrap super admin, created at startup when both are set
    super_admin_name: str = ""
    super_admin_email: str = ""

    model_config = SettingsConfigDict(
        env_prefix="REWARDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
