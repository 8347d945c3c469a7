"""
Engine settings using Pydantic.

Provides environment-based configuration loading with MLSTACK_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(env_prefix="MLSTACK_", extra="ignore")

    # Logging
    log_level: str = "info"
    log_dir: str = ".mlstack/logs"

    # gcloud CLI
    gcloud_path: str = "gcloud"
    command_timeout: int = 1800

    # State store
    lock_timeout: float = 30.0

    # Executor
    max_workers: int = 1


@lru_cache
def get_settings() -> Settings:
    return Settings()
