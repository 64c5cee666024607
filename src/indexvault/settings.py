"""Runtime settings loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration object for index orchestration and persistence."""

    model_config = SettingsConfigDict(env_prefix="INDEXVAULT_", env_file=".env", extra="allow")

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Batching
    add_batch_size: int = Field(default=1000, gt=0)
    search_batch_size: int = Field(default=100, gt=0)

    # Index construction (factory keys)
    default_description: str = "Flat"
    default_metric: str = "L2"

    # Storage
    index_root: Path = Path(".indexvault/indexes")
    index_extension: str = ".faiss"
    backup_suffix: str = ".bak"
    copy_buffer_size: int = Field(default=64 * 1024, gt=0)
