"""
Configuration management for ItemDB.

All configuration is done via environment variables with the ITEMDB_
prefix. Uses pydantic-settings for environment variable loading and
validation.

Invariants:
    - All settings have sensible defaults for local development
    - The retry bound is always at least one attempt
    - Backoff ceiling is never below the backoff base

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env names stable; they are part of the deployment surface
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

from .update.engine import RetryPolicy

logger = logging.getLogger(__name__)


class StoreBackend(str, Enum):
    """Supported store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class Settings(BaseSettings):
    """ItemDB configuration loaded from environment."""

    # Storage
    backend: StoreBackend = Field(default=StoreBackend.SQLITE, description="Store backend")
    data_dir: str = Field(default="./data", description="Directory for the SQLite file")
    db_filename: str = Field(default="items.db", description="SQLite file name")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL mode")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="SQLite busy timeout")

    # Optimistic update retries
    max_attempts: int = Field(default=10, ge=1, description="Read-modify-write cycles per update")
    backoff_base_ms: float = Field(default=5.0, ge=0, description="First retry delay")
    backoff_max_ms: float = Field(default=250.0, ge=0, description="Retry delay ceiling")
    backoff_jitter: bool = Field(default=True, description="Randomize retry delays")

    # Observability
    log_level: str = Field(default="INFO")
    log_format: Literal["text", "json"] = Field(default="text")

    model_config = {"env_prefix": "ITEMDB_"}

    @model_validator(mode="after")
    def _check_backoff(self) -> Settings:
        if self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError(
                f"ITEMDB_BACKOFF_MAX_MS ({self.backoff_max_ms}) must be >= "
                f"ITEMDB_BACKOFF_BASE_MS ({self.backoff_base_ms})"
            )
        return self

    @property
    def db_path(self) -> Path:
        """Full SQLite file path."""
        return Path(self.data_dir) / self.db_filename

    def retry_policy(self) -> RetryPolicy:
        """Retry policy for the update engine."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_base_ms=self.backoff_base_ms,
            backoff_max_ms=self.backoff_max_ms,
            jitter=self.backoff_jitter,
        )

    def log_config(self) -> None:
        """Log configuration at startup."""
        logger.info(
            "ItemDB configuration loaded",
            extra={
                "backend": self.backend.value,
                "db_path": str(self.db_path) if self.backend == StoreBackend.SQLITE else None,
                "max_attempts": self.max_attempts,
                "backoff_base_ms": self.backoff_base_ms,
                "backoff_max_ms": self.backoff_max_ms,
                "log_level": self.log_level,
            },
        )
