"""
ItemDB composition root.

Builds the stores and the updater from Settings and configures logging.
Everything is wired through constructors; there is no container.

Usage:
    settings = Settings()
    setup_logging(settings)
    updater = create_updater(settings)

Configuration is entirely via environment variables.
See config.py for all available settings.
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter

from .config import Settings
from .store import create_stores
from .update import ItemUpdater, UpdateEngine

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: ItemDB settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


def create_updater(settings: Settings | None = None) -> ItemUpdater:
    """Build an ItemUpdater for the configured backend.

    Args:
        settings: Optional settings (loaded from env if not provided)

    Returns:
        ItemUpdater wired to fresh store instances
    """
    settings = settings or Settings()
    settings.log_config()

    record_store, history_store = create_stores(settings)
    engine = UpdateEngine(record_store, settings.retry_policy())
    return ItemUpdater(record_store, history_store, engine=engine)
