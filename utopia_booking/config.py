"""Environment driven settings for the booking service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from logging.config import dictConfig

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///utopia.db"
DEFAULT_EXPIRATION_MINUTES = 15
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_SWEEP_INTERVAL = 30.0
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    expiration_minutes: int = DEFAULT_EXPIRATION_MINUTES
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read settings from ``UTOPIA_*`` environment variables."""

    expiration = int(os.environ.get("UTOPIA_EXPIRATION_MINUTES", DEFAULT_EXPIRATION_MINUTES))
    if expiration <= 0:
        raise ValueError("UTOPIA_EXPIRATION_MINUTES must be positive")
    attempts = int(os.environ.get("UTOPIA_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))
    if attempts < 1:
        raise ValueError("UTOPIA_MAX_ATTEMPTS must be at least 1")
    return Settings(
        database_url=os.environ.get("UTOPIA_DATABASE_URL", DEFAULT_DATABASE_URL),
        expiration_minutes=expiration,
        max_attempts=attempts,
        sweep_interval=float(os.environ.get("UTOPIA_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL)),
        log_level=os.environ.get("UTOPIA_LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Send log records from every module to stderr at ``level``."""

    numeric = getattr(logging, level.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": LOG_FORMAT}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": numeric,
                }
            },
            "root": {"handlers": ["default"], "level": numeric},
        }
    )
    return logging.getLogger("utopia_booking")


__all__ = ["Settings", "load_settings", "configure_logging", "DEFAULT_DATABASE_URL"]
