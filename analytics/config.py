"""
Config - Environment-driven settings.

Variables (all optional, .env supported):
    STORAGE_BACKEND           redis | memory (default: redis)
    REDIS_HOST / REDIS_PORT / REDIS_PASSWORD / REDIS_DB
    CONCEPT_NETWORK_PATH      JSON file overriding the packaged network
    CLEANUP_DAYS              Age cutoff for attempts and mistake events (default: 90)
    CLEANUP_INTERVAL_SECONDS  Period of the background sweep, 0 disables it
    LOG_LEVEL                 Root log level for the API process
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()


@dataclass(frozen=True)
class Settings:
    storage_backend: str = "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    concept_network_path: Optional[str] = None
    cleanup_days: int = 90
    cleanup_interval_seconds: int = 0
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Read settings from the environment at call time."""
    return Settings(
        storage_backend=os.getenv("STORAGE_BACKEND", "redis").lower(),
        redis_host=os.getenv("REDIS_HOST", "localhost"),
        redis_port=int(os.getenv("REDIS_PORT", 6379)),
        redis_password=os.getenv("REDIS_PASSWORD") or None,
        redis_db=int(os.getenv("REDIS_DB", 0)),
        concept_network_path=os.getenv("CONCEPT_NETWORK_PATH") or None,
        cleanup_days=int(os.getenv("CLEANUP_DAYS", 90)),
        cleanup_interval_seconds=int(os.getenv("CLEANUP_INTERVAL_SECONDS", 0)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
