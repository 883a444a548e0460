# File: src/parksmart/config.py
"""
Configuration and logging setup for ParkSmart

Settings are read from environment variables with development defaults.
"""

from dataclasses import dataclass
from typing import Mapping, Optional
import logging
import os
import sys


@dataclass(frozen=True)
class Settings:
    """Runtime settings"""
    database_url: str = "sqlite:///./parksmart.db"
    redis_url: Optional[str] = None
    cache_ttl_seconds: int = 300
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "parksmart.log"
    event_channel: str = "parksmart.events"
    storage_backend: str = "sqlalchemy"

    def __post_init__(self):
        if self.storage_backend not in ("sqlalchemy", "memory"):
            raise ValueError(f"Unknown storage backend: {self.storage_backend}")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("Cache TTL must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("DATABASE_URL", cls.database_url),
            redis_url=env.get("REDIS_URL") or None,
            cache_ttl_seconds=int(env.get("CACHE_TTL_SECONDS", cls.cache_ttl_seconds)),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
            log_dir=env.get("LOG_DIR", cls.log_dir),
            log_file=env.get("LOG_FILE", cls.log_file),
            event_channel=env.get("EVENT_CHANNEL", cls.event_channel),
            storage_backend=env.get("STORAGE_BACKEND", cls.storage_backend).lower(),
        )


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Setup application logging configuration"""
    settings = settings or Settings.from_env()
    log_dir = settings.log_dir
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(log_dir, settings.log_file)),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return logging.getLogger("parksmart")
