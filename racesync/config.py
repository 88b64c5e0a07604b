"""
Configuration, driven by environment variables.

Paths default to locations inside the package so that a fresh checkout
works without any setup. Tests build their own Settings instead of
touching the module-level one.
"""

from __future__ import annotations

import os
from pathlib import Path

from racesync.model import TimeSlot

PACKAGE_DIR = Path(__file__).resolve().parent

PRACTICE_WINDOW_DAYS = 14
MAX_NAME_LENGTH = 50
# names become keys of the remote documents, which cannot contain these
FORBIDDEN_NAME_CHARS = ".#$[]/"
PRACTICE_EVENT_LIMIT = 10

DEFAULT_TIME_SLOTS: list[TimeSlot] = [
    TimeSlot(
        id="aussie",
        display_name="Aussie Friendly",
        reference_time="11:00",
        description="Morning AEDT / Late Evening Americas",
    ),
    TimeSlot(
        id="eu",
        display_name="EU Friendly",
        reference_time="16:00",
        description="Afternoon EU / Morning Americas",
    ),
]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.remote_url: str = os.getenv("RACESYNC_REMOTE_URL", "").strip().rstrip("/")
        self.remote_auth: str = os.getenv("RACESYNC_REMOTE_AUTH", "").strip()
        self.cache_dir: Path = Path(os.getenv("RACESYNC_CACHE_DIR", str(PACKAGE_DIR / "data" / "cache")))
        self.catalog: str = os.getenv("RACESYNC_CATALOG", str(PACKAGE_DIR / "data" / "events_data.json"))
        self.request_timeout: float = float(os.getenv("RACESYNC_REQUEST_TIMEOUT", "10"))
        self.poll_interval: float = float(os.getenv("RACESYNC_POLL_INTERVAL", "5"))
        self.fuzzy_threshold: float = float(os.getenv("RACESYNC_FUZZY_THRESHOLD", "0.6"))
        self.seed_empty: bool = _env_bool("RACESYNC_SEED_EMPTY", "false")
        self.log_level: str = os.getenv("LOG_LEVEL", "WARNING").upper()
        self.time_slots: list[TimeSlot] = list(DEFAULT_TIME_SLOTS)


settings = Settings()
