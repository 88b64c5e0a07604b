"""
Local fallback cache: one last-known-good snapshot per document.

Each document is kept as a JSON file in the cache directory:

    <cache_dir>/roster.json
    <cache_dir>/rsvp.json
    <cache_dir>/practice.json

The cache is never authoritative. It is read when the remote store cannot
be reached and written after every write-back, successful or not.

Both operations are best-effort and never raise: a missing or corrupted
file reads as "no snapshot", a failed write is logged and dropped.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from racesync.config import settings
from racesync.log import get_logger

logger = get_logger(__name__)


def _default_cache_dir() -> Path:
    """
    Return the configured cache directory.

    Using a function instead of a constant makes testing easier,
    because tests can pass their own directory.
    """
    return settings.cache_dir


class JsonFileCache:
    """Fallback cache backed by one JSON file per document key."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self.directory = Path(directory) if directory is not None else _default_cache_dir()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Any | None:
        """
        Load the snapshot for key.

        Returns None if the file does not exist or is invalid.
        """
        path = self._path(key)

        # First run: nothing cached yet
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return None

        if not isinstance(data, dict) or "document" not in data:
            logger.warning("Ignoring cache file without a document: %s", path)
            return None
        return data["document"]

    def set(self, key: str, document: Any) -> None:
        """
        Save the snapshot for key. Creates the cache directory if needed.
        """
        path = self._path(key)
        payload = {"key": key, "document": document}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not write cache file %s: %s", path, exc)


class MemoryCache:
    """Fallback cache kept in a dict. Used by tests and throwaway sessions."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._docs: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._docs.get(key))

    def set(self, key: str, document: Any) -> None:
        self._docs[key] = copy.deepcopy(document)
