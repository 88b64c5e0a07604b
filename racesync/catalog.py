"""
Event catalog feed.

The catalog is a JSON array of event records, fetched once at startup
from a local file or an http(s) URL. Records that cannot be parsed are
skipped with a warning so that one bad entry does not hide the rest.

Record format:

    {"id": "...", "name": "...", "series": "...", "track": "...",
     "type": "special" | "get", "classes": ["GT3", ...],
     "start_time": "2025-03-01T18:00:00Z", "duration": 6}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import requests

from racesync.errors import ValidationError
from racesync.log import get_logger
from racesync.model import Event

logger = get_logger(__name__)


def parse_catalog(raw: Any) -> list[Event]:
    """
    Convert the decoded catalog into Events, keeping feed order.

    Duplicate ids keep their first occurrence.
    """
    if not isinstance(raw, list):
        raise ValidationError(f"Catalog must be a JSON array, got {type(raw).__name__}")

    events: list[Event] = []
    seen: set[str] = set()
    for i, record in enumerate(raw):
        if not isinstance(record, dict):
            logger.warning("Skipping catalog entry %d: not an object", i)
            continue
        try:
            event = Event.from_dict(record)
        except ValidationError as exc:
            logger.warning("Skipping catalog entry %d: %s", i, exc)
            continue
        if event.id in seen:
            logger.warning("Skipping duplicate catalog id %s", event.id)
            continue
        seen.add(event.id)
        events.append(event)
    return events


def _fetch_url(url: str, timeout: float) -> Any:
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def load_catalog(source: str | Path, timeout: float = 10.0) -> list[Event]:
    """
    Load the catalog from a file path or an http(s) URL.

    A missing local file is an empty catalog. Network and decoding errors
    propagate: without a catalog there is nothing to show.
    """
    text = str(source)
    if text.startswith(("http://", "https://")):
        raw = _fetch_url(text, timeout)
    else:
        path = Path(source)
        if not path.exists():
            logger.warning("Catalog file not found: %s", path)
            return []
        raw = json.loads(path.read_text(encoding="utf-8"))

    events = parse_catalog(raw)
    logger.info("Loaded %d events from %s", len(events), text)
    return events
