"""
Unit tests for the local fallback cache.

Cache contract:
- Missing/invalid file -> None
- set() never raises
- File schema: {"key": ..., "document": ...}
"""

import json
import tempfile
import unittest
from pathlib import Path

from racesync.storage import JsonFileCache, MemoryCache


class TestJsonFileCache(unittest.TestCase):
    def test_missing_file_returns_none(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            self.assertIsNone(JsonFileCache(d).get("rsvp"))

    def test_save_and_load(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            cache = JsonFileCache(Path(d) / "nested")
            cache.set("roster", ["A", "B"])
            self.assertEqual(cache.get("roster"), ["A", "B"])

            data = json.loads((Path(d) / "nested" / "roster.json").read_text(encoding="utf-8"))
            self.assertEqual(data, {"key": "roster", "document": ["A", "B"]})

    def test_corrupted_file_returns_none(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            (Path(d) / "rsvp.json").write_text("{not json", encoding="utf-8")
            with self.assertLogs("racesync.storage", level="WARNING"):
                self.assertIsNone(JsonFileCache(d).get("rsvp"))

    def test_wrong_schema_returns_none(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            (Path(d) / "rsvp.json").write_text('["A"]', encoding="utf-8")
            with self.assertLogs("racesync.storage", level="WARNING"):
                self.assertIsNone(JsonFileCache(d).get("rsvp"))

    def test_unwritable_location_does_not_raise(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            blocker = Path(d) / "file"
            blocker.write_text("x", encoding="utf-8")
            # the cache directory would have to live below a regular file
            cache = JsonFileCache(blocker / "cache")
            with self.assertLogs("racesync.storage", level="WARNING"):
                cache.set("roster", ["A"])
            self.assertIsNone(cache.get("roster"))


class TestMemoryCache(unittest.TestCase):
    def test_returns_copies(self) -> None:
        cache = MemoryCache()
        doc = {"E1": {"A": "maybe"}}
        cache.set("rsvp", doc)
        doc["E1"]["A"] = "available"
        got = cache.get("rsvp")
        self.assertEqual(got, {"E1": {"A": "maybe"}})
        got["E1"]["A"] = "unavailable"
        self.assertEqual(cache.get("rsvp"), {"E1": {"A": "maybe"}})


if __name__ == "__main__":
    unittest.main()
