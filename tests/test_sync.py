"""
Tests for the synchronization controller.

The remote store is the in-memory implementation; its `online` switch and
`failing_keys` simulate an unreachable backend, and publish() simulates a
write made by another client.
"""

import asyncio
import random
import unittest
from datetime import datetime, timezone

from racesync.catalog import parse_catalog
from racesync.errors import NotFoundError, RefreshFailed, RefreshInProgress, SyncDegraded, SyncLost
from racesync.matrix import RsvpMatrix
from racesync.model import DocKey, Event, EventType, RsvpStatus
from racesync.remote import MemoryRemoteStore
from racesync.storage import MemoryCache
from racesync.sync import LoadState, SyncController, WriteState


def make_event(event_id: str) -> Event:
    return Event(
        id=event_id,
        name=f"Race {event_id}",
        series="Series",
        track="Track",
        type=EventType.SPECIAL,
        classes=("GT3",),
        start_time=datetime(2026, 11, 21, 12, 0, tzinfo=timezone.utc),
        duration=6,
    )


CATALOG = [make_event("E1"), make_event("E2")]


class SlowFirstSetStore(MemoryRemoteStore):
    """The first write is slower than the ones after it."""

    def __init__(self, initial=None) -> None:
        super().__init__(initial)
        self._slow = True

    async def set(self, key, document) -> None:
        if self._slow:
            self._slow = False
            await asyncio.sleep(0.05)
        await super().set(key, document)


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    def make_controller(self, remote_docs=None, cache_docs=None, **kwargs) -> SyncController:
        self.remote = MemoryRemoteStore(remote_docs)
        self.cache = MemoryCache(cache_docs)
        self.received = []
        kwargs.setdefault("seed_empty", False)
        return SyncController(self.remote, self.cache, CATALOG, on_warning=self.received.append, **kwargs)


class TestLoading(ControllerTestCase):
    async def test_start_loads_and_densifies(self) -> None:
        ctl = self.make_controller({"roster": ["A", "B"], "rsvp": {"E1": {"A": "available"}}})
        self.assertIs(ctl.load_state, LoadState.UNINITIALIZED)
        await ctl.start()

        self.assertIs(ctl.load_state, LoadState.READY)
        self.assertEqual(ctl.state.roster, ["A", "B"])
        self.assertEqual(ctl.state.rsvp.cell_count(), 4)
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.AVAILABLE)
        self.assertTrue(ctl.state.rsvp.has_cell("E2", "B"))
        self.assertEqual(ctl.warnings, [])

    async def test_unreachable_remote_falls_back_to_cache(self) -> None:
        ctl = self.make_controller(
            {"roster": ["X"]},
            cache_docs={"roster": ["A"], "rsvp": {"E1": {"A": "maybe"}}},
        )
        self.remote.online = False
        await ctl.start()

        self.assertIs(ctl.load_state, LoadState.READY)
        self.assertEqual(ctl.state.roster, ["A"])
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.MAYBE)
        self.assertEqual(len(ctl.warnings), 3)
        self.assertTrue(all(isinstance(w, SyncDegraded) for w in ctl.warnings))
        self.assertEqual(self.received, ctl.warnings)

    async def test_one_failing_document_only_degrades_that_document(self) -> None:
        ctl = self.make_controller({"roster": ["A", "B"]}, cache_docs={"practice": {"E1": {"A": {"2026-11-10_eu": True}}}})
        self.remote.failing_keys.add("practice")
        await ctl.start()

        self.assertEqual(ctl.state.roster, ["A", "B"])
        self.assertTrue(ctl.state.practice.get("E1", "A", "2026-11-10_eu"))
        self.assertEqual([w.doc_key for w in ctl.warnings], ["practice"])

    async def test_malformed_remote_document_falls_back(self) -> None:
        ctl = self.make_controller({"roster": ["A"], "rsvp": {"E1": {"A": "whenever"}}})
        await ctl.start()
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.ABSENT)
        self.assertIsInstance(ctl.warnings[0], SyncDegraded)

    async def test_empty_remote_is_restored_from_cache(self) -> None:
        ctl = self.make_controller({}, cache_docs={"roster": ["A", "B"]})
        await ctl.start()
        await ctl.flush()
        self.assertEqual(ctl.state.roster, ["A", "B"])
        self.assertEqual(self.remote.peek("roster"), ["A", "B"])

    async def test_seeding_only_runs_on_empty_matrix(self) -> None:
        ctl = self.make_controller({"roster": ["A", "B"]}, seed_empty=True, rng=random.Random(3))
        await ctl.start()
        self.assertEqual(ctl.state.rsvp.cell_count(), 4)

        ctl2 = self.make_controller({"roster": ["A", "B"], "rsvp": {"E1": {"A": "maybe"}}}, seed_empty=True)
        await ctl2.start()
        self.assertIs(ctl2.state.rsvp.get("E1", "A"), RsvpStatus.MAYBE)
        self.assertIs(ctl2.state.rsvp.get("E2", "B"), RsvpStatus.ABSENT)
        self.assertIs(ctl2.state.rsvp.get("E1", "B"), RsvpStatus.ABSENT)

    async def test_mutation_before_ready_is_refused(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        with self.assertRaises(RuntimeError):
            ctl.set_rsvp("E1", "A", "available")

    async def test_malformed_catalog_feed_starts_with_no_events(self) -> None:
        ctl = SyncController(
            MemoryRemoteStore({"roster": ["A"]}),
            MemoryCache(),
            lambda: parse_catalog({"events": []}),
            seed_empty=False,
        )
        with self.assertLogs("racesync.sync", level="ERROR"):
            await ctl.start()
        self.assertIs(ctl.load_state, LoadState.READY)
        self.assertEqual(ctl.state.catalog, [])
        self.assertEqual(ctl.state.roster, ["A"])


class TestWrites(ControllerTestCase):
    async def test_optimistic_update_then_write_back(self) -> None:
        ctl = self.make_controller({"roster": ["A", "B"]})
        await ctl.start()

        snapshot = ctl.set_rsvp("E1", "A", "available")
        # applied before any network I/O happened
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.AVAILABLE)
        self.assertIs(snapshot.get("E1", "A"), RsvpStatus.AVAILABLE)
        self.assertEqual(self.remote.set_calls, [])

        await ctl.flush()
        self.assertIs(ctl.write_state, WriteState.IDLE)
        self.assertEqual(self.remote.peek("rsvp")["E1"], {"A": "available", "B": "absent"})
        self.assertEqual(self.cache.get("rsvp"), self.remote.peek("rsvp"))
        self.assertFalse(ctl.last_write_failed)

    async def test_write_writes_whole_document(self) -> None:
        ctl = self.make_controller({"roster": ["A", "B"]})
        await ctl.start()
        ctl.set_rsvp("E2", "B", "maybe")
        await ctl.flush()
        key, doc = self.remote.set_calls[-1]
        self.assertEqual(key, "rsvp")
        self.assertEqual(RsvpMatrix.from_document(doc).cell_count(), 4)

    async def test_failed_write_keeps_local_change_and_warns(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        self.remote.online = False

        ctl.set_rsvp("E1", "A", "unavailable")
        await ctl.flush()

        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.UNAVAILABLE)
        self.assertEqual(self.cache.get("rsvp")["E1"]["A"], "unavailable")
        self.assertTrue(ctl.last_write_failed)
        self.assertIs(ctl.write_state, WriteState.IDLE)
        self.assertIsInstance(ctl.warnings[-1], SyncLost)

        # the next successful write of any kind resynchronizes
        self.remote.online = True
        ctl.set_rsvp("E2", "A", "maybe")
        await ctl.flush()
        self.assertFalse(ctl.last_write_failed)
        self.assertEqual(self.remote.peek("rsvp")["E1"]["A"], "unavailable")

    async def test_rejected_update_changes_nothing(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        before = ctl.state.rsvp.copy()
        with self.assertRaises(NotFoundError):
            ctl.set_rsvp("E1", "nobody", "available")
        await ctl.flush()
        self.assertEqual(ctl.state.rsvp, before)
        self.assertEqual(self.remote.set_calls, [])

    async def test_practice_updates(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        ctl.set_practice_availability("E1", "A", "2026-11-10_eu", True)
        ctl.set_practice_availability("E1", "A", "2026-11-11_aussie", True)
        await ctl.flush()
        self.assertEqual(
            self.remote.peek("practice"), {"E1": {"A": {"2026-11-10_eu": True, "2026-11-11_aussie": True}}}
        )

        ctl.update_practice_availability("E1", "A", {"2026-11-12_eu": True})
        await ctl.flush()
        self.assertEqual(self.remote.peek("practice"), {"E1": {"A": {"2026-11-12_eu": True}}})

    async def test_add_member_writes_roster_and_rsvp(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        ctl.add_member("B")
        await ctl.flush()
        self.assertEqual(self.remote.peek("roster"), ["A", "B"])
        self.assertEqual(self.remote.peek("rsvp")["E2"]["B"], "absent")

    async def test_writes_to_one_document_keep_mutation_order(self) -> None:
        remote = SlowFirstSetStore({"roster": ["A"]})
        cache = MemoryCache()
        ctl = SyncController(remote, cache, CATALOG, seed_empty=False)
        await ctl.start()

        ctl.set_rsvp("E1", "A", "maybe")
        ctl.set_rsvp("E1", "A", "available")
        await ctl.flush()

        self.assertEqual([doc["E1"]["A"] for _, doc in remote.set_calls], ["maybe", "available"])
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.AVAILABLE)
        self.assertEqual(remote.peek("rsvp")["E1"]["A"], "available")
        self.assertEqual(cache.get("rsvp")["E1"]["A"], "available")
        self.assertIs(ctl.write_state, WriteState.IDLE)


class TestRemoteChanges(ControllerTestCase):
    async def test_different_snapshot_replaces_document(self) -> None:
        ctl = self.make_controller({"roster": ["A", "B"]})
        changed = []
        ctl.add_listener(changed.append)
        await ctl.start()

        self.remote.publish("rsvp", {"E1": {"A": "maybe"}})
        self.assertEqual(ctl.state.rsvp, RsvpMatrix.from_document({"E1": {"A": "maybe"}}))
        self.assertEqual(changed, [DocKey.RSVP])

    async def test_equal_snapshot_is_ignored(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        changed = []
        ctl.add_listener(changed.append)
        await ctl.start()
        self.remote.publish("roster", ["A"])
        self.assertEqual(changed, [])

    async def test_roster_change_densifies(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        self.remote.publish("roster", ["A", "C"])
        self.assertEqual(ctl.state.roster, ["A", "C"])
        self.assertTrue(ctl.state.rsvp.has_cell("E1", "C"))

    async def test_stale_remote_snapshot_overwrites_pending_local_write(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        stale = ctl.state.rsvp.to_document()

        ctl.set_rsvp("E1", "A", "maybe")
        # another client's snapshot, taken before the local write, arrives first
        self.remote.publish("rsvp", stale)
        self.assertEqual(ctl.state.rsvp, RsvpMatrix.from_document(stale))
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.ABSENT)

        # then the local write lands and its echo is applied last
        await ctl.flush()
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.MAYBE)

    async def test_malformed_and_null_snapshots_are_ignored(self) -> None:
        ctl = self.make_controller({"roster": ["A"], "rsvp": {"E1": {"A": "available"}}})
        await ctl.start()
        self.remote.publish("rsvp", None)
        self.remote.publish("rsvp", {"E1": {"A": 42}})
        self.assertIs(ctl.state.rsvp.get("E1", "A"), RsvpStatus.AVAILABLE)

    async def test_close_unsubscribes(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        self.assertEqual(self.remote.subscriber_count("rsvp"), 1)
        await ctl.close()
        self.assertEqual(self.remote.subscriber_count("rsvp"), 0)


class TestRefresh(ControllerTestCase):
    async def test_refresh_reloads_from_remote(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        await ctl.close()
        self.remote.publish("roster", ["A", "B"])
        self.remote.publish("rsvp", {"E1": {"B": "available"}})

        await ctl.refresh()
        self.assertEqual(ctl.state.roster, ["A", "B"])
        self.assertIs(ctl.state.rsvp.get("E1", "B"), RsvpStatus.AVAILABLE)
        self.assertTrue(ctl.state.rsvp.has_cell("E2", "A"))

    async def test_failed_refresh_keeps_state_and_skips_cache(self) -> None:
        ctl = self.make_controller({"roster": ["A"]}, cache_docs={"roster": ["cached"]})
        await ctl.start()
        ctl.set_rsvp("E1", "A", "available")
        await ctl.flush()
        before = ctl.state.rsvp.copy()

        self.remote.online = False
        with self.assertRaises(RefreshFailed):
            await ctl.refresh()
        self.assertEqual(ctl.state.roster, ["A"])
        self.assertEqual(ctl.state.rsvp, before)

    async def test_concurrent_refresh_is_rejected(self) -> None:
        ctl = self.make_controller({"roster": ["A"]})
        await ctl.start()
        first = asyncio.ensure_future(ctl.refresh())
        await asyncio.sleep(0)
        with self.assertRaises(RefreshInProgress):
            await ctl.refresh()
        await first
        # once finished, a new refresh is accepted
        await ctl.refresh()


if __name__ == "__main__":
    unittest.main()
