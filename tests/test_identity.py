import unittest
from datetime import datetime, timezone

from racesync.errors import DuplicateNameError, InvalidNameError, NotFoundError
from racesync.identity import RosterIdentityProvider, sanitize_username
from racesync.model import Event, EventType, RsvpStatus
from racesync.remote import MemoryRemoteStore
from racesync.storage import MemoryCache
from racesync.sync import SyncController

EVENT = Event(
    id="E1",
    name="Race",
    series="",
    track="",
    type=EventType.GET,
    classes=("GT3",),
    start_time=datetime(2026, 11, 21, 12, 0, tzinfo=timezone.utc),
    duration=3,
)


class TestSanitize(unittest.TestCase):
    def test_trims_and_truncates(self) -> None:
        self.assertEqual(sanitize_username("  Max  "), "Max")
        self.assertEqual(len(sanitize_username("x" * 80)), 50)
        self.assertEqual(sanitize_username(None), "")


class TestRosterIdentityProvider(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.remote = MemoryRemoteStore({"roster": ["Existing"]})
        self.ctl = SyncController(self.remote, MemoryCache(), [EVENT], seed_empty=False)
        await self.ctl.start()
        self.idp = RosterIdentityProvider(self.ctl)

    async def test_register_adds_member_and_signs_in(self) -> None:
        self.assertEqual(self.idp.register("  Newbie "), "Newbie")
        self.assertEqual(self.idp.current_member, "Newbie")
        self.assertEqual(self.ctl.state.roster, ["Existing", "Newbie"])
        self.assertIs(self.ctl.state.rsvp.get("E1", "Newbie"), RsvpStatus.ABSENT)
        await self.ctl.flush()
        self.assertEqual(self.remote.peek("roster"), ["Existing", "Newbie"])

    async def test_register_rejects_invalid_and_duplicate(self) -> None:
        with self.assertRaises(InvalidNameError):
            self.idp.register("   ")
        with self.assertRaises(DuplicateNameError):
            self.idp.register("Existing")
        self.assertEqual(self.ctl.state.roster, ["Existing"])

    async def test_register_rejects_characters_unusable_as_keys(self) -> None:
        for name in ("Dr. Who", "team#1", "a$b", "x[0]", "left/right"):
            with self.assertRaises(InvalidNameError):
                self.idp.register(name)
        await self.ctl.flush()
        self.assertEqual(self.ctl.state.roster, ["Existing"])
        self.assertEqual(self.remote.set_calls, [])

    async def test_sign_in_and_out(self) -> None:
        self.assertEqual(self.idp.sign_in("Existing"), "Existing")
        self.assertEqual(self.idp.current_member, "Existing")
        self.idp.sign_out()
        self.assertIsNone(self.idp.current_member)
        with self.assertRaises(NotFoundError):
            self.idp.sign_in("Ghost")


if __name__ == "__main__":
    unittest.main()
