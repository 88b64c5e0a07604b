"""
Tests for the remote store implementations.

HTTP is never hit: the Firebase store gets a mocked requests session.
"""

import asyncio
import unittest
from unittest import mock

import requests

from racesync.errors import RemoteStoreError
from racesync.remote import FirebaseRemoteStore, MemoryRemoteStore, OfflineRemoteStore


def fake_response(payload=None, status_error=None):
    resp = mock.Mock()
    resp.json.return_value = payload
    if status_error is not None:
        resp.raise_for_status.side_effect = status_error
    return resp


class TestMemoryRemoteStore(unittest.IsolatedAsyncioTestCase):
    async def test_get_set_and_notify(self) -> None:
        store = MemoryRemoteStore()
        seen = []
        sub = store.subscribe("roster", seen.append)

        self.assertIsNone(await store.get("roster"))
        await store.set("roster", ["A"])
        self.assertEqual(await store.get("roster"), ["A"])
        self.assertEqual(seen, [["A"]])

        store.unsubscribe(sub)
        await store.set("roster", ["A", "B"])
        self.assertEqual(seen, [["A"]])

    async def test_offline_switch(self) -> None:
        store = MemoryRemoteStore({"rsvp": {}})
        store.online = False
        with self.assertRaises(RemoteStoreError):
            await store.get("rsvp")
        with self.assertRaises(RemoteStoreError):
            await store.set("rsvp", {})
        store.publish("rsvp", {"E1": {}})
        self.assertEqual(store.peek("rsvp"), {"E1": {}})


class TestOfflineRemoteStore(unittest.IsolatedAsyncioTestCase):
    async def test_everything_fails(self) -> None:
        store = OfflineRemoteStore()
        with self.assertRaises(RemoteStoreError):
            await store.get("roster")
        with self.assertRaises(RemoteStoreError):
            await store.set("roster", [])
        store.unsubscribe(store.subscribe("roster", lambda doc: None))


class TestFirebaseRemoteStore(unittest.IsolatedAsyncioTestCase):
    def make_store(self, **kwargs) -> FirebaseRemoteStore:
        self.session = mock.Mock()
        return FirebaseRemoteStore("https://team.firebaseio.com/", session=self.session, **kwargs)

    async def test_get_uses_document_url(self) -> None:
        store = self.make_store(auth="token", timeout=3)
        self.session.get.return_value = fake_response(["A", "B"])

        self.assertEqual(await store.get("roster"), ["A", "B"])
        self.session.get.assert_called_once_with(
            "https://team.firebaseio.com/roster.json", params={"auth": "token"}, timeout=3
        )

    async def test_set_puts_whole_document(self) -> None:
        store = self.make_store()
        self.session.put.return_value = fake_response()

        await store.set("rsvp", {"E1": {"A": "maybe"}})
        self.session.put.assert_called_once_with(
            "https://team.firebaseio.com/rsvp.json", params={}, json={"E1": {"A": "maybe"}}, timeout=10.0
        )

    async def test_transport_errors_become_remote_store_errors(self) -> None:
        store = self.make_store()
        self.session.get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(RemoteStoreError):
            await store.get("roster")

        self.session.put.return_value = fake_response(status_error=requests.HTTPError("401"))
        with self.assertRaises(RemoteStoreError):
            await store.set("roster", [])

    async def test_bad_json_is_an_error(self) -> None:
        store = self.make_store()
        resp = fake_response()
        resp.json.side_effect = ValueError("no json")
        self.session.get.return_value = resp
        with self.assertRaises(RemoteStoreError):
            await store.get("roster")

    async def test_poll_delivers_changes_only(self) -> None:
        store = self.make_store(poll_interval=0)
        calls = []

        def respond(*args, **kwargs):
            calls.append(args)
            return fake_response(["A"] if len(calls) <= 2 else ["A", "B"])

        self.session.get.side_effect = respond
        seen = []
        sub = store.subscribe("roster", seen.append)
        for _ in range(100):
            if len(seen) >= 2 and self.session.get.call_count >= 4:
                break
            await asyncio.sleep(0.01)
        store.unsubscribe(sub)

        self.assertEqual(seen, [["A"], ["A", "B"]])


if __name__ == "__main__":
    unittest.main()
