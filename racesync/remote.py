"""
Remote store: the durable, shared copy of the three documents.

Contract (all implementations):

    await get(key)          -> document or None when empty
    await set(key, doc)     -> None, raises RemoteStoreError on failure
    subscribe(key, cb)      -> Subscription; cb(document) runs on the event loop
    unsubscribe(sub)

Implementations:
- FirebaseRemoteStore: Firebase Realtime Database REST API via requests,
  subscriptions by polling.
- MemoryRemoteStore: in-process store for tests and local sessions.
- OfflineRemoteStore: every call fails; the controller runs on the cache.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests

from racesync.errors import RemoteStoreError
from racesync.log import get_logger

logger = get_logger(__name__)

ChangeCallback = Callable[[Any], None]


@dataclass
class Subscription:
    key: str
    callback: ChangeCallback
    cancel: Optional[Callable[[], Any]] = field(default=None, repr=False)


class RemoteStore:
    """Base class documenting the remote store contract."""

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def set(self, key: str, document: Any) -> None:
        raise NotImplementedError

    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        raise NotImplementedError

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.cancel is not None:
            subscription.cancel()


# ---------------------------------------------------------------------------
# In-process stores
# ---------------------------------------------------------------------------


class MemoryRemoteStore(RemoteStore):
    """
    Remote store held in memory.

    Set `online = False` to make every get/set fail, or put keys into
    `failing_keys` to fail only those. publish() simulates a write by
    another client: it bypasses the failure switches and notifies
    subscribers.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._docs: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._subscribers: dict[str, list[Subscription]] = {}
        self.online = True
        self.failing_keys: set[str] = set()
        self.set_calls: list[tuple[str, Any]] = []

    def _check(self, key: str) -> None:
        if not self.online or key in self.failing_keys:
            raise RemoteStoreError(f"Remote store unreachable for {key!r}")

    async def get(self, key: str) -> Any | None:
        await asyncio.sleep(0)
        self._check(key)
        return copy.deepcopy(self._docs.get(key))

    async def set(self, key: str, document: Any) -> None:
        await asyncio.sleep(0)
        self._check(key)
        self.set_calls.append((key, copy.deepcopy(document)))
        self.publish(key, document)

    def peek(self, key: str) -> Any | None:
        return copy.deepcopy(self._docs.get(key))

    def publish(self, key: str, document: Any) -> None:
        self._docs[key] = copy.deepcopy(document)
        for sub in list(self._subscribers.get(key, [])):
            sub.callback(copy.deepcopy(document))

    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        sub = Subscription(key=key, callback=callback)
        self._subscribers.setdefault(key, []).append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.key, [])
        if subscription in subs:
            subs.remove(subscription)

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, []))


class OfflineRemoteStore(RemoteStore):
    """Used when no remote URL is configured."""

    async def get(self, key: str) -> Any | None:
        raise RemoteStoreError("No remote store configured")

    async def set(self, key: str, document: Any) -> None:
        raise RemoteStoreError("No remote store configured")

    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        return Subscription(key=key, callback=callback)


# ---------------------------------------------------------------------------
# Firebase Realtime Database (REST)
# ---------------------------------------------------------------------------


class FirebaseRemoteStore(RemoteStore):
    """
    Remote store on the Firebase Realtime Database REST API.

    Each document lives at <base_url>/<key>.json. Reads are GET, writes are
    PUT of the whole document. Blocking requests run in a worker thread so
    the event loop never waits on the network.
    """

    def __init__(
        self,
        base_url: str,
        auth: str | None = None,
        timeout: float = 10.0,
        poll_interval: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = auth or None
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._session = session or requests.Session()

    def _url(self, key: str) -> str:
        return f"{self.base_url}/{key}.json"

    def _params(self) -> dict[str, str]:
        return {"auth": self.auth} if self.auth else {}

    def _get_sync(self, key: str) -> Any | None:
        try:
            resp = self._session.get(self._url(key), params=self._params(), timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise RemoteStoreError(f"GET {key} failed: {exc}") from exc

    def _put_sync(self, key: str, document: Any) -> None:
        try:
            resp = self._session.put(
                self._url(key), params=self._params(), json=document, timeout=self.timeout
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteStoreError(f"PUT {key} failed: {exc}") from exc

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, document: Any) -> None:
        await asyncio.to_thread(self._put_sync, key, document)

    def subscribe(self, key: str, callback: ChangeCallback) -> Subscription:
        task = asyncio.get_running_loop().create_task(self._poll(key, callback))
        return Subscription(key=key, callback=callback, cancel=task.cancel)

    async def _poll(self, key: str, callback: ChangeCallback) -> None:
        """Deliver the document whenever it differs from the last one seen."""
        last: Any = None
        first = True
        while True:
            try:
                doc = await self.get(key)
            except RemoteStoreError as exc:
                logger.debug("Poll of %s failed: %s", key, exc)
            else:
                if first or doc != last:
                    first = False
                    last = doc
                    callback(copy.deepcopy(doc))
            await asyncio.sleep(self.poll_interval)
