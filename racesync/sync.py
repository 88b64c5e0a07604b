"""
Synchronization controller.

Owns the canonical in-memory state and keeps it in step with the remote
store and the local fallback cache.

Load:    uninitialized -> loading -> ready
Writes:  idle -> writing -> (idle | write-failed -> idle)

- start() fetches the three documents concurrently. A document that cannot
  be fetched (or is malformed) is replaced by its cached snapshot and a
  SyncDegraded warning is recorded. The RSVP matrix is then densified.
- Mutations apply to memory synchronously and return at once; the whole
  affected document is written back in a background task, one write per
  document at a time in mutation order. The cache gets
  the same snapshot whether the write succeeds or not. A failed write
  records SyncLost and is not retried or rolled back.
- Remote change notifications replace a document wholesale when it differs
  from the in-memory copy. A notification older than a pending local write
  can overwrite that write: whichever is applied last wins.
- refresh() reads the remote store only. On failure the in-memory state is
  kept and RefreshFailed is raised. A second refresh while one is running
  raises RefreshInProgress.

Everything runs on one asyncio event loop, which is the only mutator.
"""

from __future__ import annotations

import asyncio
import enum
import random
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Mapping, Optional, Sequence, Union

import requests

from racesync.config import settings
from racesync.errors import (
    DuplicateNameError,
    NotFoundError,
    RefreshFailed,
    RefreshInProgress,
    RemoteStoreError,
    SyncDegraded,
    SyncError,
    SyncLost,
    ValidationError,
)
from racesync.log import get_logger
from racesync.matrix import (
    PracticeMatrix,
    RsvpMatrix,
    densify,
    replace_practice_availability,
    roster_from_document,
    seed_if_empty,
    set_practice_availability,
    set_rsvp,
)
from racesync.model import DocKey, Event, RsvpStatus, TimeSlot
from racesync.remote import RemoteStore, Subscription

logger = get_logger(__name__)

CatalogSource = Union[Sequence[Event], Callable[[], Sequence[Event]]]


class LoadState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class WriteState(str, enum.Enum):
    IDLE = "idle"
    WRITING = "writing"
    WRITE_FAILED = "write-failed"


@dataclass
class AppState:
    """Everything the views need, owned by the controller."""

    catalog: list[Event] = field(default_factory=list)
    roster: list[str] = field(default_factory=list)
    rsvp: RsvpMatrix = field(default_factory=RsvpMatrix)
    practice: PracticeMatrix = field(default_factory=PracticeMatrix)
    current_member: str | None = None

    def event_ids(self) -> list[str]:
        return [e.id for e in self.catalog]

    def find_event(self, event_id: str) -> Event:
        for event in self.catalog:
            if event.id == event_id:
                return event
        raise NotFoundError(f"Unknown event: {event_id!r}")

    def document(self, key: DocKey) -> Any:
        if key is DocKey.ROSTER:
            return _to_document(key, self.roster)
        if key is DocKey.RSVP:
            return _to_document(key, self.rsvp)
        return _to_document(key, self.practice)


def _parse(key: DocKey, doc: Any) -> Any:
    if key is DocKey.ROSTER:
        return roster_from_document(doc)
    if key is DocKey.RSVP:
        return RsvpMatrix.from_document(doc)
    return PracticeMatrix.from_document(doc)


def _to_document(key: DocKey, value: Any) -> Any:
    if key is DocKey.ROSTER:
        return list(value)
    return value.to_document()


def _is_empty(value: Any) -> bool:
    if isinstance(value, list):
        return not value
    return value.is_empty()


class SyncController:
    """Load, mutate and synchronize the roster and availability matrices."""

    def __init__(
        self,
        remote: RemoteStore,
        cache: Any,
        catalog: CatalogSource,
        time_slots: Sequence[TimeSlot] | None = None,
        seed_empty: bool | None = None,
        rng: random.Random | None = None,
        on_warning: Optional[Callable[[SyncError], None]] = None,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._catalog_source = catalog
        self.time_slots: list[TimeSlot] = list(time_slots if time_slots is not None else settings.time_slots)
        self._seed_empty = settings.seed_empty if seed_empty is None else seed_empty
        self._rng = rng
        self._on_warning = on_warning

        self.state = AppState()
        self.load_state = LoadState.UNINITIALIZED
        self.write_state = WriteState.IDLE
        self.last_write_failed = False
        self.warnings: list[SyncError] = []

        self._listeners: list[Callable[[DocKey], None]] = []
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Task] = set()
        self._write_locks: dict[DocKey, asyncio.Lock] = {}
        self._writes_in_flight = 0
        self._refreshing = False

    # ── Lifecycle ──

    async def start(self) -> AppState:
        """Load catalog and documents, densify, then subscribe to changes."""
        if self.load_state is not LoadState.UNINITIALIZED:
            return self.state
        self.load_state = LoadState.LOADING

        catalog = await self._load_catalog()
        roster, rsvp, practice = await asyncio.gather(*(self._load_doc(key) for key in DocKey))

        if self._seed_empty and catalog and roster:
            rsvp = seed_if_empty(rsvp, catalog, roster, self._rng)

        self.state.catalog = catalog
        self.state.roster = roster
        self.state.rsvp = densify(rsvp, catalog, roster)
        self.state.practice = practice
        self.load_state = LoadState.READY
        logger.info(
            "Ready: %d events, %d members, %d RSVP cells",
            len(catalog),
            len(roster),
            self.state.rsvp.cell_count(),
        )

        for key in DocKey:
            self._subscriptions.append(self._remote.subscribe(key.value, partial(self._on_remote_change, key)))
        return self.state

    async def close(self) -> None:
        """Wait for pending writes, then drop the subscriptions."""
        await self.flush()
        for sub in self._subscriptions:
            self._remote.unsubscribe(sub)
        self._subscriptions.clear()

    async def flush(self) -> None:
        """Wait until every scheduled write-back has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def add_listener(self, callback: Callable[[DocKey], None]) -> None:
        """callback(key) runs after any in-memory change to a document."""
        self._listeners.append(callback)

    # ── Loading ──

    async def _load_catalog(self) -> list[Event]:
        source = self._catalog_source
        if not callable(source):
            return list(source)
        try:
            return list(await asyncio.to_thread(source))
        except (requests.RequestException, OSError, ValueError, ValidationError) as exc:
            logger.error("Error loading events: %s", exc)
            return []

    def _from_cache(self, key: DocKey) -> Any:
        try:
            return _parse(key, self._cache.get(key.value))
        except ValidationError as exc:
            logger.warning("Cached %s snapshot is malformed, starting empty: %s", key.value, exc)
            return _parse(key, None)

    async def _load_doc(self, key: DocKey) -> Any:
        try:
            value = _parse(key, await self._remote.get(key.value))
        except (RemoteStoreError, ValidationError) as exc:
            self._warn(SyncDegraded(f"Loading {key.value} failed ({exc}); using local cache", key.value))
            return self._from_cache(key)

        if _is_empty(value):
            cached = self._from_cache(key)
            if not _is_empty(cached):
                # remote is empty but this client has data: push it up
                logger.info("Remote %s is empty, restoring it from the local cache", key.value)
                self._schedule_write(key, _to_document(key, cached))
                return cached
        return value

    # ── Remote changes ──

    def _on_remote_change(self, key: DocKey, doc: Any) -> None:
        if doc is None or self.load_state is not LoadState.READY:
            return
        try:
            value = _parse(key, doc)
        except ValidationError as exc:
            logger.warning("Ignoring malformed remote %s update: %s", key.value, exc)
            return

        if key is DocKey.ROSTER:
            if value == self.state.roster:
                return
            self.state.roster = value
            self.state.rsvp = densify(self.state.rsvp, self.state.catalog, value)
        elif key is DocKey.RSVP:
            if value == self.state.rsvp:
                return
            self.state.rsvp = value
        else:
            if value == self.state.practice:
                return
            self.state.practice = value

        logger.debug("Adopted remote %s snapshot", key.value)
        self._notify(key)

    # ── Mutations ──

    def set_rsvp(self, event_id: str, member: str, status: RsvpStatus | str) -> RsvpMatrix:
        """Set one RSVP cell and schedule the RSVP write-back."""
        self._require_ready()
        snapshot = set_rsvp(self.state.rsvp, self.state.event_ids(), self.state.roster, event_id, member, status)
        self._after_mutation(DocKey.RSVP)
        return snapshot

    def set_practice_availability(self, event_id: str, member: str, key: str, available: bool) -> PracticeMatrix:
        """Set one practice cell and schedule the practice write-back."""
        self._require_ready()
        snapshot = set_practice_availability(
            self.state.practice,
            self.state.event_ids(),
            self.state.roster,
            self.time_slots,
            event_id,
            member,
            key,
            available,
        )
        self._after_mutation(DocKey.PRACTICE)
        return snapshot

    def update_practice_availability(
        self, event_id: str, member: str, availability: Mapping[str, bool]
    ) -> PracticeMatrix:
        """Replace a member's slot map for an event in one write-back."""
        self._require_ready()
        snapshot = replace_practice_availability(
            self.state.practice,
            self.state.event_ids(),
            self.state.roster,
            self.time_slots,
            event_id,
            member,
            availability,
        )
        self._after_mutation(DocKey.PRACTICE)
        return snapshot

    def add_member(self, name: str) -> str:
        """
        Append a member to the roster with ABSENT RSVPs for every event and
        write back both documents. The name must already be sanitized.
        """
        self._require_ready()
        if name in self.state.roster:
            raise DuplicateNameError(f"Username already exists: {name!r}")
        self.state.roster.append(name)
        self.state.rsvp = densify(self.state.rsvp, self.state.catalog, [name])
        self._after_mutation(DocKey.ROSTER)
        self._after_mutation(DocKey.RSVP)
        logger.info("Registered member %s", name)
        return name

    def _after_mutation(self, key: DocKey) -> None:
        self._schedule_write(key, self.state.document(key))
        self._notify(key)

    def _require_ready(self) -> None:
        if self.load_state is not LoadState.READY:
            raise RuntimeError(f"Controller is {self.load_state.value}, not ready")

    # ── Write-back ──

    def _schedule_write(self, key: DocKey, document: Any) -> None:
        task = asyncio.get_running_loop().create_task(self._write(key, document))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, key: DocKey, document: Any) -> None:
        self._writes_in_flight += 1
        self.write_state = WriteState.WRITING
        # writes to one document go out one at a time, in mutation order
        lock = self._write_locks.get(key)
        if lock is None:
            lock = self._write_locks[key] = asyncio.Lock()
        try:
            async with lock:
                await self._put(key, document)
        finally:
            self._writes_in_flight -= 1
            if self._writes_in_flight == 0:
                self.write_state = WriteState.IDLE

    async def _put(self, key: DocKey, document: Any) -> None:
        try:
            await self._remote.set(key.value, document)
        except RemoteStoreError as exc:
            self._cache.set(key.value, document)
            self.write_state = WriteState.WRITE_FAILED
            self.last_write_failed = True
            self._warn(
                SyncLost(
                    f"Your change to {key.value} was saved locally but couldn't be synchronized ({exc})",
                    key.value,
                )
            )
        else:
            self._cache.set(key.value, document)
            self.last_write_failed = False
            logger.debug("Synchronized %s", key.value)

    # ── Refresh ──

    async def refresh(self) -> AppState:
        """Re-read all three documents from the remote store only."""
        if self._refreshing:
            raise RefreshInProgress("A refresh is already running")
        self._require_ready()
        self._refreshing = True
        try:
            docs = await asyncio.gather(*(self._remote.get(key.value) for key in DocKey))
            roster, rsvp, practice = (_parse(key, doc) for key, doc in zip(DocKey, docs))
        except (RemoteStoreError, ValidationError) as exc:
            raise RefreshFailed(f"Refresh failed: {exc}") from exc
        finally:
            self._refreshing = False

        self.state.roster = roster
        self.state.rsvp = densify(rsvp, self.state.catalog, roster)
        self.state.practice = practice
        for key in DocKey:
            self._notify(key)
        logger.info("Refreshed from remote store")
        return self.state

    # ── Helpers ──

    def _warn(self, warning: SyncError) -> None:
        logger.warning("%s", warning)
        self.warnings.append(warning)
        if self._on_warning is not None:
            self._on_warning(warning)

    def _notify(self, key: DocKey) -> None:
        for callback in self._listeners:
            callback(key)
