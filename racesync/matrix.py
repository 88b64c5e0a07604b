"""
Availability matrices.

Two instances of the same idea, keyed by (event, member):

    RSVP:      {event_id: {member: RsvpStatus}}
    Practice:  {event_id: {member: {slot_key: bool}}}

Missing cells read as ABSENT / False. densify() inserts explicit ABSENT
RSVP cells for every known (event, member) pair so a later full-document
write-back carries every pair. Practice cells are allowed to stay sparse.

Entries for events that disappeared from the catalog are kept as they are;
nothing in this module prunes them.
"""

from __future__ import annotations

import copy
import random
from typing import Any, Iterable, Mapping, Sequence

from racesync.errors import NotFoundError, ValidationError
from racesync.model import Event, RsvpStatus, TimeSlot, parse_slot_key


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"Malformed {what}: expected an object, got {type(value).__name__}")
    return value


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------


def roster_from_document(doc: Any) -> list[str]:
    """
    Convert a roster document into an ordered list of unique names.

    An empty document (None) is an empty roster. Firebase returns arrays
    with holes as objects keyed by index, so those are accepted too.
    """
    if doc is None:
        return []
    if isinstance(doc, Mapping):
        try:
            items = [doc[k] for k in sorted(doc, key=int)]
        except (TypeError, ValueError) as exc:
            raise ValidationError("Malformed roster document") from exc
    elif isinstance(doc, list):
        items = doc
    else:
        raise ValidationError(f"Malformed roster document: {type(doc).__name__}")

    out: list[str] = []
    seen: set[str] = set()
    for x in items:
        if x is None:
            continue
        if not isinstance(x, str):
            raise ValidationError(f"Malformed roster entry: {x!r}")
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out


# ---------------------------------------------------------------------------
# RSVP matrix
# ---------------------------------------------------------------------------


class RsvpMatrix:
    """Per-(event, member) RSVP status."""

    def __init__(self, cells: Mapping[str, Mapping[str, RsvpStatus]] | None = None) -> None:
        self._cells: dict[str, dict[str, RsvpStatus]] = {}
        for event_id, row in (cells or {}).items():
            self._cells[event_id] = dict(row)

    def get(self, event_id: str, member: str) -> RsvpStatus:
        return self._cells.get(event_id, {}).get(member, RsvpStatus.ABSENT)

    def has_cell(self, event_id: str, member: str) -> bool:
        return member in self._cells.get(event_id, {})

    def row(self, event_id: str) -> dict[str, RsvpStatus]:
        return dict(self._cells.get(event_id, {}))

    def set(self, event_id: str, member: str, status: RsvpStatus) -> None:
        self._cells.setdefault(event_id, {})[member] = status

    def event_ids(self) -> list[str]:
        return list(self._cells)

    def cell_count(self) -> int:
        return sum(len(row) for row in self._cells.values())

    def is_empty(self) -> bool:
        return self.cell_count() == 0

    def copy(self) -> "RsvpMatrix":
        return RsvpMatrix(self._cells)

    def to_document(self) -> dict[str, dict[str, str]]:
        return {e: {m: s.value for m, s in row.items()} for e, row in self._cells.items()}

    @classmethod
    def from_document(cls, doc: Any) -> "RsvpMatrix":
        """
        Build a matrix from its JSON document.

        Raises ValidationError for anything that is not a nested object of
        known statuses.
        """
        if doc is None:
            return cls()
        cells: dict[str, dict[str, RsvpStatus]] = {}
        for event_id, row in _require_mapping(doc, "RSVP document").items():
            if row is None:
                cells[str(event_id)] = {}
                continue
            row = _require_mapping(row, f"RSVP row for {event_id!r}")
            cells[str(event_id)] = {str(m): RsvpStatus.parse(s) for m, s in row.items()}
        return cls(cells)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RsvpMatrix):
            return NotImplemented
        return self._cells == other._cells

    def __repr__(self) -> str:
        return f"RsvpMatrix(events={len(self._cells)}, cells={self.cell_count()})"


# ---------------------------------------------------------------------------
# Practice matrix
# ---------------------------------------------------------------------------


class PracticeMatrix:
    """Per-(event, member, slot key) practice availability."""

    def __init__(self, cells: Mapping[str, Mapping[str, Mapping[str, bool]]] | None = None) -> None:
        self._cells: dict[str, dict[str, dict[str, bool]]] = {}
        for event_id, members in (cells or {}).items():
            self._cells[event_id] = {m: dict(slots) for m, slots in members.items()}

    def get(self, event_id: str, member: str, key: str) -> bool:
        return bool(self._cells.get(event_id, {}).get(member, {}).get(key, False))

    def member_slots(self, event_id: str, member: str) -> dict[str, bool]:
        return dict(self._cells.get(event_id, {}).get(member, {}))

    def set(self, event_id: str, member: str, key: str, available: bool) -> None:
        self._cells.setdefault(event_id, {}).setdefault(member, {})[key] = available

    def replace_member(self, event_id: str, member: str, slots: Mapping[str, bool]) -> None:
        self._cells.setdefault(event_id, {})[member] = dict(slots)

    def is_empty(self) -> bool:
        return not any(self._cells.values())

    def copy(self) -> "PracticeMatrix":
        return PracticeMatrix(self._cells)

    def to_document(self) -> dict[str, dict[str, dict[str, bool]]]:
        return copy.deepcopy(self._cells)

    @classmethod
    def from_document(cls, doc: Any) -> "PracticeMatrix":
        if doc is None:
            return cls()
        cells: dict[str, dict[str, dict[str, bool]]] = {}
        for event_id, members in _require_mapping(doc, "practice document").items():
            cells[str(event_id)] = {}
            if members is None:
                continue
            for member, slots in _require_mapping(members, f"practice row for {event_id!r}").items():
                parsed: dict[str, bool] = {}
                for key, value in _require_mapping(slots or {}, f"practice slots for {member!r}").items():
                    if not isinstance(value, bool):
                        raise ValidationError(f"Practice cell {key!r} must be a boolean, got {value!r}")
                    parsed[str(key)] = value
                cells[str(event_id)][str(member)] = parsed
        return cls(cells)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PracticeMatrix):
            return NotImplemented
        return self._cells == other._cells

    def __repr__(self) -> str:
        return f"PracticeMatrix(events={len(self._cells)})"


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def densify(rsvp: RsvpMatrix, catalog: Iterable[Event], roster: Sequence[str]) -> RsvpMatrix:
    """
    Return a copy of rsvp with an explicit ABSENT cell for every
    (catalog event, roster member) pair that has none.

    Existing cells, including orphans for events no longer in the
    catalog, are left untouched. Idempotent.
    """
    out = rsvp.copy()
    for event in catalog:
        for member in roster:
            if not out.has_cell(event.id, member):
                out.set(event.id, member, RsvpStatus.ABSENT)
    return out


def seed_random(
    catalog: Iterable[Event],
    roster: Sequence[str],
    rng: random.Random | None = None,
) -> RsvpMatrix:
    """
    Build a dense matrix with every cell drawn uniformly from the four
    statuses. Only meant for a completely empty first-run matrix.
    """
    rng = rng or random.Random()
    choices = list(RsvpStatus)
    out = RsvpMatrix()
    for event in catalog:
        for member in roster:
            out.set(event.id, member, rng.choice(choices))
    return out


def seed_if_empty(
    rsvp: RsvpMatrix,
    catalog: Sequence[Event],
    roster: Sequence[str],
    rng: random.Random | None = None,
) -> RsvpMatrix:
    """Seed randomly when the matrix holds no cells at all; otherwise return it unchanged."""
    if not rsvp.is_empty():
        return rsvp
    return seed_random(catalog, roster, rng)


# ---------------------------------------------------------------------------
# Cell updates
# ---------------------------------------------------------------------------


def _check_target(event_ids: Iterable[str], roster: Sequence[str], event_id: str, member: str) -> None:
    if member not in roster:
        raise NotFoundError(f"Unknown member: {member!r}")
    if event_id not in set(event_ids):
        raise NotFoundError(f"Unknown event: {event_id!r}")


def set_rsvp(
    rsvp: RsvpMatrix,
    event_ids: Iterable[str],
    roster: Sequence[str],
    event_id: str,
    member: str,
    status: RsvpStatus | str,
) -> RsvpMatrix:
    """
    Overwrite one RSVP cell in place and return a snapshot of the matrix.

    Raises ValidationError for an unknown status and NotFoundError for an
    unknown member or event; in both cases the matrix is unchanged.
    """
    parsed = RsvpStatus.parse(status)
    _check_target(event_ids, roster, event_id, member)
    rsvp.set(event_id, member, parsed)
    return rsvp.copy()


def set_practice_availability(
    practice: PracticeMatrix,
    event_ids: Iterable[str],
    roster: Sequence[str],
    slots: Sequence[TimeSlot],
    event_id: str,
    member: str,
    key: str,
    available: bool,
) -> PracticeMatrix:
    """
    Overwrite one practice cell in place, keeping the member's other slot
    entries, and return a snapshot of the matrix.
    """
    if not isinstance(available, bool):
        raise ValidationError(f"Practice availability must be a boolean, got {available!r}")
    parse_slot_key(key, list(slots))
    _check_target(event_ids, roster, event_id, member)
    practice.set(event_id, member, key, available)
    return practice.copy()


def replace_practice_availability(
    practice: PracticeMatrix,
    event_ids: Iterable[str],
    roster: Sequence[str],
    slots: Sequence[TimeSlot],
    event_id: str,
    member: str,
    availability: Mapping[str, bool],
) -> PracticeMatrix:
    """Replace a member's whole slot map for one event and return a snapshot."""
    for key, value in availability.items():
        if not isinstance(value, bool):
            raise ValidationError(f"Practice cell {key!r} must be a boolean, got {value!r}")
        parse_slot_key(key, list(slots))
    _check_target(event_ids, roster, event_id, member)
    practice.replace_member(event_id, member, availability)
    return practice.copy()
