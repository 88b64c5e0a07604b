"""
Aggregation: read-only team views derived from the catalog, the roster
and the availability matrices.

Every function here is a pure function of its arguments. Nothing is
cached and no matrix is modified.

Event list pipeline (fixed order, each stage narrows the candidates):
    1. temporal   2. event type   3. class   4. duration
    5. fuzzy name search   6. member RSVP status   7. attendance bucket
then multi-session grouping, then sorting.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from difflib import SequenceMatcher
from typing import Iterable, Sequence

from racesync.config import PRACTICE_EVENT_LIMIT, PRACTICE_WINDOW_DAYS
from racesync.errors import ValidationError
from racesync.matrix import PracticeMatrix, RsvpMatrix
from racesync.model import Event, EventType, EventView, RsvpStatus, SlotResult, TimeSlot, slot_key

SESSION_PATTERN = re.compile(r"^(?P<base>.+?) - Session (?P<number>\d+)$")

LOW_THRESHOLD = 0.30
HIGH_THRESHOLD = 0.70


class AttendanceBucket(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SortKey(str, enum.Enum):
    TIME = "time"
    ATTENDANCE = "attendance"


# ---------------------------------------------------------------------------
# Team statistics
# ---------------------------------------------------------------------------


def available_count(event_id: str, roster: Sequence[str], rsvp: RsvpMatrix) -> int:
    """Number of roster members whose RSVP for the event is 'available'."""
    return sum(1 for m in roster if rsvp.get(event_id, m) is RsvpStatus.AVAILABLE)


def attendance_ratio(event_id: str, roster: Sequence[str], rsvp: RsvpMatrix) -> float:
    """
    Share of the roster available for the event, in [0, 1].
    An empty roster gives 0.
    """
    if not roster:
        return 0.0
    return available_count(event_id, roster, rsvp) / len(roster)


def average_availability(catalog: Iterable[Event], roster: Sequence[str], rsvp: RsvpMatrix) -> float:
    """
    Available cells divided by responded (non-absent) cells over every
    catalog event and roster member. 0 when nobody has responded.
    """
    available = 0
    responded = 0
    for event in catalog:
        for member in roster:
            status = rsvp.get(event.id, member)
            if status is RsvpStatus.ABSENT:
                continue
            responded += 1
            if status is RsvpStatus.AVAILABLE:
                available += 1
    if responded == 0:
        return 0.0
    return available / responded


def team_summary(event_id: str, roster: Sequence[str], rsvp: RsvpMatrix) -> str:
    return f"{available_count(event_id, roster, rsvp)}/{len(roster)} available"


def event_responses(event_id: str, roster: Sequence[str], rsvp: RsvpMatrix) -> list[tuple[str, RsvpStatus]]:
    """(member, status) for every roster member, in roster order."""
    return [(m, rsvp.get(event_id, m)) for m in roster]


def attendance_bucket(ratio: float) -> AttendanceBucket:
    """low < 30% <= medium < 70% <= high"""
    if ratio < LOW_THRESHOLD:
        return AttendanceBucket.LOW
    if ratio < HIGH_THRESHOLD:
        return AttendanceBucket.MEDIUM
    return AttendanceBucket.HIGH


# ---------------------------------------------------------------------------
# Fuzzy name search
# ---------------------------------------------------------------------------


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def fuzzy_score(query: str, text: str) -> float:
    """
    Similarity of query to the best-matching part of text, in [0, 1].

    A plain substring match scores 1. Otherwise the query is compared to
    every run of consecutive words in text with the same word count, and
    to the whole text, keeping the best ratio.
    """
    q = _normalize(query)
    t = _normalize(text)
    if not q:
        return 1.0
    if q in t:
        return 1.0

    best = SequenceMatcher(None, q, t).ratio()
    words = t.split()
    width = max(1, len(q.split()))
    for i in range(max(1, len(words) - width + 1)):
        window = " ".join(words[i : i + width])
        best = max(best, SequenceMatcher(None, q, window).ratio())
    return best


def fuzzy_match(query: str, text: str, threshold: float) -> bool:
    return fuzzy_score(query, text) >= threshold


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


@dataclass
class EventFilter:
    """
    Parameters of the event list pipeline. None disables a stage.

    now defaults to the current UTC time at filtering.
    """

    now: datetime | None = None
    include_past: bool = False
    within: timedelta | None = None
    event_type: EventType | None = None
    event_class: str | None = None
    min_duration: float | None = None
    max_duration: float | None = None
    search: str | None = None
    fuzzy_threshold: float = 0.6
    member: str | None = None
    status: RsvpStatus | None = None
    attendance: AttendanceBucket | None = None


def filter_events(
    catalog: Sequence[Event],
    roster: Sequence[str],
    rsvp: RsvpMatrix,
    flt: EventFilter,
) -> list[Event]:
    """
    Run the seven filter stages in order. Catalog order is preserved.

    Raises ValidationError if only one of member and status is set.
    """
    if (flt.member is None) != (flt.status is None):
        raise ValidationError("member and status filters must be given together")
    now = flt.now or datetime.now(timezone.utc)
    out = list(catalog)

    # 1. temporal
    if not flt.include_past:
        out = [e for e in out if e.start_time > now]
    if flt.within is not None:
        horizon = now + flt.within
        out = [e for e in out if e.start_time <= horizon]

    # 2. event type
    if flt.event_type is not None:
        out = [e for e in out if e.type is flt.event_type]

    # 3. class
    if flt.event_class:
        wanted = flt.event_class.strip().lower()
        out = [e for e in out if any(c.lower() == wanted for c in e.classes)]

    # 4. duration
    if flt.min_duration is not None:
        out = [e for e in out if e.duration >= flt.min_duration]
    if flt.max_duration is not None:
        out = [e for e in out if e.duration <= flt.max_duration]

    # 5. fuzzy search
    if flt.search and flt.search.strip():
        out = [e for e in out if fuzzy_match(flt.search, e.name, flt.fuzzy_threshold)]

    # 6. member RSVP status
    if flt.member is not None:
        out = [e for e in out if rsvp.get(e.id, flt.member) is flt.status]

    # 7. attendance bucket
    if flt.attendance is not None:
        out = [e for e in out if attendance_bucket(attendance_ratio(e.id, roster, rsvp)) is flt.attendance]

    return out


# ---------------------------------------------------------------------------
# Multi-session grouping and sorting
# ---------------------------------------------------------------------------


def session_base_name(name: str) -> str | None:
    """'Spa 24h - Session 2' -> 'Spa 24h'; None for names without the suffix."""
    m = SESSION_PATTERN.match(name.strip())
    if not m:
        return None
    return m.group("base")


def group_sessions(events: Sequence[Event], roster: Sequence[str], rsvp: RsvpMatrix) -> list[EventView]:
    """
    Collapse numbered sessions of the same event into one representative.

    The session with the strictly highest available count wins (the first
    one on ties). The representative sits where the group's first session
    was and carries aggregated_attendance and total_sessions. Single
    sessions and unnumbered events pass through without derived fields.
    """
    groups: dict[str, list[EventView]] = {}
    # an EventView for unnumbered events, the base name for session groups
    order: list[EventView | str] = []

    for event in events:
        view = EventView(event=event, available_count=available_count(event.id, roster, rsvp))
        base = session_base_name(event.name)
        if base is None:
            order.append(view)
            continue
        if base not in groups:
            groups[base] = []
            order.append(base)
        groups[base].append(view)

    out: list[EventView] = []
    for item in order:
        if isinstance(item, EventView):
            out.append(item)
            continue
        members = groups[item]
        if len(members) == 1:
            out.append(members[0])
            continue
        best = members[0]
        for candidate in members[1:]:
            if candidate.available_count > best.available_count:
                best = candidate
        out.append(
            EventView(
                event=best.event,
                available_count=best.available_count,
                aggregated_attendance=best.available_count,
                total_sessions=len(members),
            )
        )
    return out


def sort_views(views: Sequence[EventView], key: SortKey) -> list[EventView]:
    """Stable sort: start time ascending, or available count descending."""
    if key is SortKey.ATTENDANCE:
        return sorted(views, key=lambda v: -v.available_count)
    return sorted(views, key=lambda v: v.event.start_time)


def build_event_views(
    catalog: Sequence[Event],
    roster: Sequence[str],
    rsvp: RsvpMatrix,
    flt: EventFilter | None = None,
    sort: SortKey = SortKey.TIME,
    group: bool = True,
) -> list[EventView]:
    """Filter, optionally group sessions, then sort."""
    events = filter_events(catalog, roster, rsvp, flt or EventFilter())
    if group:
        views = group_sessions(events, roster, rsvp)
    else:
        views = [EventView(event=e, available_count=available_count(e.id, roster, rsvp)) for e in events]
    return sort_views(views, sort)


# ---------------------------------------------------------------------------
# Practice
# ---------------------------------------------------------------------------


def practice_window(event: Event, days: int = PRACTICE_WINDOW_DAYS) -> list[date]:
    """The `days` dates ending on the event's start date, oldest first."""
    end = event.start_date
    return [end - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def practice_slot_results(
    event: Event,
    roster: Sequence[str],
    practice: PracticeMatrix,
    slots: Sequence[TimeSlot],
    days: int = PRACTICE_WINDOW_DAYS,
) -> list[SlotResult]:
    """
    Team availability for every (window date, time slot) of an event.

    Always returns days * len(slots) results, busiest first; ties are
    ordered by date, then by slot configuration order.
    """
    results: list[SlotResult] = []
    for day in practice_window(event, days):
        for slot in slots:
            key = slot_key(day, slot.id)
            members = [m for m in roster if practice.get(event.id, m, key)]
            percentage = round(len(members) / len(roster) * 100) if roster else 0
            results.append(
                SlotResult(
                    day=day,
                    slot=slot,
                    key=key,
                    available_count=len(members),
                    available_members=members,
                    percentage=percentage,
                )
            )
    return sorted(results, key=lambda r: (-r.available_count, r.day))


def practice_eligible_events(
    catalog: Sequence[Event],
    rsvp: RsvpMatrix,
    member: str,
    now: datetime | None = None,
    limit: int = PRACTICE_EVENT_LIMIT,
) -> list[Event]:
    """Upcoming events the member is 'available' for, soonest first."""
    now = now or datetime.now(timezone.utc)
    out = [e for e in catalog if e.start_time > now and rsvp.get(e.id, member) is RsvpStatus.AVAILABLE]
    out.sort(key=lambda e: e.start_time)
    return out[:limit]
