"""
Central data model definitions used across the project.

This module defines the canonical structure of the records the rest of the
package passes around, so that:
- all modules share the same field names
- statuses and event types are enumerated values, never free-form strings
- documents crossing the remote store boundary are converted in one place
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, List

from racesync.errors import ValidationError


class RsvpStatus(str, enum.Enum):
    """A member's declared attendance intent for an event."""

    AVAILABLE = "available"
    MAYBE = "maybe"
    UNAVAILABLE = "unavailable"
    ABSENT = "absent"

    @classmethod
    def parse(cls, value: Any) -> "RsvpStatus":
        """
        Convert a raw value into a status.

        None is the "no response" marker used by older documents and maps
        to ABSENT. Strings must match one of the four names exactly.
        """
        if isinstance(value, RsvpStatus):
            return value
        if value is None:
            return cls.ABSENT
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        raise ValidationError(f"Invalid RSVP status: {value!r}")

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    RsvpStatus.AVAILABLE: "Available",
    RsvpStatus.MAYBE: "Maybe",
    RsvpStatus.UNAVAILABLE: "Unavailable",
    RsvpStatus.ABSENT: "No Response",
}


class EventType(str, enum.Enum):
    SPECIAL = "special"
    GET = "get"


class DocKey(str, enum.Enum):
    """The three well-known documents held by the remote store."""

    ROSTER = "roster"
    RSVP = "rsvp"
    PRACTICE = "practice"


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp. A trailing 'Z' is accepted and naive
    values are taken to be UTC.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Event:
    """
    One catalog entry (race, special event or GET session).

    Events come from a read-only feed and are never mutated.
    """

    id: str
    name: str
    series: str
    track: str
    type: EventType
    classes: tuple[str, ...]
    start_time: datetime
    duration: float

    @property
    def start_date(self) -> date:
        """Calendar date of the start, in UTC."""
        return self.start_time.astimezone(timezone.utc).date()

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Event":
        """
        Build an Event from one catalog record.

        Raises ValidationError if a required field is missing or malformed.
        """
        try:
            event_id = str(raw["id"]).strip()
            name = str(raw["name"]).strip()
            event_type = EventType(str(raw["type"]).strip().lower())
            start_time = parse_timestamp(str(raw["start_time"]))
            duration = float(raw.get("duration", 0) or 0)
        except (KeyError, ValueError, TypeError) as exc:
            raise ValidationError(f"Invalid event record: {exc}") from exc

        if not event_id:
            raise ValidationError("Invalid event record: empty id")

        classes = raw.get("classes") or []
        if not isinstance(classes, list):
            classes = [classes]

        return cls(
            id=event_id,
            name=name,
            series=str(raw.get("series", "") or ""),
            track=str(raw.get("track", "") or ""),
            type=event_type,
            classes=tuple(str(c) for c in classes),
            start_time=start_time,
            duration=duration,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "series": self.series,
            "track": self.track,
            "type": self.type.value,
            "classes": list(self.classes),
            "start_time": self.start_time.isoformat(),
            "duration": self.duration,
        }


@dataclass(frozen=True)
class TimeSlot:
    """
    A named recurring daily practice slot.

    reference_time is "HH:MM" in the fixed reference timezone (GMT).
    """

    id: str
    display_name: str
    reference_time: str
    description: str = ""


def slot_key(day: date, slot_id: str) -> str:
    """Build the practice cell key, e.g. '2025-03-01_eu'."""
    return f"{day.isoformat()}_{slot_id}"


def parse_slot_key(key: str, slots: List[TimeSlot]) -> tuple[date, str]:
    """
    Split a practice slot key into (date, slot id).

    Raises ValidationError if the date part is not ISO formatted or the
    slot id is not one of the configured slots.
    """
    day_text, sep, slot_id = str(key).partition("_")
    if not sep:
        raise ValidationError(f"Invalid slot key: {key!r}")
    try:
        day = date.fromisoformat(day_text)
    except ValueError as exc:
        raise ValidationError(f"Invalid slot key date: {key!r}") from exc
    if slot_id not in {s.id for s in slots}:
        raise ValidationError(f"Unknown time slot in key: {key!r}")
    return day, slot_id


@dataclass
class EventView:
    """
    An event as shown in the team views.

    aggregated_attendance and total_sessions are only set on the
    representative of a multi-session group.
    """

    event: Event
    available_count: int
    aggregated_attendance: int | None = None
    total_sessions: int | None = None


@dataclass
class SlotResult:
    """Team availability for one practice date and time slot."""

    day: date
    slot: TimeSlot
    key: str
    available_count: int
    available_members: List[str] = field(default_factory=list)
    percentage: int = 0
