"""
CLI (Command Line Interface).

Quick terminal commands on top of the synchronization controller, e.g.:

    racesync events --type special --search "spa 24" --sort attendance
    racesync register <name>
    racesync rsvp <event_id> available --as <name>
    racesync practice <event_id> 2025-03-01_eu yes --as <name>
    racesync practice-results <event_id>
    racesync practice-events --as <name>
    racesync team

Every run loads the documents, applies at most one change, waits for the
write-back and exits. With no RACESYNC_REMOTE_URL set the commands work on
the local cache only.
"""

from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta
from functools import partial

from rich.console import Console
from rich.table import Table

from racesync.aggregate import (
    AttendanceBucket,
    EventFilter,
    SortKey,
    average_availability,
    build_event_views,
    event_responses,
    practice_eligible_events,
    practice_slot_results,
    team_summary,
)
from racesync.catalog import load_catalog
from racesync.config import settings
from racesync.errors import NotFoundError, SyncError, ValidationError
from racesync.identity import RosterIdentityProvider
from racesync.model import Event, EventType, RsvpStatus
from racesync.remote import FirebaseRemoteStore, OfflineRemoteStore, RemoteStore
from racesync.storage import JsonFileCache
from racesync.sync import SyncController

console = Console()


def _fmt_date(event: Event) -> str:
    return event.start_time.strftime("%a %d %b %Y %H:%M UTC")


def _build_remote() -> RemoteStore:
    if not settings.remote_url:
        return OfflineRemoteStore()
    return FirebaseRemoteStore(
        settings.remote_url,
        auth=settings.remote_auth,
        timeout=settings.request_timeout,
        poll_interval=settings.poll_interval,
    )


def _on_warning(warning: SyncError) -> None:
    # without a remote every load and write degrades; nothing worth reporting
    if not settings.remote_url:
        return
    console.print(f"Warning: {warning}", style="yellow", markup=False)


def build_controller() -> SyncController:
    """
    Create a controller from the environment settings.
    """
    return SyncController(
        remote=_build_remote(),
        cache=JsonFileCache(settings.cache_dir),
        catalog=partial(load_catalog, settings.catalog, settings.request_timeout),
        on_warning=_on_warning,
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_events(args: argparse.Namespace, ctl: SyncController) -> int:
    """
    Print the filtered, grouped and sorted event list.
    """
    state = ctl.state
    if bool(args.status) != bool(args.member):
        console.print("--member and --status must be given together.")
        return 1

    flt = EventFilter(
        include_past=args.include_past,
        within=timedelta(days=args.within_days) if args.within_days is not None else None,
        event_type=EventType(args.type) if args.type != "all" else None,
        event_class=args.event_class,
        min_duration=args.min_hours,
        max_duration=args.max_hours,
        search=args.search,
        fuzzy_threshold=settings.fuzzy_threshold,
        member=args.member,
        status=RsvpStatus(args.status) if args.status else None,
        attendance=AttendanceBucket(args.attendance) if args.attendance else None,
    )
    views = build_event_views(
        state.catalog, state.roster, state.rsvp, flt, sort=SortKey(args.sort), group=not args.no_group
    )
    if not views:
        console.print("No events.")
        return 0

    table = Table(title=f"Events ({len(views)})")
    table.add_column("ID")
    table.add_column("Date")
    table.add_column("Event")
    table.add_column("Type")
    table.add_column("Classes")
    table.add_column("Hours", justify="right")
    table.add_column("Team", justify="right")
    for v in views:
        name = v.event.name
        if v.total_sessions:
            name = f"{name} (best of {v.total_sessions})"
        table.add_row(
            v.event.id,
            _fmt_date(v.event),
            name,
            "Special" if v.event.type is EventType.SPECIAL else "GET",
            ", ".join(v.event.classes),
            f"{v.event.duration:g}",
            f"{v.available_count}/{len(state.roster)}",
        )
    console.print(table)
    return 0


def _cmd_register(args: argparse.Namespace, ctl: SyncController) -> int:
    name = RosterIdentityProvider(ctl).register(args.name)
    console.print(f"Registered: {name} (members: {len(ctl.state.roster)})", markup=False)
    return 0


def _cmd_rsvp(args: argparse.Namespace, ctl: SyncController) -> int:
    member = RosterIdentityProvider(ctl).sign_in(args.member)
    ctl.set_rsvp(args.event_id, member, args.status)
    event = ctl.state.find_event(args.event_id)
    console.print(
        f"RSVP updated for {member} to {RsvpStatus(args.status).label} for {event.name} "
        f"({team_summary(event.id, ctl.state.roster, ctl.state.rsvp)})",
        markup=False,
    )
    return 0


def _cmd_practice(args: argparse.Namespace, ctl: SyncController) -> int:
    member = RosterIdentityProvider(ctl).sign_in(args.member)
    available = args.available == "yes"
    ctl.set_practice_availability(args.event_id, member, args.slot_key, available)
    console.print(
        f"Practice availability for {member} at {args.slot_key}: {'available' if available else 'not available'}",
        markup=False,
    )
    return 0


def _cmd_practice_results(args: argparse.Namespace, ctl: SyncController) -> int:
    """
    Print the 14-day practice window of an event, busiest slots first.
    """
    state = ctl.state
    event = state.find_event(args.event_id)
    results = practice_slot_results(event, state.roster, state.practice, ctl.time_slots)

    table = Table(title=f"Team practice availability: {event.name}")
    table.add_column("Date")
    table.add_column("Slot")
    table.add_column("GMT")
    table.add_column("Team", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Available")
    for r in results[: args.limit] if args.limit else results:
        table.add_row(
            r.day.strftime("%a %d %b %Y"),
            r.slot.display_name,
            r.slot.reference_time,
            f"{r.available_count}/{len(state.roster)}",
            f"{r.percentage}%",
            ", ".join(r.available_members),
        )
    console.print(table)
    return 0


def _cmd_practice_events(args: argparse.Namespace, ctl: SyncController) -> int:
    member = RosterIdentityProvider(ctl).sign_in(args.member)
    events = practice_eligible_events(ctl.state.catalog, ctl.state.rsvp, member)
    if not events:
        console.print("No events available for practice scheduling. RSVP as available first.")
        return 0
    for e in events:
        console.print(f"{e.id} | {_fmt_date(e)} | {e.name} | {', '.join(e.classes)}", markup=False)
    return 0


def _cmd_team(args: argparse.Namespace, ctl: SyncController) -> int:
    """
    Print team statistics and every member's RSVP per event.
    """
    state = ctl.state
    avg = average_availability(state.catalog, state.roster, state.rsvp)
    console.print(f"Total events: {len(state.catalog)}")
    console.print(f"Avg. availability: {round(avg * 100)}%")

    if not state.catalog or not state.roster:
        return 0

    table = Table(title="Team status")
    table.add_column("Event")
    for member in state.roster:
        table.add_column(member)
    table.add_column("Team", justify="right")
    for event in state.catalog:
        cells = [status.label for _, status in event_responses(event.id, state.roster, state.rsvp)]
        table.add_row(event.name, *cells, team_summary(event.id, state.roster, state.rsvp))
    console.print(table)
    return 0


COMMANDS = {
    "events": _cmd_events,
    "register": _cmd_register,
    "rsvp": _cmd_rsvp,
    "practice": _cmd_practice,
    "practice-results": _cmd_practice_results,
    "practice-events": _cmd_practice_events,
    "team": _cmd_team,
}


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="racesync", description="Team RSVP and practice scheduling")
    sub = parser.add_subparsers(dest="command", required=True)

    p_events = sub.add_parser("events", help="List upcoming events with team attendance")
    p_events.add_argument("--type", choices=["all"] + [t.value for t in EventType], default="all")
    p_events.add_argument("--class", dest="event_class", type=str, help="Car class (e.g. GT3)")
    p_events.add_argument("--min-hours", type=float)
    p_events.add_argument("--max-hours", type=float)
    p_events.add_argument("--search", type=str, help="Fuzzy event name search")
    p_events.add_argument("--member", type=str, help="Filter by this member's RSVP (with --status)")
    p_events.add_argument("--status", choices=[s.value for s in RsvpStatus])
    p_events.add_argument("--attendance", choices=[b.value for b in AttendanceBucket])
    p_events.add_argument("--within-days", type=int, help="Only events in the next N days")
    p_events.add_argument("--include-past", action="store_true")
    p_events.add_argument("--sort", choices=[k.value for k in SortKey], default=SortKey.TIME.value)
    p_events.add_argument("--no-group", action="store_true", help="Show every session separately")

    p_register = sub.add_parser("register", help="Join the team roster")
    p_register.add_argument("name", type=str)

    p_rsvp = sub.add_parser("rsvp", help="Set your RSVP for an event")
    p_rsvp.add_argument("event_id", type=str)
    p_rsvp.add_argument("status", choices=[s.value for s in RsvpStatus])
    p_rsvp.add_argument("--as", dest="member", required=True)

    p_practice = sub.add_parser("practice", help="Set your availability for one practice slot")
    p_practice.add_argument("event_id", type=str)
    p_practice.add_argument("slot_key", type=str, help="<YYYY-MM-DD>_<slot id>, e.g. 2025-03-01_eu")
    p_practice.add_argument("available", choices=["yes", "no"])
    p_practice.add_argument("--as", dest="member", required=True)

    p_results = sub.add_parser("practice-results", help="Rank practice slots for an event")
    p_results.add_argument("event_id", type=str)
    p_results.add_argument("--limit", type=int, default=0)

    p_pevents = sub.add_parser("practice-events", help="Events you can schedule practice for")
    p_pevents.add_argument("--as", dest="member", required=True)

    sub.add_parser("team", help="Team status overview")

    return parser


async def _run(args: argparse.Namespace) -> int:
    ctl = build_controller()
    try:
        await ctl.start()
        return COMMANDS[args.command](args, ctl)
    except (ValidationError, NotFoundError) as exc:
        console.print(f"Error: {exc}", style="red", markup=False)
        return 1
    finally:
        await ctl.close()


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, runs the command and exits via
    SystemExit with its return code.
    """
    args = build_parser().parse_args(argv)
    raise SystemExit(asyncio.run(_run(args)))
