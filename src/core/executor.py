"""
ChatCal Assistant: action executor.

Runs one validated, authorized action against the user's remote calendar
and keeps the local mirror in step. Temporal checks happen before any
remote call; mirror writes happen only after the provider confirmed.

Handlers raise the domain exceptions in src.core.errors (and CalendarError
from the adapter); the action service turns those into failed results.
An ambiguous title match is not an error and comes back as a result
carrying the candidates.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable
from zoneinfo import ZoneInfo

from src.core.actions import (
    Action,
    ActionKind,
    ActionResult,
    CreateEventArgs,
    DeleteEventArgs,
    FailureReason,
    ListEventsArgs,
    SearchEventsArgs,
    SuggestSlotsArgs,
    UpdateEventArgs,
)
from src.core.errors import FieldIssue, NotFound, PastDateRejected, StartAfterEnd, ValidationError
from src.core.session_manager import utc_now
from src.core.slot_finder import find_free_slots, working_window
from src.data.models import PREF_REMINDER_MINUTES, PREF_WORKDAY_END, PREF_WORKDAY_START
from src.ports.calendar_port import EventChanges, EventDraft, RemoteEvent

if TYPE_CHECKING:
    from src.core.credentials import CredentialManager
    from src.core.locks import IdentityLocks
    from src.data.db import EventMirrorDB
    from src.data.models import User
    from src.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)

Handler = Callable[["User", object], Awaitable[ActionResult]]

# Bounds used when a title search has no explicit range.
_ALL_BACK = timedelta(days=365)
_ALL_AHEAD = timedelta(days=366)


def resolve_time_range(name: str | None, now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Map a time-range shorthand to a [start, end) window in the user's zone.

    Weeks start on Sunday. A missing name means "all".
    """
    today = now.astimezone(tz).date()

    def midnight(d: date) -> datetime:
        return datetime.combine(d, time.min, tzinfo=tz)

    if name == "today":
        return midnight(today), midnight(today + timedelta(days=1))
    if name == "tomorrow":
        return midnight(today + timedelta(days=1)), midnight(today + timedelta(days=2))
    if name == "this_week":
        sunday = today - timedelta(days=(today.weekday() + 1) % 7)
        return midnight(sunday), midnight(sunday + timedelta(days=7))
    if name == "this_month":
        first = today.replace(day=1)
        next_first = (first + timedelta(days=32)).replace(day=1)
        return midnight(first), midnight(next_first)
    if name in (None, "all"):
        return midnight(today) - _ALL_BACK, midnight(today) + _ALL_AHEAD
    raise ValueError(f"Unknown time range: {name!r}")


def _matches(event: RemoteEvent, needle: str) -> bool:
    needle = needle.lower()
    return any(
        needle in (text or "").lower()
        for text in (event.title, event.description, event.location)
    )


def _candidate(event: RemoteEvent) -> dict:
    return {
        "id": event.id,
        "title": event.title,
        "start": event.start.isoformat() if event.start else event.all_day_date,
    }


class ActionExecutor:
    """One handler per ActionKind; the table is checked for completeness at init."""

    def __init__(
        self,
        credentials: CredentialManager,
        mirror: EventMirrorDB,
        locks: IdentityLocks,
        tz: ZoneInfo | str = "UTC",
        workday_start: str = "09:00",
        workday_end: str = "17:00",
        default_reminder_minutes: int = 15,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._credentials = credentials
        self._mirror = mirror
        self._locks = locks
        self._tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        self._workday_start = workday_start
        self._workday_end = workday_end
        self._default_reminder = default_reminder_minutes
        self._clock = clock

        self._handlers: dict[ActionKind, Handler] = {
            ActionKind.CREATE_EVENT: self._create_event,
            ActionKind.LIST_EVENTS: self._list_events,
            ActionKind.UPDATE_EVENT: self._update_event,
            ActionKind.DELETE_EVENT: self._delete_event,
            ActionKind.SEARCH_EVENTS: self._search_events,
            ActionKind.SUGGEST_SLOTS: self._suggest_slots,
        }
        missing = set(ActionKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for: {', '.join(sorted(k.value for k in missing))}")

    async def execute(self, user: User, action: Action) -> ActionResult:
        logger.info("Executing %s for %s", action.kind.value, user.identity)
        return await self._handlers[action.kind](user, action.arguments)

    async def _calendar(self, user: User) -> CalendarPort:
        return await self._credentials.calendar_for(user)

    # -- CreateEvent ---------------------------------------------------------

    async def _create_event(self, user: User, args: CreateEventArgs) -> ActionResult:
        if args.start >= args.end:
            raise StartAfterEnd("The event must start before it ends")
        if args.start < self._clock():
            raise PastDateRejected("The event would start in the past")

        draft = EventDraft(
            title=args.title,
            start=args.start,
            end=args.end,
            description=args.description,
            location=args.location,
            attendees=args.attendees,
            reminder_minutes=(
                args.reminder_minutes
                or user.preferences.get(PREF_REMINDER_MINUTES)
                or self._default_reminder
            ),
        )
        calendar = await self._calendar(user)
        remote = await calendar.create_event(draft)

        async with self._locks.hold(user.identity):
            self._mirror.upsert(
                user.id,
                remote.id,
                title=draft.title,
                start=draft.start,
                end=draft.end,
                description=draft.description,
                location=draft.location,
                attendees=list(draft.attendees),
                reminder_minutes=draft.reminder_minutes,
            )
        return ActionResult(
            action=ActionKind.CREATE_EVENT.value,
            success=True,
            payload={"event": remote.summary_dict(), "link": remote.link},
        )

    # -- ListEvents ----------------------------------------------------------

    async def _list_events(self, user: User, args: ListEventsArgs) -> ActionResult:
        if args.start >= args.end:
            raise StartAfterEnd("startDate must be before endDate")

        calendar = await self._calendar(user)
        events = await calendar.list_events(args.start, args.end)
        if args.query:
            events = [e for e in events if _matches(e, args.query)]

        return ActionResult(
            action=ActionKind.LIST_EVENTS.value,
            success=True,
            payload={
                "events": [e.summary_dict() for e in events],
                "count": len(events),
                "range": {"start": args.start.isoformat(), "end": args.end.isoformat()},
            },
        )

    # -- UpdateEvent ---------------------------------------------------------

    async def _update_event(self, user: User, args: UpdateEventArgs) -> ActionResult:
        present = args.changed_fields()
        if not present:
            raise ValidationError(
                ActionKind.UPDATE_EVENT.value,
                [FieldIssue("arguments", "nothing to update")],
            )
        if args.start is not None and args.end is not None and args.start >= args.end:
            raise StartAfterEnd("The event must start before it ends")

        changes = EventChanges(
            title=args.title,
            start=args.start,
            end=args.end,
            location=args.location,
            present=present,
        )
        calendar = await self._calendar(user)
        remote = await calendar.update_event(args.event_id, changes)

        async with self._locks.hold(user.identity):
            self._mirror.update_fields(user.id, args.event_id, changes.as_dict())
        return ActionResult(
            action=ActionKind.UPDATE_EVENT.value,
            success=True,
            payload={"event": remote.summary_dict(), "updatedFields": sorted(present)},
        )

    # -- DeleteEvent ---------------------------------------------------------

    async def _delete_event(self, user: User, args: DeleteEventArgs) -> ActionResult:
        calendar = await self._calendar(user)

        if args.event_id:
            target = await calendar.get_event(args.event_id)
        else:
            matches = await self._find_by_title(calendar, args.search_title, args.time_range)
            if not matches:
                raise NotFound(f"No event matching '{args.search_title}'")
            if len(matches) > 1:
                logger.info(
                    "Delete for %s matched %d events, asking to disambiguate",
                    user.identity, len(matches),
                )
                return ActionResult(
                    action=ActionKind.DELETE_EVENT.value,
                    success=False,
                    reason=FailureReason.AMBIGUOUS_MATCH,
                    payload={"candidates": [_candidate(e) for e in matches]},
                    message=f"{len(matches)} events match '{args.search_title}'",
                )
            target = matches[0]

        await calendar.delete_event(target.id)
        async with self._locks.hold(user.identity):
            self._mirror.delete(user.id, target.id)
        return ActionResult(
            action=ActionKind.DELETE_EVENT.value,
            success=True,
            payload={"deleted": _candidate(target)},
        )

    # -- SearchEvents --------------------------------------------------------

    async def _search_events(self, user: User, args: SearchEventsArgs) -> ActionResult:
        calendar = await self._calendar(user)
        events = await self._find_by_title(calendar, args.query, args.time_range)
        return ActionResult(
            action=ActionKind.SEARCH_EVENTS.value,
            success=True,
            payload={
                "events": [e.summary_dict() for e in events],
                "count": len(events),
                "query": args.query,
                "timeRange": args.time_range or "all",
            },
        )

    async def _find_by_title(
        self, calendar: CalendarPort, title: str, time_range: str | None,
    ) -> list[RemoteEvent]:
        start, end = resolve_time_range(time_range, self._clock(), self._tz)
        events = await calendar.list_events(start, end)
        needle = title.strip().lower()
        return [e for e in events if needle in e.title.lower()]

    # -- SuggestSlots --------------------------------------------------------

    async def _suggest_slots(self, user: User, args: SuggestSlotsArgs) -> ActionResult:
        day_start, day_end = working_window(
            args.day,
            self._tz,
            user.preferences.get(PREF_WORKDAY_START, self._workday_start),
            user.preferences.get(PREF_WORKDAY_END, self._workday_end),
            now=self._clock(),
        )
        duration = timedelta(minutes=args.duration_minutes)

        calendar = await self._calendar(user)
        midnight = datetime.combine(args.day, time.min, tzinfo=self._tz)
        events = await calendar.list_events(midnight, midnight + timedelta(days=1))
        busy = [(e.start, e.end) for e in events if e.start is not None and e.end is not None]

        slots = find_free_slots(day_start, day_end, duration, busy, args.preferred_times)
        return ActionResult(
            action=ActionKind.SUGGEST_SLOTS.value,
            success=True,
            payload={
                "date": args.day.isoformat(),
                "durationMinutes": args.duration_minutes,
                "slots": [s.as_dict() for s in slots],
            },
        )
