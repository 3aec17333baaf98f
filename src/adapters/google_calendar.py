"""Google Calendar adapter: implements CalendarPort for Google Calendar API.

All Google-specific logic lives here. Core modules never import this directly;
they depend on the CalendarPort protocol. The googleapiclient service is
blocking, so every request runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from googleapiclient.errors import HttpError

from src.ports.calendar_port import (
    CalendarError,
    EventChanges,
    EventDraft,
    EventNotFound,
    RemoteEvent,
)

logger = logging.getLogger(__name__)

_CALENDAR_ID = "primary"
_PAGE_SIZE = 250


def _time_field(dt: datetime, tz_name: str) -> dict:
    return {"dateTime": dt.isoformat(), "timeZone": tz_name}


def _build_event_body(draft: EventDraft, tz_name: str) -> dict:
    """Construct a Google Calendar API event body from an EventDraft."""
    body: dict = {
        "summary": draft.title,
        "description": draft.description,
        "start": _time_field(draft.start, tz_name),
        "end": _time_field(draft.end, tz_name),
    }
    if draft.location:
        body["location"] = draft.location
    if draft.attendees:
        body["attendees"] = [{"email": a} for a in draft.attendees]
    if draft.reminder_minutes is not None:
        body["reminders"] = {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": draft.reminder_minutes}],
        }
    return body


def _build_patch_body(changes: EventChanges, tz_name: str) -> dict:
    body: dict = {}
    for name, value in changes.as_dict().items():
        if name == "title":
            body["summary"] = value
        elif name in ("start", "end"):
            body[name] = _time_field(value, tz_name)
        elif name == "location":
            body["location"] = value
    return body


def _parse_event(item: dict) -> RemoteEvent:
    start = item.get("start", {})
    end = item.get("end", {})
    start_dt = start.get("dateTime")
    end_dt = end.get("dateTime")
    return RemoteEvent(
        id=item.get("id", ""),
        title=item.get("summary", "(no title)"),
        start=datetime.fromisoformat(start_dt) if start_dt else None,
        end=datetime.fromisoformat(end_dt) if end_dt else None,
        description=item.get("description", ""),
        location=item.get("location"),
        attendees=tuple(a.get("email", "") for a in item.get("attendees", [])),
        status=item.get("status", "confirmed"),
        all_day_date=start.get("date"),
        link=item.get("htmlLink", ""),
    )


def _is_missing(exc: Exception) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in (404, 410)


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarPort, bound to one user's service."""

    def __init__(self, service: Any, tz_name: str = "UTC") -> None:
        self._service = service
        self._tz_name = tz_name

    async def _run(self, request) -> dict:
        return await asyncio.to_thread(request.execute)

    async def create_event(self, draft: EventDraft) -> RemoteEvent:
        body = _build_event_body(draft, self._tz_name)
        try:
            created = await self._run(
                self._service.events().insert(calendarId=_CALENDAR_ID, body=body)
            )
        except Exception as exc:
            logger.error("Google Calendar API error: %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc
        logger.info("Event created: '%s' at %s: %s", draft.title, draft.start, created.get("htmlLink", ""))
        return _parse_event(created)

    async def get_event(self, event_id: str) -> RemoteEvent:
        try:
            item = await self._run(
                self._service.events().get(calendarId=_CALENDAR_ID, eventId=event_id)
            )
        except Exception as exc:
            if _is_missing(exc):
                raise EventNotFound(f"No event with id {event_id}") from exc
            logger.error("Failed to fetch event %s: %s", event_id, exc)
            raise CalendarError(f"Failed to fetch event: {exc}") from exc
        return _parse_event(item)

    async def update_event(self, event_id: str, changes: EventChanges) -> RemoteEvent:
        body = _build_patch_body(changes, self._tz_name)
        try:
            updated = await self._run(
                self._service.events().patch(calendarId=_CALENDAR_ID, eventId=event_id, body=body)
            )
        except Exception as exc:
            if _is_missing(exc):
                raise EventNotFound(f"No event with id {event_id}") from exc
            logger.error("Failed to update event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to update event: {exc}") from exc
        logger.info("Event %s updated (%s)", event_id, ", ".join(sorted(changes.present)))
        return _parse_event(updated)

    async def delete_event(self, event_id: str) -> None:
        try:
            await self._run(
                self._service.events().delete(calendarId=_CALENDAR_ID, eventId=event_id)
            )
        except Exception as exc:
            if _is_missing(exc):
                raise EventNotFound(f"No event with id {event_id}") from exc
            logger.error("Failed to delete event with ID %s: %s", event_id, exc)
            raise CalendarError(f"Failed to delete event: {exc}") from exc
        logger.info("Event with ID %s deleted successfully.", event_id)

    async def list_events(self, start: datetime, end: datetime) -> list[RemoteEvent]:
        events: list[RemoteEvent] = []
        page_token: str | None = None
        try:
            while True:
                result = await self._run(
                    self._service.events().list(
                        calendarId=_CALENDAR_ID,
                        timeMin=start.isoformat(),
                        timeMax=end.isoformat(),
                        singleEvents=True,
                        orderBy="startTime",
                        maxResults=_PAGE_SIZE,
                        pageToken=page_token,
                    )
                )
                events.extend(
                    _parse_event(item)
                    for item in result.get("items", [])
                    if item.get("status") != "cancelled"
                )
                page_token = result.get("nextPageToken")
                if not page_token:
                    break
        except Exception as exc:
            logger.error("Failed to list events %s..%s: %s", start, end, exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc

        logger.info("Found %d event(s) between %s and %s", len(events), start, end)
        return events
