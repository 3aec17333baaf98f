"""Calendar port: abstract interface for remote calendar operations.

Core modules depend on this protocol, never on a specific provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


class CalendarError(Exception):
    """Raised when any calendar provider operation fails."""


class EventNotFound(CalendarError):
    """The provider has no event with the requested id."""


@dataclass(frozen=True)
class EventDraft:
    """A new event to be created on the remote calendar."""

    title: str
    start: datetime
    end: datetime
    description: str = ""
    location: str | None = None
    attendees: tuple[str, ...] = ()
    reminder_minutes: int | None = None


@dataclass(frozen=True)
class RemoteEvent:
    """An event as reported by the provider."""

    id: str
    title: str
    start: datetime | None       # None for all-day events
    end: datetime | None
    description: str = ""
    location: str | None = None
    attendees: tuple[str, ...] = ()
    status: str = "confirmed"
    all_day_date: str | None = None
    link: str = ""

    def summary_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat() if self.start else self.all_day_date,
            "end": self.end.isoformat() if self.end else None,
            "location": self.location,
            "status": self.status,
            "attendees": list(self.attendees),
        }


@dataclass(frozen=True)
class EventChanges:
    """Partial update: only fields that are set are sent to the provider."""

    title: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    location: str | None = None
    present: frozenset[str] = field(default_factory=frozenset)

    def as_dict(self) -> dict:
        return {name: getattr(self, name) for name in sorted(self.present)}


class CalendarPort(Protocol):
    """Abstract calendar interface used by core modules."""

    async def create_event(self, draft: EventDraft) -> RemoteEvent: ...

    async def get_event(self, event_id: str) -> RemoteEvent: ...

    async def update_event(self, event_id: str, changes: EventChanges) -> RemoteEvent: ...

    async def delete_event(self, event_id: str) -> None: ...

    async def list_events(self, start: datetime, end: datetime) -> list[RemoteEvent]: ...
