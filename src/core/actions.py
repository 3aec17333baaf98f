"""
ChatCal Assistant: action catalogue.

The closed set of calendar operations the bot can perform, the argument
schema of each one (wire names are camelCase, as the reasoning service sees
them) and the result type every executed action produces.

Adding a kind means adding an ActionKind member, an argument model in
ARGUMENT_MODELS and a handler in the executor; the executor refuses to
start if its handler table does not cover every kind.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    ValidationInfo,
    field_validator,
    model_validator,
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

TimeRange = Literal["today", "tomorrow", "this_week", "this_month", "all"]


class ActionKind(str, Enum):
    CREATE_EVENT = "CreateEvent"
    LIST_EVENTS = "ListEvents"
    UPDATE_EVENT = "UpdateEvent"
    DELETE_EVENT = "DeleteEvent"
    SEARCH_EVENTS = "SearchEvents"
    SUGGEST_SLOTS = "SuggestSlots"


# ---------------------------------------------------------------------------
# Parsing helpers (pure, immutable datetime values only)
# ---------------------------------------------------------------------------


def _zone(info: ValidationInfo) -> ZoneInfo:
    tz = (info.context or {}).get("tz")
    return tz if tz is not None else ZoneInfo("UTC")


def _is_date_only(value: str) -> bool:
    return len(value) == 10 and value[4] == "-" and value[7] == "-"


def _parse_datetime(value: object, info: ValidationInfo, end_of_day: bool = False) -> datetime:
    """ISO-8601 string → aware datetime. Naive values take the user's zone."""
    if not isinstance(value, str):
        raise ValueError("must be an ISO-8601 datetime string")
    text = value.strip()
    try:
        if _is_date_only(text):
            day = date.fromisoformat(text)
            if end_of_day:
                day = day + timedelta(days=1)
            parsed = datetime.combine(day, time.min)
        else:
            parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"'{value}' is not an ISO-8601 datetime") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(info))
    return parsed


def _parse_date(value: object) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError("must be a YYYY-MM-DD date string")
    text = value.strip()
    try:
        if _is_date_only(text):
            return date.fromisoformat(text)
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ValueError(f"'{value}' is not a YYYY-MM-DD date") from None


def _non_blank(value: str | None) -> str | None:
    if value is not None and not value.strip():
        raise ValueError("must not be blank")
    return value.strip() if value is not None else None


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------


class _Arguments(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class CreateEventArgs(_Arguments):
    title: str = Field(description="The title/summary of the event")
    description: str = Field("", description="Optional description of the event")
    start: datetime = Field(
        alias="startDateTime",
        description="Start date and time in ISO format (e.g. 2024-01-15T14:00:00+00:00)",
    )
    end: datetime = Field(
        alias="endDateTime",
        description="End date and time in ISO format (e.g. 2024-01-15T15:00:00+00:00)",
    )
    location: str | None = Field(None, description="Optional location of the event")
    attendees: tuple[str, ...] = Field((), description="Optional list of attendee email addresses")
    reminder_minutes: PositiveInt | None = Field(
        None, alias="reminderMinutes",
        description="Minutes before the event to send a reminder (default: 15)",
    )

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return _non_blank(v)

    @field_validator("description", mode="before")
    @classmethod
    def check_description(cls, v: object) -> object:
        # Models often send null for optional fields.
        return "" if v is None else v

    @field_validator("start", "end", mode="before")
    @classmethod
    def check_datetimes(cls, v: object, info: ValidationInfo) -> datetime:
        return _parse_datetime(v, info)

    @field_validator("attendees", mode="before")
    @classmethod
    def check_emails(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        if not isinstance(v, (list, tuple)):
            raise ValueError("must be a list of email addresses")
        bad = [str(e) for e in v if not isinstance(e, str) or not _EMAIL_RE.match(e.strip())]
        if bad:
            raise ValueError(f"invalid email address(es): {', '.join(bad)}")
        return tuple(e.strip() for e in v)


class ListEventsArgs(_Arguments):
    start: datetime = Field(
        alias="startDate", description="Start of the range in ISO format (e.g. 2024-01-15T00:00:00Z)",
    )
    end: datetime = Field(
        alias="endDate", description="End of the range in ISO format (e.g. 2024-01-15T23:59:59Z)",
    )
    query: str | None = Field(None, description="Optional search text to filter events")

    @field_validator("start", mode="before")
    @classmethod
    def check_start(cls, v: object, info: ValidationInfo) -> datetime:
        return _parse_datetime(v, info)

    @field_validator("end", mode="before")
    @classmethod
    def check_end(cls, v: object, info: ValidationInfo) -> datetime:
        return _parse_datetime(v, info, end_of_day=True)


class UpdateEventArgs(_Arguments):
    event_id: str = Field(alias="eventId", min_length=1, description="The ID of the event to update")
    title: str | None = Field(None, description="New title for the event")
    start: datetime | None = Field(
        None, alias="startDateTime", description="New start date and time in ISO format",
    )
    end: datetime | None = Field(
        None, alias="endDateTime", description="New end date and time in ISO format",
    )
    location: str | None = Field(None, description="New location for the event")

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str | None) -> str | None:
        return _non_blank(v)

    @field_validator("start", "end", mode="before")
    @classmethod
    def check_datetimes(cls, v: object, info: ValidationInfo) -> datetime | None:
        if v is None:
            return None
        return _parse_datetime(v, info)

    def changed_fields(self) -> frozenset[str]:
        """Fields the caller actually supplied (event_id excluded)."""
        return frozenset(
            name for name in self.model_fields_set
            if name != "event_id" and getattr(self, name) is not None
        )


class DeleteEventArgs(_Arguments):
    event_id: str | None = Field(None, alias="eventId", description="The ID of the event to delete")
    search_title: str | None = Field(
        None, alias="searchTitle",
        description="Alternative: search for the event by title if eventId is not available",
    )
    time_range: TimeRange | None = Field(
        None, alias="timeRange", description="Optional time range for the title search",
    )

    @model_validator(mode="after")
    def check_one_of(self) -> "DeleteEventArgs":
        if not (self.event_id or (self.search_title and self.search_title.strip())):
            raise ValueError("either eventId or searchTitle must be provided")
        return self


class SearchEventsArgs(_Arguments):
    query: str = Field(min_length=1, description="Search text to find events by title")
    time_range: TimeRange | None = Field(
        None, alias="timeRange", description="Time range to search within",
    )

    @field_validator("query")
    @classmethod
    def check_query(cls, v: str) -> str:
        return _non_blank(v)


class SuggestSlotsArgs(_Arguments):
    day: date = Field(alias="date", description="Date to check availability (YYYY-MM-DD)")
    duration_minutes: PositiveInt = Field(
        alias="durationMinutes", description="Duration in minutes for the event",
    )
    preferred_times: tuple[str, ...] = Field(
        (), alias="preferredTimes", description="Preferred start times, e.g. ['09:00', '14:00']",
    )

    @field_validator("day", mode="before")
    @classmethod
    def check_date(cls, v: object) -> date:
        return _parse_date(v)

    @field_validator("preferred_times", mode="before")
    @classmethod
    def check_times(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        if not isinstance(v, (list, tuple)):
            raise ValueError("must be a list of HH:MM times")
        bad = [str(t) for t in v if not isinstance(t, str) or not _HHMM_RE.match(t.strip())]
        if bad:
            raise ValueError(f"expected HH:MM, got: {', '.join(bad)}")
        return tuple(t.strip() for t in v)


ARGUMENT_MODELS: dict[ActionKind, type[_Arguments]] = {
    ActionKind.CREATE_EVENT: CreateEventArgs,
    ActionKind.LIST_EVENTS: ListEventsArgs,
    ActionKind.UPDATE_EVENT: UpdateEventArgs,
    ActionKind.DELETE_EVENT: DeleteEventArgs,
    ActionKind.SEARCH_EVENTS: SearchEventsArgs,
    ActionKind.SUGGEST_SLOTS: SuggestSlotsArgs,
}

_DESCRIPTIONS: dict[ActionKind, str] = {
    ActionKind.CREATE_EVENT: "Create a new calendar event",
    ActionKind.LIST_EVENTS: "Get calendar events for a specific time period",
    ActionKind.UPDATE_EVENT: "Update an existing calendar event",
    ActionKind.DELETE_EVENT: "Delete a calendar event by ID or by title",
    ActionKind.SEARCH_EVENTS: "Search for calendar events by title",
    ActionKind.SUGGEST_SLOTS: "Find available time slots for scheduling",
}


def tool_schemas() -> list[dict]:
    """JSON schemas of every action, as shown to the reasoning service."""
    return [
        {
            "name": kind.value,
            "description": _DESCRIPTIONS[kind],
            "parameters": ARGUMENT_MODELS[kind].model_json_schema(by_alias=True),
        }
        for kind in ActionKind
    ]


# ---------------------------------------------------------------------------
# Actions and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawAction:
    """An unvalidated request from either resolver path."""

    name: str
    arguments: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Action:
    """A validated, immutable request for one calendar operation."""

    kind: ActionKind
    arguments: _Arguments


class FailureReason(str, Enum):
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ACTION = "unknown_action"
    AUTH_REQUIRED = "auth_required"
    REAUTH_REQUIRED = "reauth_required"
    START_AFTER_END = "start_after_end"
    PAST_DATE_REJECTED = "past_date_rejected"
    NOT_FOUND = "not_found"
    AMBIGUOUS_MATCH = "ambiguous_match"
    REMOTE_PROVIDER_ERROR = "remote_provider_error"
    INTERNAL_ERROR = "internal_error"


@dataclass
class ActionResult:
    """Outcome of one action. `action` is the wire name, kept for correlation."""

    action: str
    success: bool
    payload: dict = field(default_factory=dict)
    reason: FailureReason | None = None
    message: str = ""

    def to_dict(self) -> dict:
        d: dict = {"action": self.action, "success": self.success}
        if self.payload:
            d.update(self.payload)
        if self.reason is not None:
            d["reason"] = self.reason.value
        if self.message:
            d["message"] = self.message
        return d
