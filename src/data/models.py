"""
ChatCal Assistant: data models.

Rows persisted in SQLite: users, their chat sessions, pending OAuth
authorizations and the local mirror of calendar events created through
the bot. The remote calendar stays the source of truth for events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AuthStatus(str, Enum):
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    REVOKED = "revoked"
    LOGGED_OUT = "logged_out"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"


# Keys in User.preferences; each overrides the matching setting for one user.
PREF_REMINDER_MINUTES = "reminderMinutes"
PREF_WORKDAY_START = "workdayStart"
PREF_WORKDAY_END = "workdayEnd"


@dataclass
class User:
    """A chat identity known to the bot."""

    id: int
    identity: str
    display_name: str = ""
    auth_status: AuthStatus = AuthStatus.PENDING
    credentials_json: str | None = None    # opaque credential bundle
    preferences: dict = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_authenticated(self) -> bool:
        return self.auth_status is AuthStatus.AUTHENTICATED


@dataclass
class Session:
    """A chat session. Expires by wall clock, never by inactivity."""

    id: str
    user_id: int
    identity: str
    status: SessionStatus
    created_at: datetime
    expires_at: datetime
    last_activity: datetime


@dataclass(frozen=True)
class PendingAuthorization:
    """An OAuth flow started for an identity, waiting for its callback."""

    state: str
    identity: str
    created_at: datetime
    expires_at: datetime


@dataclass
class MirroredEvent:
    """Local copy of a remote calendar event created through the bot."""

    id: int
    remote_id: str
    user_id: int
    title: str
    start: datetime
    end: datetime
    description: str = ""
    location: str | None = None
    attendees: list[str] = field(default_factory=list)
    reminder_minutes: int | None = None
