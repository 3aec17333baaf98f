"""
ChatCal Assistant: session lifecycle.

One active session per chat identity, created on the first message and
expired purely by wall clock. Activity is recorded but never extends the
expiry (fixed 24h window).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from src.core.locks import IdentityLocks
from src.data.db import SessionDB, UserDB
from src.data.models import Session, User

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """What a turn needs to know about who is talking."""

    user: User
    session: Session
    new_user: bool = False
    new_session: bool = False


class SessionManager:
    def __init__(
        self,
        users: UserDB,
        sessions: SessionDB,
        locks: IdentityLocks,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._locks = locks
        self._ttl = ttl
        self._clock = clock

    async def ensure_session(self, identity: str, display_name: str = "") -> SessionContext:
        """Return the identity's active session, creating user and session if needed.

        Serialised per identity; the partial unique index on active sessions
        covers writers outside this process.
        """
        async with self._locks.hold(identity):
            now = self._clock()
            user, new_user = self._users.get_or_create(identity, display_name)

            session = self._sessions.get_active(identity, now)
            if session is not None:
                self._sessions.touch(session.id, now)
                session.last_activity = now
                return SessionContext(user=user, session=session, new_user=new_user)

            try:
                session = self._sessions.create(user.id, identity, now, self._ttl)
            except sqlite3.IntegrityError:
                # Lost a race with another writer; its session wins.
                session = self._sessions.get_active(identity, now)
                if session is None:
                    raise
                logger.info("Session for %s created concurrently, reusing %s", identity, session.id)
                self._sessions.touch(session.id, now)
                return SessionContext(user=user, session=session, new_user=new_user)

            return SessionContext(
                user=user, session=session, new_user=new_user, new_session=True,
            )

    async def update_preferences(
        self, identity: str, changes: dict, display_name: str = "",
    ) -> dict:
        """Merge `changes` into the user's stored preferences and return the result.

        A None value removes that key.
        """
        async with self._locks.hold(identity):
            user, _ = self._users.get_or_create(identity, display_name)
            preferences = dict(user.preferences)
            for key, value in changes.items():
                if value is None:
                    preferences.pop(key, None)
                else:
                    preferences[key] = value
            self._users.set_preferences(user.id, preferences)
        logger.info("Preferences for %s now %s", identity, preferences)
        return preferences

    def active_session(self, identity: str) -> Session | None:
        """Look up without creating. Expiry is decided here, by comparison with now."""
        return self._sessions.get_active(identity, self._clock())
