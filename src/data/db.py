"""
ChatCal Assistant: SQLite storage.

Durable state for users, sessions, pending OAuth authorizations and the
local event mirror. All four stores share one database file. Timestamps
are stored as UTC ISO-8601 strings with fixed microsecond precision so
that SQL string comparison matches chronological order.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from src.data.models import (
    AuthStatus,
    MirroredEvent,
    PendingAuthorization,
    Session,
    SessionStatus,
    User,
)

logger = logging.getLogger(__name__)


def _to_db(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: str) -> datetime:
    return datetime.fromisoformat(value)


class _SQLiteStore:
    """Connection handling shared by every store."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class UserDB(_SQLiteStore):
    """Users keyed by chat identity."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity         TEXT    NOT NULL UNIQUE,
                    display_name     TEXT    NOT NULL DEFAULT '',
                    auth_status      TEXT    NOT NULL DEFAULT 'pending',
                    credentials_json TEXT,
                    preferences      TEXT    NOT NULL DEFAULT '{}',
                    created_at       TEXT    NOT NULL,
                    updated_at       TEXT    NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        try:
            preferences = json.loads(row["preferences"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Unreadable preferences for user %d, ignoring", row["id"])
            preferences = {}
        return User(
            id=row["id"],
            identity=row["identity"],
            display_name=row["display_name"],
            auth_status=AuthStatus(row["auth_status"]),
            credentials_json=row["credentials_json"],
            preferences=preferences if isinstance(preferences, dict) else {},
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_or_create(self, identity: str, display_name: str = "") -> tuple[User, bool]:
        """Return the user for an identity, creating it on first contact.

        Safe under concurrent calls: the UNIQUE constraint makes the insert
        idempotent and the follow-up read returns the single row.
        """
        now = _to_db(datetime.now(timezone.utc))
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO users
                    (identity, display_name, auth_status, preferences, created_at, updated_at)
                VALUES (?, ?, 'pending', '{}', ?, ?)
                """,
                (identity, display_name, now, now),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM users WHERE identity = ?", (identity,),
            ).fetchone()
        if created:
            logger.info("User registered: #%d identity=%s", row["id"], identity)
        return self._row_to_user(row), created

    def get_by_identity(self, identity: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE identity = ?", (identity,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def set_auth(
        self, user_id: int, status: AuthStatus, credentials_json: str | None,
    ) -> None:
        """Replace auth status and credential bundle together."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users
                SET auth_status = ?, credentials_json = ?, updated_at = ?
                WHERE id = ?
                """,
                (status.value, credentials_json, _to_db(datetime.now(timezone.utc)), user_id),
            )
        logger.info("User #%d auth status -> %s", user_id, status.value)

    def set_credentials(self, user_id: int, credentials_json: str) -> None:
        """Store a refreshed credential bundle, leaving the status as is."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET credentials_json = ?, updated_at = ? WHERE id = ?",
                (credentials_json, _to_db(datetime.now(timezone.utc)), user_id),
            )
        logger.debug("Credentials replaced for user #%d", user_id)

    def set_preferences(self, user_id: int, preferences: dict) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET preferences = ?, updated_at = ? WHERE id = ?",
                (json.dumps(preferences), _to_db(datetime.now(timezone.utc)), user_id),
            )


class SessionDB(_SQLiteStore):
    """Chat sessions; at most one active row per identity."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id            TEXT PRIMARY KEY,
                    user_id       INTEGER NOT NULL,
                    identity      TEXT    NOT NULL,
                    status        TEXT    NOT NULL DEFAULT 'active',
                    created_at    TEXT    NOT NULL,
                    expires_at    TEXT    NOT NULL,
                    last_activity TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_identity ON sessions(identity)"
            )
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_one_active
                ON sessions(identity) WHERE status = 'active'
            """)
        logger.debug("Sessions table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            user_id=row["user_id"],
            identity=row["identity"],
            status=SessionStatus(row["status"]),
            created_at=_from_db(row["created_at"]),
            expires_at=_from_db(row["expires_at"]),
            last_activity=_from_db(row["last_activity"]),
        )

    def get_active(self, identity: str, now: datetime) -> Session | None:
        """Newest unexpired active session for an identity."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM sessions
                WHERE identity = ? AND status = 'active' AND expires_at > ?
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (identity, _to_db(now)),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_session(row)

    def create(
        self, user_id: int, identity: str, now: datetime, ttl: timedelta,
    ) -> Session:
        """Expire stale rows for the identity and insert a fresh session.

        Raises sqlite3.IntegrityError when another unexpired active session
        already exists for the identity.
        """
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            identity=identity,
            status=SessionStatus.ACTIVE,
            created_at=now,
            expires_at=now + ttl,
            last_activity=now,
        )
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE sessions SET status = 'expired'
                WHERE identity = ? AND status = 'active' AND expires_at <= ?
                """,
                (identity, _to_db(now)),
            )
            conn.execute(
                """
                INSERT INTO sessions
                    (id, user_id, identity, status, created_at, expires_at, last_activity)
                VALUES (?, ?, ?, 'active', ?, ?, ?)
                """,
                (
                    session.id, user_id, identity,
                    _to_db(session.created_at), _to_db(session.expires_at),
                    _to_db(session.last_activity),
                ),
            )
        logger.info("Session %s created for %s, expires %s", session.id, identity, session.expires_at)
        return session

    def touch(self, session_id: str, now: datetime) -> None:
        """Record activity. Deliberately leaves expires_at alone."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE sessions SET last_activity = ? WHERE id = ?",
                (_to_db(now), session_id),
            )


class PendingAuthDB(_SQLiteStore):
    """Single-use OAuth state tokens. The table is the only source of truth."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_authorizations (
                    state      TEXT PRIMARY KEY,
                    identity   TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)
        logger.debug("Pending authorizations table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_pending(row: sqlite3.Row) -> PendingAuthorization:
        return PendingAuthorization(
            state=row["state"],
            identity=row["identity"],
            created_at=_from_db(row["created_at"]),
            expires_at=_from_db(row["expires_at"]),
        )

    def create(
        self, identity: str, state: str, now: datetime, ttl: timedelta,
    ) -> PendingAuthorization:
        """Store a new state token, superseding older ones for the identity."""
        pending = PendingAuthorization(
            state=state, identity=identity, created_at=now, expires_at=now + ttl,
        )
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM pending_authorizations WHERE identity = ?", (identity,),
            )
            conn.execute(
                """
                INSERT INTO pending_authorizations (state, identity, created_at, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (state, identity, _to_db(now), _to_db(pending.expires_at)),
            )
        logger.info("Pending authorization stored for %s", identity)
        return pending

    def get(self, state: str) -> PendingAuthorization | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM pending_authorizations WHERE state = ?", (state,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_pending(row)

    def consume(self, state: str, now: datetime) -> PendingAuthorization | None:
        """Atomically take an unexpired entry. Returns None if it is gone or stale."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM pending_authorizations WHERE state = ? AND expires_at > ?",
                (state, _to_db(now)),
            ).fetchone()
            if row is None:
                return None
            cursor = conn.execute(
                "DELETE FROM pending_authorizations WHERE state = ? AND expires_at > ?",
                (state, _to_db(now)),
            )
            if cursor.rowcount != 1:
                return None
        logger.info("Pending authorization consumed for %s", row["identity"])
        return self._row_to_pending(row)

    def delete_expired(self, now: datetime) -> int:
        """Remove entries whose expiry has passed. Live entries are never touched."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_authorizations WHERE expires_at <= ?",
                (_to_db(now),),
            )
        return cursor.rowcount


# Mirror field name → column name
_MIRROR_COLUMNS = {
    "title": "title",
    "description": "description",
    "start": "start_time",
    "end": "end_time",
    "location": "location",
}


class EventMirrorDB(_SQLiteStore):
    """Local mirror of remote events, unique on (user_id, remote_id)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS calendar_events (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id          INTEGER NOT NULL,
                    remote_id        TEXT    NOT NULL,
                    title            TEXT    NOT NULL,
                    description      TEXT    NOT NULL DEFAULT '',
                    start_time       TEXT    NOT NULL,
                    end_time         TEXT    NOT NULL,
                    location         TEXT,
                    attendees        TEXT    NOT NULL DEFAULT '[]',
                    reminder_minutes INTEGER,
                    created_at       TEXT    NOT NULL,
                    updated_at       TEXT    NOT NULL,
                    UNIQUE (user_id, remote_id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_user_time "
                "ON calendar_events(user_id, start_time)"
            )
        logger.debug("Calendar events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> MirroredEvent:
        return MirroredEvent(
            id=row["id"],
            remote_id=row["remote_id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            start=_from_db(row["start_time"]),
            end=_from_db(row["end_time"]),
            location=row["location"],
            attendees=json.loads(row["attendees"] or "[]"),
            reminder_minutes=row["reminder_minutes"],
        )

    def upsert(
        self,
        user_id: int,
        remote_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = "",
        location: str | None = None,
        attendees: list[str] | None = None,
        reminder_minutes: int | None = None,
    ) -> MirroredEvent:
        if start >= end:
            raise ValueError("Mirrored event must start before it ends")
        now = _to_db(datetime.now(timezone.utc))
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO calendar_events
                    (user_id, remote_id, title, description, start_time, end_time,
                     location, attendees, reminder_minutes, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, remote_id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    start_time = excluded.start_time,
                    end_time = excluded.end_time,
                    location = excluded.location,
                    attendees = excluded.attendees,
                    reminder_minutes = excluded.reminder_minutes,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id, remote_id, title, description, _to_db(start), _to_db(end),
                    location, json.dumps(attendees or []), reminder_minutes, now, now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM calendar_events WHERE user_id = ? AND remote_id = ?",
                (user_id, remote_id),
            ).fetchone()
        logger.info("Mirrored event %s for user #%d: '%s'", remote_id, user_id, title)
        return self._row_to_event(row)

    def get(self, user_id: int, remote_id: str) -> MirroredEvent | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM calendar_events WHERE user_id = ? AND remote_id = ?",
                (user_id, remote_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def update_fields(self, user_id: int, remote_id: str, changes: dict) -> bool:
        """Apply a partial update. Keys are mirror field names (title, start, ...)."""
        assignments: list[str] = []
        params: list = []
        for name, value in changes.items():
            column = _MIRROR_COLUMNS.get(name)
            if column is None:
                raise ValueError(f"Unknown mirror field: {name}")
            if isinstance(value, datetime):
                value = _to_db(value)
            assignments.append(f"{column} = ?")
            params.append(value)
        if not assignments:
            return False

        assignments.append("updated_at = ?")
        params.extend([_to_db(datetime.now(timezone.utc)), user_id, remote_id])
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE calendar_events SET {', '.join(assignments)} "
                "WHERE user_id = ? AND remote_id = ?",
                params,
            )
        return cursor.rowcount > 0

    def delete(self, user_id: int, remote_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM calendar_events WHERE user_id = ? AND remote_id = ?",
                (user_id, remote_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Mirror row %s removed for user #%d", remote_id, user_id)
        return deleted

    def list_between(
        self, user_id: int, start: datetime, end: datetime, limit: int | None = None,
    ) -> list[MirroredEvent]:
        """Events overlapping [start, end), ordered by start time."""
        query = (
            "SELECT * FROM calendar_events "
            "WHERE user_id = ? AND start_time < ? AND end_time > ? "
            "ORDER BY start_time"
        )
        params: list = [user_id, _to_db(end), _to_db(start)]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]
