"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a fixed clock.
"""

import os
import sqlite3

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

from datetime import datetime, timezone

import pytest

# Wednesday
FIXED_NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_chatcal.db")


@pytest.fixture
def user_db(tmp_db_path):
    """Return a UserDB instance backed by a temp file."""
    from src.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def session_db(tmp_db_path):
    from src.data.db import SessionDB
    return SessionDB(db_path=tmp_db_path)


@pytest.fixture
def pending_db(tmp_db_path):
    from src.data.db import PendingAuthDB
    return PendingAuthDB(db_path=tmp_db_path)


@pytest.fixture
def mirror_db(tmp_db_path):
    from src.data.db import EventMirrorDB
    return EventMirrorDB(db_path=tmp_db_path)


@pytest.fixture
def locks():
    from src.core.locks import IdentityLocks
    return IdentityLocks()


@pytest.fixture
def authed_user(user_db):
    """A user with a connected calendar."""
    from src.data.models import AuthStatus
    user, _ = user_db.get_or_create("12345", "Dana")
    user_db.set_auth(user.id, AuthStatus.AUTHENTICATED, '{"token": "t"}')
    return user_db.get(user.id)


@pytest.fixture
def pending_user(user_db):
    """A user who never connected a calendar."""
    user, _ = user_db.get_or_create("67890", "Sam")
    return user


@pytest.fixture
def session_statuses(tmp_db_path):
    """Return a function listing an identity's session statuses, oldest first."""

    def _statuses(identity):
        with sqlite3.connect(tmp_db_path) as conn:
            rows = conn.execute(
                "SELECT status FROM sessions WHERE identity = ? ORDER BY created_at",
                (identity,),
            ).fetchall()
        return [r[0] for r in rows]

    return _statuses
