"""Tests for src.data.db: SQLite stores for users, sessions, auth links and the event mirror."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from src.data.models import AuthStatus

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# UserDB
# ---------------------------------------------------------------------------


class TestUserDB:
    def test_get_or_create_is_idempotent(self, user_db):
        user, created = user_db.get_or_create("42", "Kim")
        again, created_again = user_db.get_or_create("42", "Someone else")
        assert created is True
        assert created_again is False
        assert again.id == user.id
        assert again.display_name == "Kim"
        assert again.auth_status is AuthStatus.PENDING

    def test_get_unknown(self, user_db):
        assert user_db.get_by_identity("nobody") is None
        assert user_db.get(999) is None

    def test_set_auth_and_credentials(self, user_db):
        user, _ = user_db.get_or_create("42")
        user_db.set_auth(user.id, AuthStatus.AUTHENTICATED, '{"token": "a"}')
        assert user_db.get(user.id).is_authenticated

        user_db.set_credentials(user.id, '{"token": "b"}')
        refreshed = user_db.get(user.id)
        assert refreshed.credentials_json == '{"token": "b"}'
        assert refreshed.auth_status is AuthStatus.AUTHENTICATED

        user_db.set_auth(user.id, AuthStatus.LOGGED_OUT, None)
        assert user_db.get(user.id).credentials_json is None

    def test_preferences_round_trip(self, user_db):
        user, _ = user_db.get_or_create("42")
        user_db.set_preferences(user.id, {"reminder": 30})
        assert user_db.get(user.id).preferences == {"reminder": 30}


# ---------------------------------------------------------------------------
# SessionDB
# ---------------------------------------------------------------------------


class TestSessionDB:
    def test_create_and_get_active(self, user_db, session_db):
        user, _ = user_db.get_or_create("42")
        session = session_db.create(user.id, "42", NOW, timedelta(hours=24))
        found = session_db.get_active("42", NOW + timedelta(hours=1))
        assert found.id == session.id
        assert found.expires_at == NOW + timedelta(hours=24)

    def test_second_active_session_rejected(self, user_db, session_db):
        user, _ = user_db.get_or_create("42")
        session_db.create(user.id, "42", NOW, timedelta(hours=24))
        with pytest.raises(sqlite3.IntegrityError):
            session_db.create(user.id, "42", NOW + timedelta(minutes=1), timedelta(hours=24))

    def test_create_after_expiry_retires_old_row(self, user_db, session_db, session_statuses):
        user, _ = user_db.get_or_create("42")
        session_db.create(user.id, "42", NOW, timedelta(hours=1))
        later = NOW + timedelta(hours=2)
        assert session_db.get_active("42", later) is None
        session_db.create(user.id, "42", later, timedelta(hours=1))
        assert session_statuses("42") == ["expired", "active"]

    def test_touch_leaves_expiry(self, user_db, session_db):
        user, _ = user_db.get_or_create("42")
        session = session_db.create(user.id, "42", NOW, timedelta(hours=24))
        session_db.touch(session.id, NOW + timedelta(hours=5))
        found = session_db.get_active("42", NOW + timedelta(hours=6))
        assert found.last_activity == NOW + timedelta(hours=5)
        assert found.expires_at == session.expires_at


# ---------------------------------------------------------------------------
# PendingAuthDB
# ---------------------------------------------------------------------------


class TestPendingAuthDB:
    def test_consume_once(self, pending_db):
        pending_db.create("42", "state-1", NOW, timedelta(minutes=10))
        assert pending_db.consume("state-1", NOW + timedelta(minutes=1)).identity == "42"
        assert pending_db.consume("state-1", NOW + timedelta(minutes=1)) is None

    def test_expired_cannot_be_consumed(self, pending_db):
        pending_db.create("42", "state-1", NOW, timedelta(minutes=10))
        assert pending_db.consume("state-1", NOW + timedelta(minutes=10)) is None

    def test_new_link_supersedes_old(self, pending_db):
        pending_db.create("42", "old", NOW, timedelta(minutes=10))
        pending_db.create("42", "new", NOW, timedelta(minutes=10))
        assert pending_db.get("old") is None
        assert pending_db.get("new") is not None

    def test_delete_expired_only(self, pending_db):
        pending_db.create("1", "stale", NOW - timedelta(minutes=20), timedelta(minutes=10))
        pending_db.create("2", "live", NOW, timedelta(minutes=10))
        assert pending_db.delete_expired(NOW) == 1
        assert pending_db.get("stale") is None
        assert pending_db.get("live") is not None


# ---------------------------------------------------------------------------
# EventMirrorDB
# ---------------------------------------------------------------------------


class TestEventMirrorDB:
    def _upsert(self, mirror_db, remote_id="r1", start=NOW, title="Lunch"):
        return mirror_db.upsert(
            1, remote_id, title=title, start=start, end=start + timedelta(hours=1),
            location="Cafe", attendees=["a@example.com"], reminder_minutes=10,
        )

    def test_upsert_and_get(self, mirror_db):
        self._upsert(mirror_db)
        event = mirror_db.get(1, "r1")
        assert event.title == "Lunch"
        assert event.attendees == ["a@example.com"]
        assert event.reminder_minutes == 10

    def test_upsert_same_remote_id_updates(self, mirror_db):
        self._upsert(mirror_db)
        self._upsert(mirror_db, title="Brunch")
        assert mirror_db.get(1, "r1").title == "Brunch"
        assert len(mirror_db.list_between(1, NOW - timedelta(days=1), NOW + timedelta(days=1))) == 1

    def test_upsert_rejects_inverted_times(self, mirror_db):
        with pytest.raises(ValueError):
            mirror_db.upsert(1, "r1", title="X", start=NOW, end=NOW)

    def test_update_fields(self, mirror_db):
        self._upsert(mirror_db)
        moved = NOW + timedelta(hours=3)
        assert mirror_db.update_fields(1, "r1", {"title": "Late lunch", "start": moved}) is True
        event = mirror_db.get(1, "r1")
        assert event.title == "Late lunch"
        assert event.start == moved

    def test_update_fields_unknown_column(self, mirror_db):
        self._upsert(mirror_db)
        with pytest.raises(ValueError):
            mirror_db.update_fields(1, "r1", {"colour": "red"})

    def test_update_missing_row(self, mirror_db):
        assert mirror_db.update_fields(1, "nope", {"title": "X"}) is False

    def test_delete(self, mirror_db):
        self._upsert(mirror_db)
        assert mirror_db.delete(1, "r1") is True
        assert mirror_db.get(1, "r1") is None
        assert mirror_db.delete(1, "r1") is False

    def test_list_between_orders_and_limits(self, mirror_db):
        self._upsert(mirror_db, "r2", start=NOW + timedelta(hours=5))
        self._upsert(mirror_db, "r1", start=NOW + timedelta(hours=1))
        self._upsert(mirror_db, "r3", start=NOW + timedelta(days=5))
        events = mirror_db.list_between(1, NOW, NOW + timedelta(days=2))
        assert [e.remote_id for e in events] == ["r1", "r2"]
        assert len(mirror_db.list_between(1, NOW, NOW + timedelta(days=2), limit=1)) == 1

    def test_users_are_isolated(self, mirror_db):
        self._upsert(mirror_db)
        assert mirror_db.get(2, "r1") is None
