"""Tests for src.core.session_manager: one active session per identity."""

import asyncio
from datetime import timedelta

import pytest

from src.core.session_manager import SessionManager


@pytest.fixture
def manager(user_db, session_db, locks, clock):
    return SessionManager(user_db, session_db, locks, ttl=timedelta(hours=24), clock=clock)


class TestEnsureSession:
    @pytest.mark.asyncio
    async def test_first_message_creates_user_and_session(self, manager, clock):
        ctx = await manager.ensure_session("111", "Alex")
        assert ctx.new_user is True
        assert ctx.new_session is True
        assert ctx.user.identity == "111"
        assert ctx.user.display_name == "Alex"
        assert ctx.session.expires_at == clock.now + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_second_message_reuses_session(self, manager):
        first = await manager.ensure_session("111")
        second = await manager.ensure_session("111")
        assert second.session.id == first.session.id
        assert second.new_user is False
        assert second.new_session is False

    @pytest.mark.asyncio
    async def test_activity_does_not_extend_expiry(self, manager, clock):
        first = await manager.ensure_session("111")
        clock.now += timedelta(hours=23)
        second = await manager.ensure_session("111")
        assert second.session.expires_at == first.session.expires_at
        assert second.session.last_activity == clock.now

    @pytest.mark.asyncio
    async def test_expired_session_replaced(self, manager, session_statuses, clock):
        first = await manager.ensure_session("111")
        clock.now += timedelta(hours=24, seconds=1)
        second = await manager.ensure_session("111")
        assert second.session.id != first.session.id
        assert second.new_session is True
        assert second.new_user is False

        assert session_statuses("111") == ["expired", "active"]

    @pytest.mark.asyncio
    async def test_concurrent_first_messages_create_one_session(self, manager, session_statuses):
        contexts = await asyncio.gather(*(manager.ensure_session("111") for _ in range(10)))
        assert len({c.session.id for c in contexts}) == 1
        assert sum(c.new_session for c in contexts) == 1
        assert session_statuses("111") == ["active"]

    @pytest.mark.asyncio
    async def test_identities_are_independent(self, manager):
        a = await manager.ensure_session("111")
        b = await manager.ensure_session("222")
        assert a.session.id != b.session.id
        assert a.user.id != b.user.id


class TestActiveSession:
    @pytest.mark.asyncio
    async def test_lookup_does_not_create(self, manager):
        assert manager.active_session("111") is None
        ctx = await manager.ensure_session("111")
        assert manager.active_session("111").id == ctx.session.id

    @pytest.mark.asyncio
    async def test_expired_is_not_active(self, manager, clock):
        await manager.ensure_session("111")
        clock.now += timedelta(hours=24)
        assert manager.active_session("111") is None


class TestUpdatePreferences:
    @pytest.mark.asyncio
    async def test_merges_into_stored_preferences(self, manager, user_db):
        await manager.update_preferences("111", {"reminderMinutes": 30}, "Alex")
        merged = await manager.update_preferences("111", {"workdayStart": "08:00"})
        assert merged == {"reminderMinutes": 30, "workdayStart": "08:00"}
        assert user_db.get_by_identity("111").preferences == merged

    @pytest.mark.asyncio
    async def test_none_removes_key(self, manager, user_db):
        await manager.update_preferences("111", {"reminderMinutes": 30, "workdayEnd": "16:00"})
        merged = await manager.update_preferences("111", {"reminderMinutes": None})
        assert merged == {"workdayEnd": "16:00"}
        assert user_db.get_by_identity("111").preferences == {"workdayEnd": "16:00"}

    @pytest.mark.asyncio
    async def test_preferences_reach_next_turn(self, manager):
        await manager.update_preferences("111", {"reminderMinutes": 5})
        ctx = await manager.ensure_session("111")
        assert ctx.user.preferences == {"reminderMinutes": 5}
