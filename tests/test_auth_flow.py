"""Tests for src.core.auth_flow: consent links, callbacks, logout, revoke and the sweeper."""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.core.auth_flow import AuthorizationService, PendingAuthSweeper, parse_callback
from src.data.models import AuthStatus
from src.ports.identity_port import IdentityProviderError


@pytest.fixture
def idp():
    provider = MagicMock()
    provider.build_auth_url = MagicMock(side_effect=lambda state: f"https://accounts.example/auth?state={state}")
    provider.exchange = AsyncMock(return_value='{"token": "fresh", "refresh_token": "r"}')
    provider.revoke = AsyncMock()
    return provider


@pytest.fixture
def auth(user_db, pending_db, idp, clock):
    return AuthorizationService(user_db, pending_db, idp, link_ttl=timedelta(minutes=10), clock=clock)


def _state_of(url: str) -> str:
    return url.rsplit("state=", 1)[1]


# ---------------------------------------------------------------------------
# parse_callback
# ---------------------------------------------------------------------------


class TestParseCallback:
    def test_full_url(self):
        assert parse_callback("http://localhost:8080/cb?code=abc&state=xyz&scope=cal") == ("abc", "xyz", None)

    def test_query_string(self):
        assert parse_callback("?code=abc&state=xyz") == ("abc", "xyz", None)

    def test_error(self):
        assert parse_callback("http://localhost/cb?error=access_denied&state=s") == (None, "s", "access_denied")

    def test_garbage(self):
        assert parse_callback("hello") == (None, None, None)


# ---------------------------------------------------------------------------
# start / complete
# ---------------------------------------------------------------------------


class TestStartAndComplete:
    @pytest.mark.asyncio
    async def test_full_flow(self, auth, user_db, pending_db, clock):
        started = auth.start("42", "Kim")
        assert started.success is True
        assert started.expires_at == clock.now + timedelta(minutes=10)
        assert "/connect" in started.message
        state = _state_of(started.url)
        assert pending_db.get(state).identity == "42"

        done = await auth.complete("42", f"http://localhost/cb?code=c0de&state={state}")

        assert done.success is True
        user = user_db.get_by_identity("42")
        assert user.auth_status is AuthStatus.AUTHENTICATED
        assert user.credentials_json == '{"token": "fresh", "refresh_token": "r"}'
        assert pending_db.get(state) is None

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, auth, idp):
        state = _state_of(auth.start("42").url)
        await auth.complete("42", f"?code=c&state={state}")
        again = await auth.complete("42", f"?code=c&state={state}")
        assert again.success is False
        assert idp.exchange.await_count == 1

    @pytest.mark.asyncio
    async def test_expired_link_rejected(self, auth, clock, idp):
        state = _state_of(auth.start("42").url)
        clock.now += timedelta(minutes=11)
        result = await auth.complete("42", f"?code=c&state={state}")
        assert result.success is False
        assert "expired" in result.message
        idp.exchange.assert_not_called()

    @pytest.mark.asyncio
    async def test_state_bound_to_identity(self, auth, pending_db, idp):
        state = _state_of(auth.start("42").url)
        result = await auth.complete("99", f"?code=c&state={state}")
        assert result.success is False
        assert pending_db.get(state) is not None
        idp.exchange.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_link_supersedes_old(self, auth):
        old = _state_of(auth.start("42").url)
        auth.start("42")
        result = await auth.complete("42", f"?code=c&state={old}")
        assert result.success is False

    @pytest.mark.asyncio
    async def test_denied_consent(self, auth, user_db):
        auth.start("42")
        result = await auth.complete("42", "?error=access_denied")
        assert result.success is False
        assert user_db.get_by_identity("42").auth_status is AuthStatus.PENDING

    @pytest.mark.asyncio
    async def test_exchange_failure(self, auth, idp, user_db):
        idp.exchange.side_effect = IdentityProviderError("invalid_grant")
        state = _state_of(auth.start("42").url)
        result = await auth.complete("42", f"?code=c&state={state}")
        assert result.success is False
        assert user_db.get_by_identity("42").credentials_json is None

    def test_missing_client_secrets(self, auth, idp):
        idp.build_auth_url.side_effect = FileNotFoundError("credentials.json")
        result = auth.start("42")
        assert result.success is False
        assert "not configured" in result.message

    def test_already_connected_message(self, auth, authed_user):
        result = auth.start(authed_user.identity)
        assert result.message.startswith("Your calendar is already connected")


# ---------------------------------------------------------------------------
# logout / revoke / status
# ---------------------------------------------------------------------------


class TestLogoutAndRevoke:
    def test_logout(self, auth, authed_user, user_db):
        assert auth.logout(authed_user.identity).success is True
        user = user_db.get(authed_user.id)
        assert user.auth_status is AuthStatus.LOGGED_OUT
        assert user.credentials_json is None

    def test_logout_without_credentials(self, auth, pending_user):
        assert auth.logout(pending_user.identity).success is False

    @pytest.mark.asyncio
    async def test_revoke(self, auth, authed_user, idp, user_db):
        result = await auth.revoke(authed_user.identity)
        assert result.success is True
        idp.revoke.assert_awaited_once_with('{"token": "t"}')
        assert user_db.get(authed_user.id).auth_status is AuthStatus.REVOKED

    @pytest.mark.asyncio
    async def test_revoke_clears_locally_even_if_remote_fails(self, auth, authed_user, idp, user_db):
        idp.revoke.side_effect = IdentityProviderError("network")
        result = await auth.revoke(authed_user.identity)
        assert result.success is True
        assert user_db.get(authed_user.id).credentials_json is None

    def test_status(self, auth, authed_user):
        assert auth.status(authed_user.identity).is_authenticated
        assert auth.status("nobody") is None


# ---------------------------------------------------------------------------
# PendingAuthSweeper
# ---------------------------------------------------------------------------


class TestPendingAuthSweeper:
    @pytest.mark.asyncio
    async def test_sweeps_only_expired(self, auth, pending_db, clock):
        stale = _state_of(auth.start("1").url)
        clock.now += timedelta(minutes=11)
        live = _state_of(auth.start("2").url)

        sweeper = PendingAuthSweeper(pending_db, clock=clock)
        assert sweeper.sweep_once() == 1
        assert pending_db.get(stale) is None
        assert pending_db.get(live) is not None

        await sweeper(None)
        assert pending_db.get(live) is not None
