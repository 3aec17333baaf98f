"""
ChatCal Assistant: calendar authorization flow.

Start: a one-time state token is stored in the pending_authorizations
table (the only source of truth) and the user gets a consent link.
Complete: the user pastes the redirect URL back; the state is consumed
with a conditional delete and the code is exchanged for credentials.
Logout and revoke clear the stored credentials.

PendingAuthSweeper is the single periodic job that removes expired
state tokens.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from src.core.session_manager import utc_now
from src.data.db import PendingAuthDB, UserDB
from src.data.models import AuthStatus, User
from src.ports.identity_port import IdentityProvider, IdentityProviderError

logger = logging.getLogger(__name__)


@dataclass
class AuthResult:
    success: bool
    message: str
    url: str = ""
    expires_at: datetime | None = None


def parse_callback(text: str) -> tuple[str | None, str | None, str | None]:
    """Extract (code, state, error) from a pasted redirect URL or query string."""
    text = text.strip()
    query = urlparse(text).query if "://" in text else text.lstrip("?")
    params = parse_qs(query)

    def first(name: str) -> str | None:
        values = params.get(name)
        return values[0] if values else None

    return first("code"), first("state"), first("error")


class AuthorizationService:
    def __init__(
        self,
        users: UserDB,
        pending: PendingAuthDB,
        identity_provider: IdentityProvider,
        link_ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._users = users
        self._pending = pending
        self._idp = identity_provider
        self._link_ttl = link_ttl
        self._clock = clock

    def start(self, identity: str, display_name: str = "") -> AuthResult:
        """Begin a flow. Supersedes any link issued earlier to the same identity."""
        user, _ = self._users.get_or_create(identity, display_name)
        state = secrets.token_urlsafe(32)
        try:
            url = self._idp.build_auth_url(state)
        except FileNotFoundError as exc:
            logger.error("Cannot start authorization: %s", exc)
            return AuthResult(False, "Calendar connection is not configured on this bot.")

        pending = self._pending.create(identity, state, self._clock(), self._link_ttl)
        minutes = int(self._link_ttl.total_seconds() // 60)
        prefix = "Your calendar is already connected. To reconnect, " if user.is_authenticated else ""
        message = (
            f"{prefix}open this link and allow access (valid for {minutes} minutes).\n"
            "Afterwards, copy the address your browser lands on and send it to me as:\n"
            "/connect <address>"
        )
        return AuthResult(True, message[0].upper() + message[1:], url=url, expires_at=pending.expires_at)

    async def complete(self, identity: str, callback: str) -> AuthResult:
        code, state, error = parse_callback(callback)
        if error:
            logger.info("Authorization denied by %s: %s", identity, error)
            return AuthResult(False, "Google reported that access was not granted. Send /auth to try again.")
        if not code or not state:
            return AuthResult(False, "That doesn't look like the address from Google. It should contain code= and state=.")

        entry = self._pending.get(state)
        if entry is None or entry.identity != identity:
            return AuthResult(False, "This link has expired or was not issued to you. Send /auth for a new one.")
        if self._pending.consume(state, self._clock()) is None:
            return AuthResult(False, "This link has expired. Send /auth for a new one.")

        try:
            bundle = await self._idp.exchange(code)
        except IdentityProviderError as exc:
            logger.warning("Code exchange failed for %s: %s", identity, exc)
            return AuthResult(False, "Google rejected the authorization. Send /auth to try again.")

        user, _ = self._users.get_or_create(identity)
        self._users.set_auth(user.id, AuthStatus.AUTHENTICATED, bundle)
        logger.info("Calendar connected for %s", identity)
        return AuthResult(True, "✅ Your Google Calendar is connected.")

    def status(self, identity: str) -> User | None:
        return self._users.get_by_identity(identity)

    def logout(self, identity: str) -> AuthResult:
        user = self._users.get_by_identity(identity)
        if user is None or user.credentials_json is None:
            return AuthResult(False, "No calendar is connected.")
        self._users.set_auth(user.id, AuthStatus.LOGGED_OUT, None)
        return AuthResult(True, "You're logged out. Send /auth to connect again.")

    async def revoke(self, identity: str) -> AuthResult:
        user = self._users.get_by_identity(identity)
        if user is None or user.credentials_json is None:
            return AuthResult(False, "No calendar is connected.")
        try:
            await self._idp.revoke(user.credentials_json)
        except IdentityProviderError as exc:
            # Local credentials are cleared regardless; the grant can be removed in the Google account.
            logger.warning("Remote revoke failed for %s: %s", identity, exc)
        self._users.set_auth(user.id, AuthStatus.REVOKED, None)
        return AuthResult(True, "Access revoked. The bot can no longer see your calendar.")


class PendingAuthSweeper:
    """Deletes expired state tokens. Usable directly as a job-queue callback."""

    def __init__(self, pending: PendingAuthDB, clock: Callable[[], datetime] = utc_now) -> None:
        self._pending = pending
        self._clock = clock

    def sweep_once(self) -> int:
        removed = self._pending.delete_expired(self._clock())
        if removed:
            logger.info("Swept %d expired authorization link(s)", removed)
        return removed

    async def __call__(self, context: Any = None) -> None:
        self.sweep_once()
