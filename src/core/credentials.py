"""
ChatCal Assistant: credential freshness.

Every remote calendar call goes through `calendar_for()`, which refreshes an
expired bundle first. Refresh is single-flight per identity; a failed
refresh surfaces as ReAuthRequired and leaves the stored status alone.
"""

from __future__ import annotations

import logging
from typing import Callable

from src.core.errors import AuthRequired, ReAuthRequired
from src.core.locks import IdentityLocks
from src.data.db import UserDB
from src.data.models import User
from src.ports.calendar_port import CalendarPort
from src.ports.identity_port import IdentityProvider, IdentityProviderError

logger = logging.getLogger(__name__)

CalendarFactory = Callable[[str], CalendarPort]


class CredentialManager:
    def __init__(
        self,
        users: UserDB,
        identity_provider: IdentityProvider,
        locks: IdentityLocks,
        calendar_factory: CalendarFactory,
    ) -> None:
        self._users = users
        self._idp = identity_provider
        self._locks = locks
        self._calendar_factory = calendar_factory

    def _needs_refresh(self, credentials_json: str) -> bool:
        try:
            return self._idp.needs_refresh(credentials_json)
        except IdentityProviderError as exc:
            raise ReAuthRequired(str(exc)) from exc

    async def fresh_credentials(self, user: User) -> str:
        """Return a usable credential bundle for `user`, refreshing if needed."""
        if not user.credentials_json:
            raise AuthRequired("No calendar connected")
        if not self._needs_refresh(user.credentials_json):
            return user.credentials_json

        async with self._locks.hold(user.identity):
            # Another task may have refreshed while we waited.
            current = self._users.get(user.id)
            bundle = current.credentials_json if current else None
            if not bundle:
                raise AuthRequired("No calendar connected")
            if not self._needs_refresh(bundle):
                user.credentials_json = bundle
                return bundle

            try:
                refreshed = await self._idp.refresh(bundle)
            except IdentityProviderError as exc:
                logger.warning("Credential refresh failed for %s: %s", user.identity, exc)
                raise ReAuthRequired(str(exc)) from exc

            self._users.set_credentials(user.id, refreshed)
            user.credentials_json = refreshed
            logger.info("Credentials refreshed for %s", user.identity)
            return refreshed

    async def calendar_for(self, user: User) -> CalendarPort:
        bundle = await self.fresh_credentials(user)
        return self._calendar_factory(bundle)
