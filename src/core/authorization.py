"""
ChatCal Assistant: authorization gate.

Checked per action, before the executor runs, so an unauthenticated user
never reaches the remote calendar.
"""

from __future__ import annotations

import logging

from src.core.actions import Action, ActionKind
from src.core.errors import AuthRequired
from src.data.models import AuthStatus, User

logger = logging.getLogger(__name__)

# Every kind reads or writes the user's calendar.
REQUIRES_AUTH: frozenset[ActionKind] = frozenset(ActionKind)


class AuthorizationGate:
    def __init__(self, requires_auth: frozenset[ActionKind] = REQUIRES_AUTH) -> None:
        self._requires_auth = requires_auth

    def requires_auth(self, kind: ActionKind) -> bool:
        return kind in self._requires_auth

    def check(self, user: User, action: Action) -> None:
        """Raise AuthRequired if `action` needs a connected calendar and `user` has none."""
        if not self.requires_auth(action.kind):
            return
        if user.auth_status != AuthStatus.AUTHENTICATED:
            logger.info(
                "Blocked %s for %s (auth status: %s)",
                action.kind.value, user.identity, user.auth_status.value,
            )
            raise AuthRequired(
                f"{action.kind.value} needs a connected calendar (status: {user.auth_status.value})"
            )
