"""Tests for src.core.authorization: per-action auth gate."""

import pytest

from src.core.actions import ActionKind
from src.core.authorization import REQUIRES_AUTH, AuthorizationGate
from src.core.errors import AuthRequired
from src.core.validator import ParameterValidator
from src.data.models import AuthStatus, User

_ARGS = {
    "CreateEvent": {
        "title": "X", "startDateTime": "2026-03-12T09:00:00Z", "endDateTime": "2026-03-12T10:00:00Z",
    },
    "ListEvents": {"startDate": "2026-03-12", "endDate": "2026-03-13"},
    "UpdateEvent": {"eventId": "e1", "title": "Y"},
    "DeleteEvent": {"eventId": "e1"},
    "SearchEvents": {"query": "x"},
    "SuggestSlots": {"date": "2026-03-12", "durationMinutes": 30},
}


def _action(kind: ActionKind):
    return ParameterValidator("UTC").validate(kind.value, _ARGS[kind.value])


class TestAuthorizationGate:
    def test_every_kind_requires_auth(self):
        assert REQUIRES_AUTH == frozenset(ActionKind)

    @pytest.mark.parametrize("status", [AuthStatus.PENDING, AuthStatus.REVOKED, AuthStatus.LOGGED_OUT])
    @pytest.mark.parametrize("kind", list(ActionKind))
    def test_blocks_unauthenticated(self, status, kind):
        user = User(id=1, identity="1", auth_status=status)
        with pytest.raises(AuthRequired):
            AuthorizationGate().check(user, _action(kind))

    @pytest.mark.parametrize("kind", list(ActionKind))
    def test_allows_authenticated(self, kind):
        user = User(id=1, identity="1", auth_status=AuthStatus.AUTHENTICATED, credentials_json="{}")
        AuthorizationGate().check(user, _action(kind))

    def test_custom_table(self):
        gate = AuthorizationGate(requires_auth=frozenset({ActionKind.CREATE_EVENT}))
        user = User(id=1, identity="1")
        assert not gate.requires_auth(ActionKind.SUGGEST_SLOTS)
        gate.check(user, _action(ActionKind.SUGGEST_SLOTS))
        with pytest.raises(AuthRequired):
            gate.check(user, _action(ActionKind.CREATE_EVENT))
