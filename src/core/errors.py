"""
ChatCal Assistant: error taxonomy.

Every failure a single action can hit is one of these exceptions. The
action service catches them per action and turns them into ActionResult
failures, so one bad action never aborts its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldIssue:
    field: str
    reason: str


class ValidationError(Exception):
    """Action arguments failed their schema. Lists every offending field."""

    def __init__(self, action_name: str, issues: list[FieldIssue]) -> None:
        self.action_name = action_name
        self.issues = list(issues)
        detail = "; ".join(f"{i.field}: {i.reason}" for i in self.issues)
        super().__init__(f"Invalid arguments for {action_name}: {detail}")


class UnknownAction(Exception):
    """The resolver asked for an action kind that does not exist."""

    def __init__(self, action_name: str) -> None:
        self.action_name = action_name
        super().__init__(f"Unknown action: {action_name!r}")


class AuthRequired(Exception):
    """The user has not connected a calendar."""


class ReAuthRequired(Exception):
    """Stored credentials expired and could not be refreshed."""


class StartAfterEnd(Exception):
    """Event start is not strictly before its end."""


class PastDateRejected(Exception):
    """Event would start in the past."""


class NotFound(Exception):
    """No event matched the lookup."""
