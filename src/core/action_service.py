"""
ChatCal Assistant: UI-agnostic action service.

Orchestrates one chat turn:
ensure session -> resolve intent -> per action: validate -> authorize ->
execute -> synthesize reply -> return a structured response.

Each action is isolated: its failure becomes a failed ActionResult and the
remaining actions still run. Only a reasoning-service failure affects the
whole turn, and that is absorbed by the keyword fallback inside the
resolver. The Telegram layer renders the returned TurnResponse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable

from src.core.actions import ActionResult, FailureReason, RawAction
from src.core.errors import (
    AuthRequired,
    NotFound,
    PastDateRejected,
    ReAuthRequired,
    StartAfterEnd,
    UnknownAction,
    ValidationError,
)
from src.core.intent import ConversationContext
from src.core.session_manager import utc_now
from src.ports.calendar_port import CalendarError, EventNotFound

if TYPE_CHECKING:
    from src.core.authorization import AuthorizationGate
    from src.core.executor import ActionExecutor
    from src.core.intent import IntentResolver
    from src.core.session_manager import SessionManager
    from src.core.synthesizer import ResponseSynthesizer
    from src.core.validator import ParameterValidator
    from src.data.db import EventMirrorDB
    from src.data.models import User

logger = logging.getLogger(__name__)

CONTEXT_WINDOW = timedelta(hours=48)
CONTEXT_EVENT_LIMIT = 10


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    REPLY = "reply"                  # conversational answer, no actions run
    ACTION_SUMMARY = "action_summary"
    NOT_UNDERSTOOD = "not_understood"


@dataclass
class TurnResponse:
    kind: ResponseKind
    message: str
    results: list[ActionResult] = field(default_factory=list)
    source: str = "reasoning"
    new_user: bool = False


# ---------------------------------------------------------------------------
# Exception -> result mapping
# ---------------------------------------------------------------------------


def _failure(action: str, reason: FailureReason, exc: Exception, payload: dict | None = None) -> ActionResult:
    return ActionResult(
        action=action, success=False, reason=reason, message=str(exc), payload=payload or {},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ActionService:
    """Stateless per turn; all state lives in the injected collaborators."""

    def __init__(
        self,
        sessions: SessionManager,
        resolver: IntentResolver,
        validator: ParameterValidator,
        gate: AuthorizationGate,
        executor: ActionExecutor,
        synthesizer: ResponseSynthesizer,
        mirror: EventMirrorDB,
        timezone: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sessions = sessions
        self._resolver = resolver
        self._validator = validator
        self._gate = gate
        self._executor = executor
        self._synthesizer = synthesizer
        self._mirror = mirror
        self._timezone = timezone
        self._clock = clock

    async def handle_message(self, identity: str, text: str, display_name: str = "") -> TurnResponse:
        session_ctx = await self._sessions.ensure_session(identity, display_name)
        user = session_ctx.user

        context = self._build_context(user)
        resolution = await self._resolver.resolve(text, context)

        if not resolution.has_actions:
            kind = ResponseKind.REPLY if resolution.source == "reasoning" else ResponseKind.NOT_UNDERSTOOD
            return TurnResponse(
                kind=kind,
                message=resolution.reply_text or "Sorry, I didn't understand that.",
                source=resolution.source,
                new_user=session_ctx.new_user,
            )

        results = []
        for raw in resolution.actions:
            results.append(await self.run_action(user, raw))

        message = await self._synthesizer.synthesize(
            text, results, draft=resolution.reply_text or "",
        )
        logger.info(
            "Turn for %s: %d action(s), %d succeeded (via %s)",
            identity, len(results), sum(r.success for r in results), resolution.source,
        )
        return TurnResponse(
            kind=ResponseKind.ACTION_SUMMARY,
            message=message,
            results=results,
            source=resolution.source,
            new_user=session_ctx.new_user,
        )

    async def run_action(self, user: User, raw: RawAction) -> ActionResult:
        """Validate, authorize and execute one action. Never raises."""
        try:
            action = self._validator.validate(raw.name, raw.arguments)
            self._gate.check(user, action)
            return await self._executor.execute(user, action)
        except ValidationError as exc:
            issues = [{"field": i.field, "reason": i.reason} for i in exc.issues]
            return _failure(raw.name, FailureReason.VALIDATION_ERROR, exc, {"issues": issues})
        except UnknownAction as exc:
            logger.error("Resolver asked for unknown action %r", raw.name)
            return _failure(raw.name, FailureReason.UNKNOWN_ACTION, exc)
        except AuthRequired as exc:
            return _failure(raw.name, FailureReason.AUTH_REQUIRED, exc)
        except ReAuthRequired as exc:
            return _failure(raw.name, FailureReason.REAUTH_REQUIRED, exc)
        except StartAfterEnd as exc:
            return _failure(raw.name, FailureReason.START_AFTER_END, exc)
        except PastDateRejected as exc:
            return _failure(raw.name, FailureReason.PAST_DATE_REJECTED, exc)
        except (NotFound, EventNotFound) as exc:
            return _failure(raw.name, FailureReason.NOT_FOUND, exc)
        except CalendarError as exc:
            logger.error("Calendar provider failed during %s: %s", raw.name, exc)
            return _failure(raw.name, FailureReason.REMOTE_PROVIDER_ERROR, exc)
        except Exception as exc:
            logger.exception("Unexpected error while running %s", raw.name)
            return _failure(raw.name, FailureReason.INTERNAL_ERROR, exc)

    def _build_context(self, user: User) -> ConversationContext:
        now = self._clock()
        upcoming = self._mirror.list_between(
            user.id, now, now + CONTEXT_WINDOW, limit=CONTEXT_EVENT_LIMIT,
        )
        return ConversationContext(
            now=now,
            timezone=self._timezone,
            auth_status=user.auth_status.value,
            display_name=user.display_name,
            preferences=dict(user.preferences),
            upcoming_events=tuple(
                {
                    "id": e.remote_id,
                    "title": e.title,
                    "start": e.start.isoformat(),
                    "end": e.end.isoformat(),
                    "location": e.location,
                }
                for e in upcoming
            ),
        )
