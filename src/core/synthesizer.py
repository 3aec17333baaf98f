"""
ChatCal Assistant: response synthesizer.

Turns the results of a turn into one chat reply. The LLM writes it when it
can; otherwise a template lists every result so nothing the user asked
about is lost. Presentation only: nothing here mutates state.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from src.core.actions import ActionResult, FailureReason
from src.core.llm import complete

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are a friendly calendar assistant replying in a chat.
You receive the user's original message and the JSON results of the calendar
actions that were run for it. Write ONE short, natural reply:
- Confirm what succeeded with the key details (title, date, time).
- Explain every failure in plain language and say what the user can do next.
- When a result lists candidates, ask the user which one they mean.
- When a result lists free slots, offer them.
- Do not invent events or results that are not in the JSON.
- If a draft reply is given, keep anything useful from it that the results
  do not contradict.
Plain text only, no markdown tables. A few emojis are fine.
"""

FAILURE_TEXT: dict[FailureReason, str] = {
    FailureReason.VALIDATION_ERROR: "some details were missing or invalid",
    FailureReason.UNKNOWN_ACTION: "something went wrong on my side",
    FailureReason.AUTH_REQUIRED: "your Google Calendar isn't connected yet. Send /auth to connect it",
    FailureReason.REAUTH_REQUIRED: "your Google Calendar access has expired. Send /auth to reconnect",
    FailureReason.START_AFTER_END: "the start time must be before the end time",
    FailureReason.PAST_DATE_REJECTED: "that time is already in the past",
    FailureReason.NOT_FOUND: "I couldn't find a matching event",
    FailureReason.AMBIGUOUS_MATCH: "more than one event matches",
    FailureReason.REMOTE_PROVIDER_ERROR: "Google Calendar didn't respond properly. Please try again in a moment",
    FailureReason.INTERNAL_ERROR: "something went wrong on my side",
}

_ACTION_LABELS = {
    "CreateEvent": "Create event",
    "ListEvents": "Your events",
    "UpdateEvent": "Update event",
    "DeleteEvent": "Delete event",
    "SearchEvents": "Search",
    "SuggestSlots": "Free slots",
}


def _when(value: str | None) -> str:
    if not value:
        return ""
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return value
    if len(value) == 10:
        return dt.strftime("%a %d %b")
    return dt.strftime("%a %d %b %H:%M")


def _event_line(event: dict) -> str:
    when = _when(event.get("start"))
    line = f"• {event.get('title', '(no title)')}"
    if when:
        line += f" ({when})"
    if event.get("location"):
        line += f" @ {event['location']}"
    return line


def _success_lines(result: ActionResult) -> list[str]:
    payload = result.payload
    label = _ACTION_LABELS.get(result.action, result.action)

    if result.action == "CreateEvent":
        event = payload.get("event", {})
        lines = [f"✅ Created: {event.get('title', '')} ({_when(event.get('start'))})"]
        if payload.get("link"):
            lines.append(f"🔗 {payload['link']}")
        return lines
    if result.action == "UpdateEvent":
        event = payload.get("event", {})
        return [f"✏️ Updated: {event.get('title', '')} ({_when(event.get('start'))})"]
    if result.action == "DeleteEvent":
        deleted = payload.get("deleted", {})
        return [f"🗑️ Deleted: {deleted.get('title', '')} ({_when(deleted.get('start'))})"]
    if result.action in ("ListEvents", "SearchEvents"):
        events = payload.get("events", [])
        if not events:
            return [f"📅 {label}: nothing found."]
        return [f"📅 {label} ({len(events)}):"] + [_event_line(e) for e in events]
    if result.action == "SuggestSlots":
        slots = payload.get("slots", [])
        if not slots:
            return [f"🕐 No free {payload.get('durationMinutes', '')}-minute slot on {payload.get('date', '')}."]
        return [f"🕐 Free on {payload.get('date', '')}: " + ", ".join(s["label"] for s in slots)]
    return [f"✅ {label}: done."]


def _failure_lines(result: ActionResult) -> list[str]:
    label = _ACTION_LABELS.get(result.action, result.action)
    reason = FAILURE_TEXT.get(result.reason, "something went wrong")

    if result.reason is FailureReason.AMBIGUOUS_MATCH:
        candidates = result.payload.get("candidates", [])
        lines = [f"🤔 {label}: {len(candidates)} events match. Which one did you mean?"]
        lines += [_event_line(c) for c in candidates]
        return lines
    if result.reason is FailureReason.VALIDATION_ERROR and result.payload.get("issues"):
        fields = ", ".join(i["field"] for i in result.payload["issues"])
        return [f"❌ {label}: {reason} ({fields})."]
    return [f"❌ {label}: {reason}."]


def render_results(results: list[ActionResult]) -> str:
    """Templated reply listing every result."""
    lines: list[str] = []
    for result in results:
        lines.extend(_success_lines(result) if result.success else _failure_lines(result))
    return "\n".join(lines) if lines else "Done."


def _with_draft(draft: str, rendered: str) -> str:
    return f"{draft}\n\n{rendered}" if draft else rendered


class ResponseSynthesizer:
    def __init__(self, max_tokens: int = 512) -> None:
        self._max_tokens = max_tokens

    async def synthesize(
        self, original_text: str, results: list[ActionResult], draft: str = "",
    ) -> str:
        """Write one reply for the turn.

        `draft` is the resolver's own reply, written before the actions ran.
        It is given to the LLM as a starting point and kept in front of the
        template when the LLM is unavailable.
        """
        if not results:
            return draft or "Done."
        user_message = (
            f'User asked: "{original_text}"\n\n'
            f"Action results:\n{json.dumps([r.to_dict() for r in results], indent=1, default=str)}"
        )
        if draft:
            user_message += f"\n\nDraft reply written before the actions ran:\n{draft}"
        try:
            reply = await complete(
                system=_SYSTEM_PROMPT, user_message=user_message, max_tokens=self._max_tokens,
            )
        except Exception as exc:
            logger.warning("Reply synthesis failed (%s), using template", exc)
            return _with_draft(draft, render_results(results))

        if not isinstance(reply, str) or not reply.strip():
            logger.warning("Reply synthesis returned nothing, using template")
            return _with_draft(draft, render_results(results))
        return reply.strip()
