"""
ChatCal Assistant: LLM intent parser.

Reasoning path of intent resolution: sends the user's message, the action
catalogue and the conversation context to the configured LLM and reads
back either a conversational reply, a list of calendar actions, or both.

Anything unusable (provider error, empty answer, bad JSON, wrong shape)
raises ResolutionUnavailable so the keyword fallback can take over.
"""

from __future__ import annotations

import json
import logging

from src.core.actions import RawAction, tool_schemas
from src.core.intent import ConversationContext, Resolution, ResolutionUnavailable
from src.core.llm import complete

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are a helpful productivity assistant that manages the user's Google Calendar \
through a chat conversation.

Current date and time: {now} (timezone: {timezone})
Calendar connected: {connected}

You can perform these calendar actions. Their arguments are described by the
JSON schemas below; use the exact argument names shown:
{tools}

**ALWAYS answer with a single JSON object** of this shape:
{{"reply": "text for the user", "actions": [{{"kind": "ActionName", "arguments": {{...}}}}]}}

**Rules:**
- Resolve relative dates and times ("tomorrow", "next Monday", "2pm") against the current date and time above.
- Datetimes are ISO-8601. Use the user's timezone when the user does not name one.
- Default event duration is 1 hour if not specified.
- One message may ask for several actions; list all of them in order.
- For productivity advice or small talk, answer in "reply" and leave "actions" empty.
- If the request is ambiguous, ask for clarification in "reply" and leave "actions" empty.
- If the calendar is not connected and the user wants calendar features, still return the actions; the system will guide them to /auth.
- Return ONLY the JSON object. No markdown, no explanation, no extra text.
"""


def _build_system_prompt(context: ConversationContext) -> str:
    return _SYSTEM_PROMPT.format(
        now=context.now.isoformat(),
        timezone=context.timezone,
        connected="yes" if context.auth_status == "authenticated" else "no",
        tools=json.dumps(tool_schemas(), indent=1),
    )


def _build_user_message(text: str, context: ConversationContext) -> str:
    parts = []
    if context.upcoming_events:
        parts.append(
            "Upcoming calendar events:\n" + json.dumps(list(context.upcoming_events), indent=1)
        )
    if context.preferences:
        parts.append(f"User preferences: {json.dumps(context.preferences)}")
    parts.append(f'User message: "{text}"')
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Response Cleaning Functions
# ---------------------------------------------------------------------------

def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from LLM's raw response."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


# ---------------------------------------------------------------------------
# Error Handling Functions
# ---------------------------------------------------------------------------

def _handle_json_decode_error(exc: json.JSONDecodeError, raw_text: str) -> ResolutionUnavailable:
    """Log a JSON decoding error from the LLM response."""
    logger.error("Failed to parse LLM response as JSON: %s, raw: '%s'", exc, raw_text[:200])
    return ResolutionUnavailable(f"malformed JSON: {exc}")


def _handle_bad_shape(data: object) -> ResolutionUnavailable:
    """Log a response that parsed but is not the agreed shape."""
    logger.warning("LLM returned unexpected type: %s", type(data).__name__)
    return ResolutionUnavailable(f"unexpected response type {type(data).__name__}")


def _handle_provider_error(exc: Exception) -> ResolutionUnavailable:
    """Log any error raised by the LLM provider call."""
    logger.error("LLM provider call failed: %s", exc)
    return ResolutionUnavailable(f"provider error: {exc}")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _to_raw_action(item: object) -> RawAction:
    if not isinstance(item, dict):
        raise _handle_bad_shape(item)
    name = item.get("kind") or item.get("name")
    arguments = item.get("arguments", {})
    if not isinstance(name, str) or not name:
        raise _handle_bad_shape(item)
    if arguments is None:
        arguments = {}
    # Left to the validator to reject non-object arguments, with a field issue.
    return RawAction(name=name, arguments=arguments)


def parse_reply(raw_text: str) -> Resolution:
    """Turn the LLM's raw text into a Resolution, or raise ResolutionUnavailable."""
    cleaned = _clean_llm_response(raw_text)
    if not cleaned:
        raise ResolutionUnavailable("empty response")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise _handle_json_decode_error(exc, cleaned) from exc

    # A bare array is accepted as actions-only.
    if isinstance(data, list):
        data = {"reply": "", "actions": data}
    if not isinstance(data, dict):
        raise _handle_bad_shape(data)

    reply = data.get("reply") or ""
    actions = data.get("actions") or []
    if not isinstance(reply, str) or not isinstance(actions, list):
        raise _handle_bad_shape(data)

    resolution = Resolution(
        reply_text=reply.strip(),
        actions=[_to_raw_action(item) for item in actions],
        source="reasoning",
    )
    if not resolution.reply_text and not resolution.actions:
        raise ResolutionUnavailable("neither reply nor actions")
    return resolution


class ReasoningResolver:
    """IntentResolver backed by the configured LLM provider."""

    def __init__(self, max_tokens: int = 1024) -> None:
        self._max_tokens = max_tokens

    async def resolve(self, text: str, context: ConversationContext) -> Resolution:
        try:
            raw_text = await complete(
                system=_build_system_prompt(context),
                user_message=_build_user_message(text, context),
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            raise _handle_provider_error(exc) from exc

        logger.debug("LLM raw response: %s", raw_text)
        if not isinstance(raw_text, str):
            raise ResolutionUnavailable("provider returned no text")

        resolution = parse_reply(raw_text)
        logger.info(
            "Resolved message into %d action(s): %s",
            len(resolution.actions), [a.name for a in resolution.actions],
        )
        return resolution
