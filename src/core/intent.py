"""
ChatCal Assistant: intent resolution contract.

Both the reasoning (LLM) path and the keyword path implement one
IntentResolver protocol and return a Resolution. FallbackIntentResolver
picks between them by availability, so the rest of the turn never knows
which one ran.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from src.core.actions import RawAction

logger = logging.getLogger(__name__)


class ResolutionUnavailable(Exception):
    """The reasoning service failed or answered in an unusable shape."""


@dataclass(frozen=True)
class ConversationContext:
    """Everything a resolver may look at besides the message itself."""

    now: datetime
    timezone: str = "UTC"
    auth_status: str = "pending"
    display_name: str = ""
    preferences: dict = field(default_factory=dict)
    upcoming_events: tuple[dict, ...] = ()


@dataclass
class Resolution:
    reply_text: str = ""
    actions: list[RawAction] = field(default_factory=list)
    source: str = "reasoning"          # "reasoning" | "fallback"
    confidence: float = 1.0

    @property
    def has_actions(self) -> bool:
        return bool(self.actions)


class IntentResolver(Protocol):
    async def resolve(self, text: str, context: ConversationContext) -> Resolution: ...


class FallbackIntentResolver:
    """Try `primary`; on ResolutionUnavailable run `fallback` for the whole message."""

    def __init__(self, primary: IntentResolver, fallback: IntentResolver) -> None:
        self._primary = primary
        self._fallback = fallback

    async def resolve(self, text: str, context: ConversationContext) -> Resolution:
        try:
            return await self._primary.resolve(text, context)
        except ResolutionUnavailable as exc:
            logger.warning("Reasoning service unavailable (%s), using keyword fallback", exc)
            return await self._fallback.resolve(text, context)
