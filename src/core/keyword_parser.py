"""
ChatCal Assistant: keyword intent parser.

Deterministic fallback used when the LLM is unavailable. Matches fixed
keyword sets for actions and event types, pulls out date, time, duration,
title, location and attendees with regexes and dateutil, scores the
extraction and produces at most one action when the score reaches
CONFIDENCE_THRESHOLD.

All date arithmetic is done on immutable date/datetime values anchored on
the context's `now`, in the user's timezone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from src.core.actions import ActionKind, RawAction
from src.core.executor import resolve_time_range
from src.core.intent import ConversationContext, Resolution

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.3
DEFAULT_TITLE = "New Event"
DEFAULT_START = time(9, 0)

ACTION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "create": ("schedule", "book", "create", "add", "set", "plan"),
    "view": ("show", "list", "view", "what", "when", "check"),
    "edit": ("change", "move", "reschedule", "update", "modify"),
    "delete": ("cancel", "remove", "delete", "clear"),
}

EVENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "meeting": ("meeting", "meet", "conference", "call", "discussion"),
    "appointment": ("appointment", "appt", "visit", "checkup"),
    "reminder": ("remind", "reminder", "alert", "notify"),
    "deadline": ("deadline", "due", "submit", "finish"),
    "personal": ("lunch", "dinner", "coffee", "workout", "gym"),
}

# Checked in order; the first word present wins.
DEFAULT_DURATIONS: tuple[tuple[str, int], ...] = (
    ("meeting", 60),
    ("appointment", 30),
    ("call", 30),
    ("lunch", 60),
    ("dinner", 90),
)
FALLBACK_DURATION = 60

TIME_OF_DAY: dict[str, time] = {
    "morning": time(9, 0),
    "afternoon": time(13, 0),
    "evening": time(18, 0),
    "night": time(22, 0),
}

_WEEKDAYS = {
    "monday": MO, "tuesday": TU, "wednesday": WE, "thursday": TH,
    "friday": FR, "saturday": SA, "sunday": SU,
}

_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)

_EXPLICIT_DATE_RES = (
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),
    re.compile(rf"\b(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?\b", re.I),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS})(?:,?\s+\d{{4}})?\b", re.I),
)
_YEAR_RE = re.compile(r"\d{4}")

_RELATIVE_DAY_RE = re.compile(r"\b(day after tomorrow|tomorrow|today|tonight)\b", re.I)
_WEEKDAY_RE = re.compile(r"\b(next\s+)?(" + "|".join(_WEEKDAYS) + r")\b", re.I)
_AMPM_RE = re.compile(r"\b(\d{1,2})(?::([0-5]\d))?\s*([ap])\.?m\.?(?=\W|$)", re.I)
_CLOCK_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
_NOON_RE = re.compile(r"\b(noon|midnight)\b", re.I)
_TOD_RE = re.compile(r"\b(?:in the\s+|this\s+)?(" + "|".join(TIME_OF_DAY) + r")\b", re.I)

_HOURS_RE = re.compile(r"\b(\d+(?:\.\d+)?)\s*(?:hours?|hrs?|h)\b", re.I)
_MINUTES_RE = re.compile(r"\b(\d+)\s*(?:minutes?|mins?|m)\b", re.I)

_LOCATION_RE = re.compile(r"\b(?:at|in)\s+([^,\n]+)", re.I)
_STOP_WORDS = "today|tomorrow|tonight|next|this|" + "|".join(_WEEKDAYS)
_LOCATION_STOP_RE = re.compile(
    rf"\s+(?:(?:on|at|from|for|with|{_STOP_WORDS})\b|\d).*$", re.I,
)
_ATTENDEES_RE = re.compile(r"\b(?:with|invite|include)\s+([^,\n]+)", re.I)
_ATTENDEES_STOP_RE = re.compile(
    rf"\s+(?:(?:at|on|in|from|for|{_STOP_WORDS})\b|\d).*$", re.I,
)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Stripped whole, before the single drop words.
_TITLE_DROP_PHRASES_RE = re.compile(r"\bset\s+up\b", re.I)

_TITLE_DROP_WORDS = tuple(w for words in ACTION_KEYWORDS.values() for w in words) + (
    "a", "an", "the", "for", "on", "at", "in", "my", "me", "please", "can", "you",
    "i", "to", "next", "this", "week", "month",
)


@dataclass
class KeywordExtraction:
    """What the keyword pass found in one message."""

    action: str = "unknown"
    event_type: str = "general"
    start: datetime | None = None
    date_only: bool = False
    duration_minutes: int = FALLBACK_DURATION
    title: str = DEFAULT_TITLE
    location: str | None = None
    attendees: list[str] = field(default_factory=list)
    range_name: str | None = None

    @property
    def is_valid(self) -> bool:
        if self.action == "unknown":
            return False
        if self.action == "create" and self.start is None:
            return False
        if self.action == "delete" and self.title == DEFAULT_TITLE:
            return False
        return True

    @property
    def confidence(self) -> float:
        score = 0.0
        if self.action != "unknown":
            score += 0.3
        if self.start is not None:
            score += 0.3
        if self.title != DEFAULT_TITLE:
            score += 0.2
        if self.event_type != "general":
            score += 0.1
        if self.location:
            score += 0.05
        if self.attendees:
            score += 0.05
        return min(round(score, 2), 1.0)


def _word_re(word: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(word)}\b", re.I)


def detect_action(text: str) -> str:
    """Action whose keyword appears earliest in the text."""
    best, best_pos = "unknown", len(text) + 1
    for action, words in ACTION_KEYWORDS.items():
        for word in words:
            m = _word_re(word).search(text)
            if m and m.start() < best_pos:
                best, best_pos = action, m.start()
    return best


def detect_event_type(text: str) -> str:
    for event_type, words in EVENT_KEYWORDS.items():
        if any(_word_re(w).search(text) for w in words):
            return event_type
    return "general"


def _explicit_date(text: str, today: date) -> tuple[date, str] | None:
    default = datetime.combine(today, time.min)
    for pattern in _EXPLICIT_DATE_RES:
        m = pattern.search(text)
        if not m:
            continue
        try:
            parsed = date_parser.parse(m.group(0), default=default).date()
        except (ValueError, OverflowError):
            continue
        if parsed < today and not _YEAR_RE.search(m.group(0)):
            parsed = parsed + relativedelta(years=1)
        return parsed, m.group(0)
    return None


def extract_date(text: str, today: date) -> date | None:
    m = _RELATIVE_DAY_RE.search(text)
    if m:
        word = m.group(1).lower()
        offset = {"day after tomorrow": 2, "tomorrow": 1}.get(word, 0)
        return today + timedelta(days=offset)

    m = _WEEKDAY_RE.search(text)
    if m:
        weekday = _WEEKDAYS[m.group(2).lower()]
        # Next occurrence strictly after today.
        return today + relativedelta(days=1, weekday=weekday(+1))

    found = _explicit_date(text, today)
    return found[0] if found else None


def extract_time(text: str) -> time | None:
    m = _AMPM_RE.search(text)
    if m:
        token = f"{m.group(1)}:{m.group(2) or '00'} {m.group(3)}m"
        try:
            return date_parser.parse(token).time()
        except (ValueError, OverflowError):
            pass

    m = _CLOCK_RE.search(text)
    if m:
        return time(int(m.group(1)), int(m.group(2)))

    m = _NOON_RE.search(text)
    if m:
        return time(12, 0) if m.group(1).lower() == "noon" else time(0, 0)

    if re.search(r"\btonight\b", text, re.I):
        return TIME_OF_DAY["evening"]

    m = _TOD_RE.search(text)
    if m:
        return TIME_OF_DAY[m.group(1).lower()]
    return None


def extract_duration(text: str) -> int:
    m = _HOURS_RE.search(text)
    if m:
        return max(1, round(float(m.group(1)) * 60))
    m = _MINUTES_RE.search(text)
    if m:
        return max(1, int(m.group(1)))
    for word, minutes in DEFAULT_DURATIONS:
        if _word_re(word).search(text):
            return minutes
    return FALLBACK_DURATION


def extract_location(text: str) -> str | None:
    for m in _LOCATION_RE.finditer(text):
        candidate = _LOCATION_STOP_RE.sub("", m.group(1)).strip(" .!?")
        bare = re.sub(r"^the\s+", "", candidate, flags=re.I).lower()
        if not candidate or candidate[0].isdigit():
            continue
        if bare in TIME_OF_DAY or bare in _WEEKDAYS or bare in ("noon", "midnight"):
            continue
        return candidate
    return None


def extract_attendees(text: str) -> list[str]:
    m = _ATTENDEES_RE.search(text)
    if not m:
        return []
    chunk = _ATTENDEES_STOP_RE.sub("", m.group(1)).strip(" .!?")
    names = re.split(r"\s+and\s+|\s*,\s*", chunk)
    return [n.strip() for n in names if n.strip()]


def extract_title(text: str, location: str | None) -> str:
    title = text
    if location:
        title = re.sub(rf"\b(?:at|in)\s+{re.escape(location)}", " ", title, flags=re.I)
    for pattern in (*_EXPLICIT_DATE_RES, _RELATIVE_DAY_RE, _WEEKDAY_RE, _AMPM_RE,
                    _CLOCK_RE, _NOON_RE, _TOD_RE, _HOURS_RE, _MINUTES_RE, _TITLE_DROP_PHRASES_RE):
        title = pattern.sub(" ", title)
    for word in _TITLE_DROP_WORDS:
        title = _word_re(word).sub(" ", title)
    title = re.sub(r"\s+", " ", title).strip(" .,!?-")
    if not title:
        return DEFAULT_TITLE
    return title[0].upper() + title[1:]


def _range_name(text: str) -> str | None:
    lowered = text.lower()
    for name, phrase in (("today", "today"), ("tomorrow", "tomorrow"),
                         ("this_week", "this week"), ("this_month", "this month")):
        if re.search(rf"\b{phrase}\b", lowered):
            return name
    return None


def extract(text: str, now: datetime) -> KeywordExtraction:
    """Run every extractor over `text`. `now` must be in the user's timezone."""
    today = now.date()
    result = KeywordExtraction(
        action=detect_action(text),
        event_type=detect_event_type(text),
        duration_minutes=extract_duration(text),
        location=extract_location(text),
        attendees=extract_attendees(text),
        range_name=_range_name(text),
    )
    result.title = extract_title(text, result.location)

    day = extract_date(text, today)
    clock = extract_time(text)
    if day is not None or clock is not None:
        result.date_only = clock is None
        result.start = datetime.combine(day or today, clock or DEFAULT_START, tzinfo=now.tzinfo)
    return result


_NOT_UNDERSTOOD = (
    "Sorry, I didn't understand that. Try something like "
    "\"schedule meeting tomorrow 2pm\" or \"show my events today\"."
)
_EDIT_HINT = (
    "I can't change events right now. You can delete the event and create it "
    "again, e.g. \"cancel dentist\" then \"book dentist friday 3pm\"."
)


class KeywordResolver:
    """IntentResolver that needs no network. Produces at most one action."""

    def __init__(self, threshold: float = CONFIDENCE_THRESHOLD) -> None:
        self._threshold = threshold

    async def resolve(self, text: str, context: ConversationContext) -> Resolution:
        tz = ZoneInfo(context.timezone)
        now = context.now.astimezone(tz)
        found = extract(text, now)
        confidence = found.confidence
        logger.info(
            "Keyword parse: action=%s type=%s start=%s confidence=%.2f",
            found.action, found.event_type, found.start, confidence,
        )

        action = None
        if found.is_valid and confidence >= self._threshold:
            action = self._to_action(found, now, tz)

        if action is None:
            reply = _EDIT_HINT if found.action == "edit" else _NOT_UNDERSTOOD
            return Resolution(reply_text=reply, source="fallback", confidence=confidence)
        return Resolution(actions=[action], source="fallback", confidence=confidence)

    def _to_action(self, found: KeywordExtraction, now: datetime, tz: ZoneInfo) -> RawAction | None:
        if found.action == "create":
            end = found.start + timedelta(minutes=found.duration_minutes)
            arguments: dict = {
                "title": found.title if found.title != DEFAULT_TITLE else found.event_type.title(),
                "startDateTime": found.start.isoformat(),
                "endDateTime": end.isoformat(),
            }
            if found.location:
                arguments["location"] = found.location
            emails = [a for a in found.attendees if _EMAIL_RE.match(a)]
            if emails:
                arguments["attendees"] = emails
            others = [a for a in found.attendees if not _EMAIL_RE.match(a)]
            if others:
                arguments["description"] = "With " + ", ".join(others)
            return RawAction(ActionKind.CREATE_EVENT.value, arguments)

        if found.action == "view":
            if found.start is not None and found.range_name not in ("this_week", "this_month"):
                start = datetime.combine(found.start.date(), time.min, tzinfo=tz)
                end = start + timedelta(days=1)
            else:
                start, end = resolve_time_range(found.range_name or "today", now, tz)
            return RawAction(
                ActionKind.LIST_EVENTS.value,
                {"startDate": start.isoformat(), "endDate": end.isoformat()},
            )

        if found.action == "delete":
            arguments = {"searchTitle": found.title}
            if found.range_name:
                arguments["timeRange"] = found.range_name
            return RawAction(ActionKind.DELETE_EVENT.value, arguments)

        # "edit" is recognised but never acted on.
        return None
