"""Tests for src.core.keyword_parser: the no-network fallback resolver."""

from datetime import date, datetime, time, timezone

import pytest

from src.core.intent import ConversationContext
from src.core.keyword_parser import (
    CONFIDENCE_THRESHOLD,
    DEFAULT_TITLE,
    KeywordExtraction,
    KeywordResolver,
    detect_action,
    detect_event_type,
    extract,
    extract_attendees,
    extract_date,
    extract_duration,
    extract_location,
    extract_time,
    extract_title,
)

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)  # Wednesday
TODAY = NOW.date()


def _context():
    return ConversationContext(now=NOW, timezone="UTC")


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


class TestDetectAction:
    @pytest.mark.parametrize("text, expected", [
        ("Schedule a meeting", "create"),
        ("book dentist", "create"),
        ("show my events", "view"),
        ("What's on today", "view"),
        ("reschedule the standup", "edit"),
        ("cancel lunch", "delete"),
        ("hello there", "unknown"),
    ])
    def test_detects(self, text, expected):
        assert detect_action(text) == expected

    def test_earliest_keyword_wins(self):
        assert detect_action("cancel the meeting I booked and show me") == "delete"

    def test_whole_words_only(self):
        assert detect_action("my settings") == "unknown"


class TestDetectEventType:
    def test_types(self):
        assert detect_event_type("team meeting") == "meeting"
        assert detect_event_type("doctor appointment") == "appointment"
        assert detect_event_type("gym session") == "personal"
        assert detect_event_type("something") == "general"


class TestExtractDate:
    def test_relative_days(self):
        assert extract_date("today", TODAY) == TODAY
        assert extract_date("tomorrow", TODAY) == date(2026, 3, 12)
        assert extract_date("the day after tomorrow", TODAY) == date(2026, 3, 13)

    def test_weekday_is_next_occurrence(self):
        assert extract_date("on friday", TODAY) == date(2026, 3, 13)
        assert extract_date("next monday", TODAY) == date(2026, 3, 16)

    def test_same_weekday_means_next_week(self):
        assert extract_date("wednesday", TODAY) == date(2026, 3, 18)

    def test_iso_date(self):
        assert extract_date("on 2026-04-01", TODAY) == date(2026, 4, 1)

    def test_month_name_in_past_rolls_to_next_year(self):
        assert extract_date("on March 5", TODAY) == date(2027, 3, 5)
        assert extract_date("on March 20", TODAY) == date(2026, 3, 20)

    def test_none(self):
        assert extract_date("sometime", TODAY) is None


class TestExtractTime:
    @pytest.mark.parametrize("text, expected", [
        ("at 2pm", time(14, 0)),
        ("at 9:30 am", time(9, 30)),
        ("12am", time(0, 0)),
        ("at 14:30", time(14, 30)),
        ("at noon", time(12, 0)),
        ("tonight", time(18, 0)),
        ("in the morning", time(9, 0)),
        ("this afternoon", time(13, 0)),
    ])
    def test_times(self, text, expected):
        assert extract_time(text) == expected

    def test_none(self):
        assert extract_time("sometime") is None


class TestExtractDuration:
    @pytest.mark.parametrize("text, expected", [
        ("for 2 hours", 120),
        ("1.5h workshop", 90),
        ("30 min call", 30),
        ("dinner", 90),
        ("meeting", 60),
        ("something", 60),
    ])
    def test_durations(self, text, expected):
        assert extract_duration(text) == expected


class TestExtractLocationAndAttendees:
    def test_location_stops_at_time_words(self):
        assert extract_location("lunch at Cafe Nero tomorrow") == "Cafe Nero"

    def test_time_is_not_a_location(self):
        assert extract_location("dinner at 7pm") is None
        assert extract_location("gym in the morning") is None

    def test_attendees(self):
        assert extract_attendees("lunch with John and Mary at noon") == ["John", "Mary"]
        assert extract_attendees("call with Ana Friday 1pm") == ["Ana"]
        assert extract_attendees("lunch alone") == []


class TestExtractTitle:
    def test_set_up_removed_as_one_phrase(self):
        assert extract_title("set up call with Anna monday 9am", None) == "Call with Anna"
        assert extract_title("Set  up a meeting", None) == "Meeting"

    def test_plain_set_still_dropped(self):
        assert extract_title("set dentist tomorrow 3pm", None) == "Dentist"

    def test_location_removed(self):
        assert extract_title("book lunch at Cafe Nero friday", "Cafe Nero") == "Lunch"

    def test_nothing_left_gives_default(self):
        assert extract_title("schedule tomorrow at 2pm", None) == DEFAULT_TITLE


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


class TestConfidence:
    def test_weights(self):
        assert KeywordExtraction().confidence == 0.0
        assert KeywordExtraction(action="create").confidence == 0.3
        full = KeywordExtraction(
            action="create", event_type="meeting", start=NOW, title="Sync",
            location="HQ", attendees=["a"],
        )
        assert full.confidence == 1.0

    def test_validity(self):
        assert not KeywordExtraction(action="create").is_valid
        assert KeywordExtraction(action="create", start=NOW).is_valid
        assert not KeywordExtraction(action="delete").is_valid
        assert KeywordExtraction(action="delete", title="Dentist").is_valid

    def test_extract_full_message(self):
        found = extract("Schedule meeting tomorrow 2pm", NOW)
        assert found.action == "create"
        assert found.event_type == "meeting"
        assert found.start == datetime(2026, 3, 12, 14, 0, tzinfo=timezone.utc)
        assert found.title == "Meeting"
        assert found.confidence >= CONFIDENCE_THRESHOLD


# ---------------------------------------------------------------------------
# KeywordResolver
# ---------------------------------------------------------------------------


class TestKeywordResolver:
    @pytest.mark.asyncio
    async def test_create(self):
        resolution = await KeywordResolver().resolve("Schedule meeting tomorrow 2pm", _context())
        assert resolution.source == "fallback"
        assert len(resolution.actions) == 1
        action = resolution.actions[0]
        assert action.name == "CreateEvent"
        assert action.arguments["title"] == "Meeting"
        assert action.arguments["startDateTime"] == "2026-03-12T14:00:00+00:00"
        assert action.arguments["endDateTime"] == "2026-03-12T15:00:00+00:00"

    @pytest.mark.asyncio
    async def test_create_with_location_and_people(self):
        resolution = await KeywordResolver().resolve(
            "Book lunch with John Friday 1pm at Cafe Nero", _context(),
        )
        args = resolution.actions[0].arguments
        assert args["location"] == "Cafe Nero"
        assert args["description"] == "With John"
        assert args["startDateTime"] == "2026-03-13T13:00:00+00:00"
        assert "attendees" not in args

    @pytest.mark.asyncio
    async def test_view_today(self):
        resolution = await KeywordResolver().resolve("What's on my calendar today?", _context())
        action = resolution.actions[0]
        assert action.name == "ListEvents"
        assert action.arguments == {
            "startDate": "2026-03-11T00:00:00+00:00",
            "endDate": "2026-03-12T00:00:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_view_this_week(self):
        resolution = await KeywordResolver().resolve("show my events this week", _context())
        args = resolution.actions[0].arguments
        assert args["startDate"].startswith("2026-03-08")
        assert args["endDate"].startswith("2026-03-15")

    @pytest.mark.asyncio
    async def test_delete_by_title(self):
        resolution = await KeywordResolver().resolve("Cancel my dentist appointment tomorrow", _context())
        action = resolution.actions[0]
        assert action.name == "DeleteEvent"
        assert action.arguments == {"searchTitle": "Dentist appointment", "timeRange": "tomorrow"}

    @pytest.mark.asyncio
    async def test_edit_is_not_acted_on(self):
        resolution = await KeywordResolver().resolve("move my meeting to 3pm", _context())
        assert resolution.actions == []
        assert "can't change events" in resolution.reply_text

    @pytest.mark.asyncio
    async def test_create_without_time_not_understood(self):
        resolution = await KeywordResolver().resolve("schedule something", _context())
        assert resolution.actions == []
        assert "didn't understand" in resolution.reply_text

    @pytest.mark.asyncio
    async def test_gibberish(self):
        resolution = await KeywordResolver().resolve("blorp", _context())
        assert resolution.actions == []
        assert resolution.confidence < CONFIDENCE_THRESHOLD

    @pytest.mark.asyncio
    async def test_threshold_is_respected(self):
        resolution = await KeywordResolver(threshold=1.0).resolve(
            "Schedule meeting tomorrow 2pm", _context(),
        )
        assert resolution.actions == []

    @pytest.mark.asyncio
    async def test_output_passes_validation(self):
        from src.core.validator import ParameterValidator

        validator = ParameterValidator("UTC")
        for text in (
            "Schedule meeting tomorrow 2pm",
            "Book lunch with John Friday 1pm at Cafe Nero",
            "show my events this week",
            "Cancel my dentist appointment tomorrow",
        ):
            resolution = await KeywordResolver().resolve(text, _context())
            for raw in resolution.actions:
                validator.validate_raw(raw)


def test_default_title_constant():
    assert DEFAULT_TITLE == "New Event"
