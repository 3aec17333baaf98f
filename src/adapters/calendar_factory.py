"""Calendar adapter factory: creates the right adapter based on config."""

from __future__ import annotations

from src.config import settings
from src.ports.calendar_port import CalendarPort


def create_calendar_adapter(credentials_json: str) -> CalendarPort:
    """Return the calendar adapter matching CALENDAR_PROVIDER setting.

    Args:
        credentials_json: Per-user credential bundle, already fresh.
    """
    provider = settings.CALENDAR_PROVIDER.lower()

    if provider == "google":
        from src.adapters.google_calendar import GoogleCalendarAdapter
        from src.integrations.google_auth import build_calendar_service

        return GoogleCalendarAdapter(
            build_calendar_service(credentials_json), tz_name=settings.TIMEZONE,
        )

    raise ValueError(f"Unknown CALENDAR_PROVIDER: {provider!r}")
