"""
ChatCal Assistant: centralized configuration.

Reads .env plus the process environment into one Settings object. The bot
refuses to start without a Telegram token and an LLM key; everything else
(OAuth client, session and auth-link lifetimes, working hours) has a default.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Runtime settings; string env values are coerced by the validators below."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Google OAuth client (web or installed app secrets file)
    GOOGLE_CLIENT_SECRETS_PATH: str = "credentials.json"
    GOOGLE_REDIRECT_URI: str = "http://localhost:8080/auth/google/callback"

    # Calendar provider: only "google" is wired
    CALENDAR_PROVIDER: str = "google"

    # SQLite
    DATABASE_PATH: str = "data/chatcal.db"

    # Security: empty list lets everyone in
    ALLOWED_USER_IDS: list[int] = []

    TIMEZONE: str = "UTC"

    # Sessions and authorization links
    SESSION_TTL_HOURS: int = 24
    AUTH_LINK_TTL_MINUTES: int = 10
    AUTH_SWEEP_INTERVAL_MINUTES: int = 5

    # Slot suggestions
    WORKDAY_START: str = "09:00"
    WORKDAY_END: str = "17:00"

    DEFAULT_REMINDER_MINUTES: int = 15

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "SESSION_TTL_HOURS",
        "AUTH_LINK_TTL_MINUTES",
        "AUTH_SWEEP_INTERVAL_MINUTES",
        "DEFAULT_REMINDER_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("WORKDAY_START", "WORKDAY_END")
    @classmethod
    def check_hhmm(cls, v: str) -> str:
        hour, _, minute = v.partition(":")
        if not (hour.isdigit() and minute.isdigit() and int(hour) < 24 and int(minute) < 60):
            raise ValueError(f"Expected HH:MM, got {v!r}")
        return v


def _load_settings() -> Settings:
    """Build Settings, exiting early when a required secret is absent."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        GOOGLE_CLIENT_SECRETS_PATH=os.getenv("GOOGLE_CLIENT_SECRETS_PATH", "credentials.json"),
        GOOGLE_REDIRECT_URI=os.getenv(
            "GOOGLE_REDIRECT_URI", "http://localhost:8080/auth/google/callback",
        ),
        CALENDAR_PROVIDER=os.getenv("CALENDAR_PROVIDER", "google"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/chatcal.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        SESSION_TTL_HOURS=os.getenv("SESSION_TTL_HOURS", "24"),
        AUTH_LINK_TTL_MINUTES=os.getenv("AUTH_LINK_TTL_MINUTES", "10"),
        AUTH_SWEEP_INTERVAL_MINUTES=os.getenv("AUTH_SWEEP_INTERVAL_MINUTES", "5"),
        WORKDAY_START=os.getenv("WORKDAY_START", "09:00"),
        WORKDAY_END=os.getenv("WORKDAY_END", "17:00"),
        DEFAULT_REMINDER_MINUTES=os.getenv("DEFAULT_REMINDER_MINUTES", "15"),
    )


settings = _load_settings()
