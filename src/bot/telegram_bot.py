"""
ChatCal Assistant: Telegram Bot.

Telegram is the chat transport: every message is handed to the
ActionService and the structured response is rendered back. Commands
cover the calendar connection lifecycle (/auth, /connect, /status,
/logout, /revoke) and per-user defaults stored as preferences
(/reminder, /workday).

Security: when ALLOWED_USER_IDS is set, everyone else is silently ignored.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.data.models import PREF_REMINDER_MINUTES, PREF_WORKDAY_END, PREF_WORKDAY_START

if TYPE_CHECKING:
    from src.core.action_service import ActionService
    from src.core.auth_flow import AuthorizationService
    from src.core.session_manager import SessionManager
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

AUTH_PHRASES = (
    "connect google",
    "connect calendar",
    "link google",
    "link calendar",
    "authenticate",
    "authorize",
    "login google",
    "sign in google",
    "google auth",
    "calendar auth",
    "connect my calendar",
    "link my calendar",
)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from users outside the allowlist.

    An empty ALLOWED_USER_IDS lets everyone in. Strangers get no response,
    so the bot does not reveal its existence to them.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        allowed = settings.ALLOWED_USER_IDS
        if user is None or (allowed and user.id not in allowed):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


def _identity(update: Update) -> str:
    return str(update.effective_chat.id)


def _display_name(update: Update) -> str:
    user = update.effective_user
    return user.full_name if user else ""


def is_auth_phrase(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in AUTH_PHRASES)


# ---------------------------------------------------------------------------
# Static texts
# ---------------------------------------------------------------------------

WELCOME_TEXT = (
    "🤖 Welcome to ChatCal Assistant!\n\n"
    "I help you manage your Google Calendar through simple chat messages.\n\n"
    "To get started:\n"
    "1. Type /auth to connect your Google Calendar\n"
    "2. Then just write what you need:\n"
    "   • \"Schedule meeting tomorrow 2pm\"\n"
    "   • \"What's on my calendar today?\"\n"
    "   • \"Cancel my dentist appointment\"\n"
    "   • \"Find me a free hour on Friday\"\n\n"
    "Type /help for more commands and examples."
)

HELP_TEXT = (
    "📋 Available commands:\n\n"
    "/start: welcome message\n"
    "/auth: connect your Google Calendar\n"
    "/connect <address>: finish connecting, with the address Google sent you to\n"
    "/status: show your connection status\n"
    "/logout: sign out and forget your credentials\n"
    "/revoke: revoke the bot's access at Google\n"
    "/reminder <minutes>: default reminder for new events\n"
    "/workday <start> <end>: working hours for free-time suggestions\n"
    "/help: show this message\n\n"
    "📅 Examples:\n"
    "• \"Book lunch with John Friday 1pm at Cafe Nero\"\n"
    "• \"Show me tomorrow's schedule\"\n"
    "• \"Move my 3pm meeting to 4pm\"\n"
    "• \"Delete the standup this week\"\n"
    "• \"When am I free on Monday for 30 minutes?\""
)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start: register the chat and send the welcome message."""
    sessions: SessionManager = context.bot_data["sessions"]
    await sessions.ensure_session(_identity(update), _display_name(update))
    await update.message.reply_text(WELCOME_TEXT)


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help: list available commands."""
    await update.message.reply_text(HELP_TEXT)


async def _send_auth_link(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    auth: AuthorizationService = context.bot_data["auth"]
    result = auth.start(_identity(update), _display_name(update))
    if not result.success:
        await update.message.reply_text(result.message)
        return
    await update.message.reply_text(f"🔐 {result.message}\n\n{result.url}")


@authorized_only
async def cmd_auth(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /auth: start the Google consent flow."""
    await _send_auth_link(update, context)


@authorized_only
async def cmd_connect(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /connect <redirect-url>: finish the consent flow."""
    if not context.args:
        await update.message.reply_text("Usage: /connect <address from your browser>")
        return
    auth: AuthorizationService = context.bot_data["auth"]
    result = await auth.complete(_identity(update), " ".join(context.args))
    await update.message.reply_text(result.message)


@authorized_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status: show connection and session status."""
    auth: AuthorizationService = context.bot_data["auth"]
    sessions: SessionManager = context.bot_data["sessions"]
    identity = _identity(update)

    user = auth.status(identity)
    if user is None:
        await update.message.reply_text("I don't know you yet. Send /start to begin.")
        return

    lines = [f"📊 Calendar: {user.auth_status.value.replace('_', ' ')}"]
    session = sessions.active_session(identity)
    if session is not None:
        lines.append(f"Session active until {session.expires_at:%Y-%m-%d %H:%M} UTC")
    if not user.is_authenticated:
        lines.append("Send /auth to connect your Google Calendar.")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /logout: forget stored credentials."""
    auth: AuthorizationService = context.bot_data["auth"]
    result = auth.logout(_identity(update))
    await update.message.reply_text(result.message)


@authorized_only
async def cmd_revoke(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /revoke: revoke access at Google and forget credentials."""
    auth: AuthorizationService = context.bot_data["auth"]
    result = await auth.revoke(_identity(update))
    await update.message.reply_text(result.message)


@authorized_only
async def cmd_reminder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminder <minutes|default>: set the default reminder for new events."""
    sessions: SessionManager = context.bot_data["sessions"]
    arg = context.args[0].lower() if context.args else ""

    if arg == "default":
        await sessions.update_preferences(
            _identity(update), {PREF_REMINDER_MINUTES: None}, _display_name(update),
        )
        await update.message.reply_text(
            f"⏰ Reminders back to {settings.DEFAULT_REMINDER_MINUTES} minutes before each event.",
        )
        return
    if not arg.isdigit() or int(arg) <= 0:
        await update.message.reply_text("Usage: /reminder <minutes> (or /reminder default)")
        return

    minutes = int(arg)
    await sessions.update_preferences(
        _identity(update), {PREF_REMINDER_MINUTES: minutes}, _display_name(update),
    )
    await update.message.reply_text(f"⏰ New events will remind you {minutes} minutes before.")


@authorized_only
async def cmd_workday(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /workday <HH:MM> <HH:MM> | default: working hours for free-slot search."""
    sessions: SessionManager = context.bot_data["sessions"]
    args = context.args or []

    if [a.lower() for a in args] == ["default"]:
        await sessions.update_preferences(
            _identity(update),
            {PREF_WORKDAY_START: None, PREF_WORKDAY_END: None},
            _display_name(update),
        )
        await update.message.reply_text(
            f"🕘 Working hours back to {settings.WORKDAY_START}-{settings.WORKDAY_END}.",
        )
        return
    if len(args) != 2 or not all(_HHMM_RE.match(a) for a in args) or args[0] >= args[1]:
        await update.message.reply_text(
            "Usage: /workday <start> <end>, e.g. /workday 08:30 16:00 (or /workday default)",
        )
        return

    start, end = args
    await sessions.update_preferences(
        _identity(update),
        {PREF_WORKDAY_START: start, PREF_WORKDAY_END: end},
        _display_name(update),
    )
    await update.message.reply_text(f"🕘 I'll look for free time between {start} and {end}.")


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages: run one turn through the action service."""
    text = update.message.text or ""
    if is_auth_phrase(text):
        await _send_auth_link(update, context)
        return

    service: ActionService = context.bot_data["service"]
    notifier: NotificationPort = context.bot_data["notifier"]
    identity = _identity(update)

    try:
        response = await service.handle_message(identity, text, _display_name(update))
    except Exception as exc:
        logger.exception("Turn failed for %s: %s", identity, exc)
        await notifier.send_message(
            identity, "Sorry, something went wrong while handling your message. Please try again.",
        )
        return

    if response.new_user:
        await notifier.send_message(identity, WELCOME_TEXT)
    await notifier.send_message(identity, response.message)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def _build_services(app: Application) -> None:
    """Create the process-wide state objects and store them in bot_data."""
    from src.adapters.calendar_factory import create_calendar_adapter
    from src.adapters.telegram_notifier import TelegramNotifier
    from src.core.action_service import ActionService
    from src.core.auth_flow import AuthorizationService, PendingAuthSweeper
    from src.core.authorization import AuthorizationGate
    from src.core.credentials import CredentialManager
    from src.core.executor import ActionExecutor
    from src.core.intent import FallbackIntentResolver
    from src.core.keyword_parser import KeywordResolver
    from src.core.locks import IdentityLocks
    from src.core.parser import ReasoningResolver
    from src.core.session_manager import SessionManager
    from src.core.synthesizer import ResponseSynthesizer
    from src.core.validator import ParameterValidator
    from src.data.db import EventMirrorDB, PendingAuthDB, SessionDB, UserDB
    from src.integrations.google_auth import GoogleIdentityProvider

    users = UserDB()
    pending = PendingAuthDB()
    mirror = EventMirrorDB()
    locks = IdentityLocks()
    identity_provider = GoogleIdentityProvider(
        settings.GOOGLE_CLIENT_SECRETS_PATH, settings.GOOGLE_REDIRECT_URI,
    )

    sessions = SessionManager(
        users, SessionDB(), locks, ttl=timedelta(hours=settings.SESSION_TTL_HOURS),
    )
    executor = ActionExecutor(
        CredentialManager(users, identity_provider, locks, create_calendar_adapter),
        mirror,
        locks,
        tz=settings.TIMEZONE,
        workday_start=settings.WORKDAY_START,
        workday_end=settings.WORKDAY_END,
        default_reminder_minutes=settings.DEFAULT_REMINDER_MINUTES,
    )

    app.bot_data["sessions"] = sessions
    app.bot_data["service"] = ActionService(
        sessions=sessions,
        resolver=FallbackIntentResolver(ReasoningResolver(), KeywordResolver()),
        validator=ParameterValidator(settings.TIMEZONE),
        gate=AuthorizationGate(),
        executor=executor,
        synthesizer=ResponseSynthesizer(),
        mirror=mirror,
        timezone=settings.TIMEZONE,
    )
    app.bot_data["auth"] = AuthorizationService(
        users, pending, identity_provider,
        link_ttl=timedelta(minutes=settings.AUTH_LINK_TTL_MINUTES),
    )
    app.bot_data["notifier"] = TelegramNotifier(app.bot)
    app.bot_data["sweeper"] = PendingAuthSweeper(pending)


def build_app() -> Application:
    """Build and configure the Telegram Application with all handlers."""
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .concurrent_updates(True)
        .build()
    )
    _build_services(app)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("auth", cmd_auth))
    app.add_handler(CommandHandler("connect", cmd_connect))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("logout", cmd_logout))
    app.add_handler(CommandHandler("revoke", cmd_revoke))
    app.add_handler(CommandHandler("reminder", cmd_reminder))
    app.add_handler(CommandHandler("workday", cmd_workday))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    _setup_auth_sweep(app)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_auth_sweep(app: Application) -> None:
    """Register the periodic sweep of expired authorization links."""
    interval = timedelta(minutes=settings.AUTH_SWEEP_INTERVAL_MINUTES)
    app.job_queue.run_repeating(
        app.bot_data["sweeper"],
        interval=interval,
        first=interval,
        name="pending_auth_sweep",
    )
    logger.info("Authorization link sweep every %d minute(s)", settings.AUTH_SWEEP_INTERVAL_MINUTES)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting ChatCal Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
