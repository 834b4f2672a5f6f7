"""
DayLog — Telegram Bot.

Telegram is the user interface for DayLog: pick a task, start and stop the
timer, log manual time, review entries and statistics.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from src.config import SUPPORTED_TIMEZONES, settings
from src.core.errors import DayLogError, NameRequiredError, NotFoundError, ValidationError
from src.core.reporting import is_supported_timezone, reporting_date, utc_now
from src.core.stats import Period, aggregate_task_time
from src.core.timer import TimerState
from src.core.visibility import admin_tasks, is_task_visible, selectable_groups

if TYPE_CHECKING:
    from src.core.sessions import SessionRegistry, UserSession
    from src.core.sync_worker import LedgerSyncWorker
    from src.data.models import Task
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, Any]],
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return None  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _registry(context: ContextTypes.DEFAULT_TYPE) -> SessionRegistry:
    return context.bot_data["sessions"]


async def _session(update: Update, context: ContextTypes.DEFAULT_TYPE) -> UserSession:
    return await _registry(context).get(update.effective_user.id)


def _parse_local(day: str, clock: str, tz_name: str) -> datetime:
    """Parse "YYYY-MM-DD" + "HH:MM" in the user's timezone."""
    naive = datetime.strptime(f"{day} {clock}", "%Y-%m-%d %H:%M")
    return naive.replace(tzinfo=ZoneInfo(tz_name))


def _format_local(instant: datetime | None, tz_name: str) -> str:
    if instant is None:
        return "…"
    return instant.astimezone(ZoneInfo(tz_name)).strftime("%H:%M")


_NAME_REQUIRED_MSG = "Please set your display name first: /name <your name>"
_TASK_GONE_MSG = "That task is no longer available to you. Pick another with /tasks."


def _visible_task(registry: SessionRegistry, user_id: int, task_id: str | None) -> Task | None:
    """The task if it exists and `user_id` may track time on it."""
    if task_id is None:
        return None
    task = registry.task_db.get_task(task_id)
    if task is None or not is_task_visible(task, registry.viewer_for(user_id)):
        return None
    return task


async def _check_selection(update: Update, registry: SessionRegistry, task_id: str | None) -> bool:
    """Drop a selection that is no longer visible and tell the user.

    An empty selection passes; the store reports it as a validation error.
    """
    user_id = update.effective_user.id
    if task_id is None or _visible_task(registry, user_id, task_id) is not None:
        return True
    registry.user_db.set_selected_task(str(user_id), None)
    await update.message.reply_text(_TASK_GONE_MSG)
    return False


# ---------------------------------------------------------------------------
# Command handlers: profile
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message and registration."""
    profile = _registry(context).profile(update.effective_user.id)
    greeting = f", {profile.display_name}" if profile.display_name else ""
    await update.message.reply_text(
        f"Welcome to *DayLog*{greeting}!\n\n"
        "I track the time you spend on your tasks:\n"
        "• /name and /email set up your profile\n"
        "• /tasks picks a task, /go starts the timer, /stop ends it\n"
        "• /log adds time you forgot to track\n"
        "• /stats shows where your time went\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/name <name> — Set your display name\n"
        "/email <address> — Link your tracker email\n"
        "/timezone [zone] — Show or set your reporting timezone\n"
        "/tasks — Pick the task to time\n"
        "/go — Start the timer on the selected task\n"
        "/stop — Stop the timer and add a comment\n"
        "/status — Show the running timer\n"
        "/log <date> <HH:MM> <date> <HH:MM> <comment> — Add a manual entry\n"
        "/entries — Today's entries\n"
        "/edit <id> <date> <HH:MM> <date> <HH:MM> [comment] — Correct an entry\n"
        "/delete <id> — Delete an entry\n"
        "/stats [period] — Time per task\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_name(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /name <display name>."""
    name = " ".join(context.args or []).strip()
    if not name:
        await update.message.reply_text("Usage: /name <your display name>")
        return
    registry = _registry(context)
    registry.profile(update.effective_user.id)
    registry.user_db.set_display_name(str(update.effective_user.id), name)
    await update.message.reply_text(f"✅ Display name set to {name}")


@authorized_only
async def cmd_email(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /email <address> — the identity used for task visibility."""
    args = context.args or []
    if len(args) != 1 or "@" not in args[0]:
        await update.message.reply_text("Usage: /email <address>")
        return
    registry = _registry(context)
    registry.profile(update.effective_user.id)
    registry.user_db.set_email(str(update.effective_user.id), args[0])
    await update.message.reply_text(f"✅ Linked to {args[0].strip().lower()}")


@authorized_only
async def cmd_timezone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /timezone [zone]."""
    registry = _registry(context)
    user_id = update.effective_user.id
    args = context.args or []
    if not args:
        await update.message.reply_text(
            f"Your reporting timezone is {registry.timezone_for(user_id)}.\n"
            f"Available: {', '.join(SUPPORTED_TIMEZONES)}"
        )
        return

    tz_name = args[0].strip()
    if not is_supported_timezone(tz_name):
        await update.message.reply_text(
            f"Unsupported timezone. Choose one of: {', '.join(SUPPORTED_TIMEZONES)}"
        )
        return
    registry.set_timezone(user_id, tz_name)
    await update.message.reply_text(f"✅ Reporting timezone set to {tz_name}")


# ---------------------------------------------------------------------------
# Task selection
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks — visible tasks grouped by team, as buttons."""
    registry = _registry(context)
    viewer = registry.viewer_for(update.effective_user.id)
    groups = selectable_groups(registry.task_db.list_tasks(), viewer)
    if not groups:
        await update.message.reply_text(
            "No tasks available. Link your tracker email with /email <address>."
        )
        return

    keyboard = []
    for label, tasks in groups:
        keyboard.append([InlineKeyboardButton(f"— {label} —", callback_data="task:none")])
        keyboard.extend(
            [InlineKeyboardButton(t.name, callback_data=f"task:{t.id}")] for t in tasks
        )
    await update.message.reply_text(
        "Which task are you working on?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


async def _handle_task_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the inline button tap that selects a task."""
    query = update.callback_query
    await query.answer()

    # Verify the user is authorized
    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    task_id = query.data.split(":", 1)[1]
    if task_id == "none":
        return

    registry = _registry(context)
    task = _visible_task(registry, user.id, task_id)
    if task is None:
        logger.warning("User %s picked unavailable task %s", user.id, task_id)
        await query.edit_message_text(_TASK_GONE_MSG)
        return
    registry.user_db.set_selected_task(str(user.id), task_id)
    await query.edit_message_text(f"Selected: {task.name}\nUse /go to start the timer.")


@authorized_only
async def cmd_alltasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /alltasks — admin view of every task."""
    registry = _registry(context)
    viewer = registry.viewer_for(update.effective_user.id)
    try:
        tasks = admin_tasks(registry.task_db.list_tasks(), viewer)
    except PermissionError:
        await update.message.reply_text("Only admins can use /alltasks.")
        return

    if not tasks:
        await update.message.reply_text("No tasks yet.")
        return
    lines = ["All tasks:\n"]
    for t in tasks:
        state = t.state.value if t.state else "-"
        lines.append(f"• {t.name} [{state}] → {t.assignee_email or 'unassigned'}")
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Timer commands
# ---------------------------------------------------------------------------

# ConversationHandler state for /stop
STOP_COMMENT = 0


@authorized_only
async def cmd_go(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /go — start the timer on the selected task."""
    registry = _registry(context)
    profile = registry.profile(update.effective_user.id)
    if not await _check_selection(update, registry, profile.selected_task_id):
        return
    session = await _session(update, context)
    try:
        await session.timer.start(profile.selected_task_id)
    except NameRequiredError:
        await update.message.reply_text(_NAME_REQUIRED_MSG)
        return
    except ValidationError as exc:
        await update.message.reply_text(f"⚠️ {exc}. Pick one with /tasks.")
        return
    except DayLogError as exc:
        logger.error("/go failed for %s: %s", update.effective_user.id, exc)
        await update.message.reply_text("Couldn't start the timer. Please try again.")
        return
    await update.message.reply_text(
        f"⏱ Timer started on {registry.task_name(profile.selected_task_id)}. /stop when done."
    )


@authorized_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — show the running timer."""
    session = await _session(update, context)
    timer = session.timer
    if not timer.is_active:
        await update.message.reply_text("No timer running.")
        return
    await timer.tick()
    suffix = " (waiting for a comment)" if timer.state is TimerState.AWAITING_COMMENT else ""
    await update.message.reply_text(
        f"⏱ {_registry(context).task_name(timer.task_id)}: {timer.elapsed_text()}{suffix}"
    )


@authorized_only
async def cmd_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Handle /stop — ask for the session comment."""
    session = await _session(update, context)
    try:
        session.timer.request_stop()
    except ValidationError:
        await update.message.reply_text("No timer running.")
        return ConversationHandler.END
    await update.message.reply_text(
        "What did you work on? Send a comment, or /cancel to keep the timer running."
    )
    return STOP_COMMENT


async def stop_comment(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the comment and save the session."""
    session = await _session(update, context)
    comment = update.message.text.strip()
    try:
        saved = await session.timer.save(comment)
    except DayLogError as exc:
        logger.error("Saving timer for %s failed: %s", update.effective_user.id, exc)
        await update.message.reply_text("Couldn't save the entry. Send the comment again or /cancel.")
        return STOP_COMMENT

    if saved is None:
        if session.timer.state is TimerState.IDLE:
            # The midnight split closed the session but could not reopen it
            await update.message.reply_text(
                "Your session was closed at midnight and could not be continued. "
                "Check /entries and add the rest with /log."
            )
        return ConversationHandler.END
    await update.message.reply_text("✅ Entry saved.")
    return ConversationHandler.END


async def stop_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Cancel the stop and keep the timer running."""
    session = await _session(update, context)
    session.timer.cancel_stop()
    await update.message.reply_text("Timer still running.")
    return ConversationHandler.END


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_log(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /log <YYYY-MM-DD> <HH:MM> <YYYY-MM-DD> <HH:MM> <comment>."""
    args = context.args or []
    if len(args) < 4:
        await update.message.reply_text(
            "Usage: /log 2025-01-31 09:00 2025-01-31 10:30 Reviewed PRs"
        )
        return

    registry = _registry(context)
    user_id = update.effective_user.id
    profile = registry.profile(user_id)
    tz_name = registry.timezone_for(user_id)
    try:
        start = _parse_local(args[0], args[1], tz_name)
        end = _parse_local(args[2], args[3], tz_name)
    except ValueError:
        await update.message.reply_text("Couldn't read those times. Use YYYY-MM-DD HH:MM.")
        return

    if not await _check_selection(update, registry, profile.selected_task_id):
        return

    session = await _session(update, context)
    try:
        saved = await session.store.add_manual(
            profile.selected_task_id, start, end, " ".join(args[4:]), utc_now(),
        )
    except ValidationError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return
    except DayLogError as exc:
        logger.error("/log failed for %s: %s", user_id, exc)
        await update.message.reply_text("Couldn't save the entry. Please try again.")
        return

    split = " (split at midnight)" if len(saved) > 1 else ""
    await update.message.reply_text(f"✅ Logged {len(saved)} entr{'ies' if len(saved) > 1 else 'y'}{split}.")


@authorized_only
async def cmd_entries(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /entries — today's entries."""
    registry = _registry(context)
    session = await _session(update, context)
    tz_name = session.store.timezone
    today = reporting_date(utc_now(), tz_name)
    entries = [e for e in session.store.entries if reporting_date(e.start_time, tz_name) == today]
    if not entries:
        await update.message.reply_text("No entries today.")
        return

    lines = ["Today's entries:\n"]
    for e in sorted(entries, key=lambda e: e.start_time):
        span = f"{_format_local(e.start_time, tz_name)}–{_format_local(e.end_time, tz_name)}"
        comment = f" — {e.comment}" if e.comment else ""
        lines.append(f"• {span} {registry.task_name(e.task_id)}{comment}\n  id: {e.id}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <id>."""
    args = context.args or []
    if not args:
        await update.message.reply_text("Usage: /delete <entry id>\nUse /entries to see IDs.")
        return

    session = await _session(update, context)
    entry_id = args[0]
    if session.timer.is_active and session.timer.entry_id == entry_id:
        await update.message.reply_text("Stop the running timer before deleting its entry.")
        return
    try:
        await session.store.delete(entry_id)
    except NotFoundError:
        await update.message.reply_text("Entry not found. Use /entries to see IDs.")
        return
    await update.message.reply_text("🗑 Entry deleted.")


@authorized_only
async def cmd_edit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /edit <id> <YYYY-MM-DD> <HH:MM> <YYYY-MM-DD> <HH:MM> [comment]."""
    args = context.args or []
    if len(args) < 5:
        await update.message.reply_text(
            "Usage: /edit <entry id> 2025-01-31 09:00 2025-01-31 10:30 [comment]\n"
            "Use /entries to see IDs."
        )
        return

    session = await _session(update, context)
    entry_id = args[0]
    entry = session.store.get(entry_id)
    if entry is None:
        await update.message.reply_text("Entry not found. Use /entries to see IDs.")
        return
    if entry.is_running:
        await update.message.reply_text("Stop the running timer before editing its entry.")
        return

    tz_name = session.store.timezone
    try:
        start = _parse_local(args[1], args[2], tz_name)
        end = _parse_local(args[3], args[4], tz_name)
    except ValueError:
        await update.message.reply_text("Couldn't read those times. Use YYYY-MM-DD HH:MM.")
        return

    comment = " ".join(args[5:]) if len(args) > 5 else entry.comment
    try:
        await session.store.edit(entry_id, start, end, comment, utc_now())
    except ValidationError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return
    except DayLogError as exc:
        logger.error("/edit failed for %s: %s", update.effective_user.id, exc)
        await update.message.reply_text("Couldn't update the entry. Please try again.")
        return
    await update.message.reply_text("✏️ Entry updated.")


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats [period]."""
    args = context.args or []
    try:
        period = Period(args[0]) if args else Period.THIS_WEEK
    except ValueError:
        await update.message.reply_text(
            f"Unknown period. Use one of: {', '.join(p.value for p in Period)}"
        )
        return

    registry = _registry(context)
    session = await _session(update, context)
    tz_name = session.store.timezone
    totals = aggregate_task_time(
        session.store.entries,
        registry.task_db.list_tasks(),
        period,
        tz_name,
        reporting_date(utc_now(), tz_name),
    )
    if not totals:
        await update.message.reply_text(f"No time tracked for {period.value.replace('_', ' ')}.")
        return

    lines = [f"Time per task ({period.value.replace('_', ' ')}):\n"]
    lines.extend(f"• {t.task_name}: {t.formatted}" for t in totals)
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def _build_sync_worker(
    resolve_context: Callable[..., Any],
) -> LedgerSyncWorker | None:
    """Ledger worker when Sheets is configured, otherwise None."""
    if not settings.sheets_enabled:
        logger.warning("Google Sheets not configured — spreadsheet sync disabled")
        return None

    from src.adapters.google_sheets import GoogleSheetsAdapter
    from src.core.ledger import SpreadsheetLedger
    from src.core.sync_worker import LedgerSyncWorker

    ledger = SpreadsheetLedger(GoogleSheetsAdapter(settings.GOOGLE_SPREADSHEET_ID))
    return LedgerSyncWorker(ledger, resolve_context)


def build_app(
    registry: SessionRegistry | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        registry: Per-user sessions. Defaults to one over the SQLite backend.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    worker: LedgerSyncWorker | None = None

    async def _post_init(application: Application) -> None:
        if worker is not None:
            worker.start()
        await application.bot_data["sessions"].restore_all()

    async def _post_shutdown(application: Application) -> None:
        if worker is not None:
            await worker.stop()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    if registry is None:
        from src.adapters.sqlite_entries import SQLiteEntryBackend
        from src.core.sessions import SessionRegistry
        from src.data.db import TaskDB, TeamDB, UserDB

        # The worker resolves row context through the registry built just below
        worker = _build_sync_worker(lambda entry: registry.resolve_context(entry))
        registry = SessionRegistry(
            backend=SQLiteEntryBackend(),
            task_db=TaskDB(),
            team_db=TeamDB(),
            user_db=UserDB(),
            notifier=notifier,
            worker=worker,
            local_store_dir=settings.LOCAL_STORE_DIR,
        )

    # Store ports in bot_data for handler access
    app.bot_data["sessions"] = registry
    app.bot_data["notifier"] = notifier

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("name", cmd_name))
    app.add_handler(CommandHandler("email", cmd_email))
    app.add_handler(CommandHandler("timezone", cmd_timezone))
    app.add_handler(CommandHandler("tasks", cmd_tasks))
    app.add_handler(CommandHandler("alltasks", cmd_alltasks))
    app.add_handler(CommandHandler("go", cmd_go))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("log", cmd_log))
    app.add_handler(CommandHandler("entries", cmd_entries))
    app.add_handler(CommandHandler("edit", cmd_edit))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(CallbackQueryHandler(_handle_task_callback, pattern=r"^task:"))

    # /stop conversation handler
    _text = filters.TEXT & ~filters.COMMAND
    stop_conv = ConversationHandler(
        entry_points=[CommandHandler("stop", cmd_stop)],
        states={
            STOP_COMMENT: [MessageHandler(_text, stop_comment)],
        },
        fallbacks=[CommandHandler("cancel", stop_cancel)],
    )
    app.add_handler(stop_conv)

    _setup_timer_tick(app, registry)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_timer_tick(app: Application, registry: SessionRegistry) -> None:
    """Drive every running timer once per TICK_SECONDS."""

    async def _tick_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await registry.tick_all()

    app.job_queue.run_repeating(
        _tick_job_callback,
        interval=settings.TICK_SECONDS,
        first=settings.TICK_SECONDS,
        name="timer_tick",
    )
    logger.info("Timer tick scheduled every %.1fs", settings.TICK_SECONDS)


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting DayLog bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
