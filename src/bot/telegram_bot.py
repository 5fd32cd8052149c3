"""
Vita Tracker — Telegram Bot.

Telegram is the host for the whole app: the chat is the notification tray,
voice notes are the microphone, and audio replies are the speaker. Every
interaction (settings, manual logging, the voice assistant, reminders)
flows through this bot.

Users talk to the bot in a private chat, so a user's id doubles as the chat
id that reminders and replies are sent to.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import tempfile
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.adapters.telegram_audio import TelegramAudioPlayer
from src.adapters.telegram_notifications import TelegramNotificationHub
from src.adapters.whisper_speech import WhisperSpeechBackend
from src.config import settings
from src.core.notification_service import NotificationService
from src.core.time_parser import now_in
from src.core.voice_session import (
    MSG_QUOTA_EXCEEDED,
    MSG_RATE_LIMITED,
    VoiceSession,
    VoiceState,
)
from src.data.models import EDITABLE_FIELDS, TIME_FIELDS
from src.integrations.assistant_api import (
    PLAN_STEPS,
    AssistantClient,
    AssistantError,
    QuotaExceededError,
    RateLimitedError,
)
from src.ports.speech_port import SpeechError
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from telegram import Bot

    from src.data.models import NotificationSettings
    from src.integrations.assistant_api import FoodItem
    from src.ports.store_port import NutritionStore, SettingsStore

logger = logging.getLogger(__name__)

DISPATCH_INTERVAL_SECONDS = 30
WATER_GOAL_ML = 2000

_BOOL_WORDS = {
    "on": True, "yes": True, "true": True, "1": True,
    "off": False, "no": False, "false": False, "0": False,
}
_CLEAR_WORDS = ("none", "-", "off")
_GOAL_FIELDS = ("age", "gender", "height", "currentWeight", "activityLevel", "goal")
_PLAN_MEALS = ("breakfast", "lunch", "dinner", "snack")

MSG_BUSY = "I'm still working on your previous request."


def _now() -> datetime:
    """Current time in the configured timezone; every reminder is planned in it."""
    return now_in(settings.TIMEZONE)


def _listening_prompt() -> str:
    return f"🎤 Listening — send a voice note within {settings.LISTEN_TIMEOUT_SECONDS:g}s."


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Per-user services
# ---------------------------------------------------------------------------


def _service_for(bot_data: dict, user_id: int) -> NotificationService:
    """Return the user's NotificationService, creating it on first use."""
    services: dict[int, NotificationService] = bot_data.setdefault("services", {})
    if user_id not in services:
        hub: TelegramNotificationHub = bot_data["hub"]
        services[user_id] = NotificationService(
            hub.backend_for(user_id), bot_data["settings_store"], clock=_now,
        )
    return services[user_id]


async def _session_for(bot_data: dict, bot: Bot, user_id: int) -> VoiceSession:
    """Return the user's VoiceSession, creating and arming it on first use."""
    sessions: dict[int, VoiceSession] = bot_data.setdefault("sessions", {})
    session = sessions.get(user_id)
    if session is not None:
        return session

    async def notify(message: str) -> None:
        await bot.send_message(chat_id=user_id, text=message)

    assistant: AssistantClient = bot_data["assistant"]
    session = VoiceSession(
        WhisperSpeechBackend(settings.OPENAI_API_KEY),
        assistant,
        assistant,
        TelegramAudioPlayer(bot, user_id),
        user_id=str(user_id),
        nutrition=bot_data["nutrition"],
        notify=notify,
        wake_phrase=settings.WAKE_PHRASE,
        language=settings.SPEECH_LANGUAGE,
        voice=settings.TTS_VOICE,
        listen_timeout=settings.LISTEN_TIMEOUT_SECONDS,
        clock=_now,
    )
    sessions[user_id] = session
    await session.initialize()
    return session


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _parse_setting(field: str, raw: str) -> object:
    """Convert a /set value to the type the settings field expects.

    Raises ValueError for unknown fields or unparseable values; time values
    are validated later by the settings model itself.
    """
    if field not in EDITABLE_FIELDS:
        raise ValueError(f"Unknown setting '{field}'")
    value = raw.strip()

    if field in TIME_FIELDS:
        if value.lower() in _CLEAR_WORDS:
            return None
        return value
    if field == "water_reminder_frequency":
        return int(value)
    try:
        return _BOOL_WORDS[value.lower()]
    except KeyError:
        raise ValueError(f"'{field}' expects on/off, got '{raw}'") from None


def _parse_meal_args(args: list[str]) -> tuple[str, float, float, float, float]:
    """Split `/meal` arguments into (name, calories, protein, fat, carbs).

    Up to four trailing numbers are read as kcal then protein/fat/carbs;
    everything before them is the meal name.
    """
    numbers: list[float] = []
    words = list(args)
    while words and len(numbers) < 4:
        try:
            numbers.insert(0, float(words[-1].replace(",", ".")))
        except ValueError:
            break
        words.pop()

    name = " ".join(words).strip()
    if not name or not numbers:
        raise ValueError("Usage: /meal <name> <kcal> [protein fat carbs]")
    calories, *macros = numbers
    protein, fat, carbs = (macros + [0.0, 0.0, 0.0])[:3]
    return name, calories, protein, fat, carbs


def _meal_type_for(hour: int) -> str:
    if 5 <= hour < 11:
        return "breakfast"
    if 11 <= hour < 16:
        return "lunch"
    if 16 <= hour < 21:
        return "dinner"
    return "snack"


def _format_settings(s: NotificationSettings) -> str:
    times = s.display_times()

    def flag(value: bool) -> str:
        return "on" if value else "off"

    return (
        "*Notification settings*\n"
        f"push\\_enabled: {flag(s.push_enabled)}\n"
        f"meal\\_reminders\\_enabled: {flag(s.meal_reminders_enabled)}\n"
        f"  breakfast\\_time: {times['breakfast_time'] or '—'}\n"
        f"  lunch\\_time: {times['lunch_time'] or '—'}\n"
        f"  dinner\\_time: {times['dinner_time'] or '—'}\n"
        f"  snack\\_time: {times['snack_time'] or '—'}\n"
        f"water\\_reminders\\_enabled: {flag(s.water_reminders_enabled)}\n"
        f"  water\\_reminder\\_frequency: {s.water_reminder_frequency} min\n"
        f"  water\\_reminder\\_start: {times['water_reminder_start']}\n"
        f"  water\\_reminder\\_end: {times['water_reminder_end']}\n"
        f"daily\\_stats\\_enabled: {flag(s.daily_stats_enabled)}\n"
        f"  daily\\_stats\\_time: {times['daily_stats_time'] or '—'}\n"
        f"achievement\\_notifications\\_enabled: {flag(s.achievement_notifications_enabled)}\n"
        f"motivation\\_notifications\\_enabled: {flag(s.motivation_notifications_enabled)}"
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — set up notifications and schedule today's reminders."""
    user_id = update.effective_user.id
    store: SettingsStore = context.bot_data["settings_store"]
    service = _service_for(context.bot_data, user_id)

    try:
        user_settings = await store.get_settings(str(user_id))
    except StoreError as exc:
        logger.error("Settings load failed for %s: %s", user_id, exc)
        await update.message.reply_text("Couldn't load your settings. Please try again later.")
        return

    await service.initialize(str(user_id))
    pending = await service.reschedule(user_settings)
    await update.message.reply_text(
        "Welcome to *Vita*, your nutrition coach!\n\n"
        "• Send a voice note or text to talk to the assistant\n"
        "• /water and /meal log what you drink and eat\n"
        "• Send a photo of your plate to log it\n"
        "• /settings shows your reminders, /set changes them\n\n"
        f"Reminders scheduled: {pending if pending is not None else 'none (not permitted)'}\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/settings — Show notification settings\n"
        "/set <field> <value> — Change a setting (e.g. /set lunch\\_time 12:30)\n"
        "/water <ml> — Log water\n"
        "/meal <name> <kcal> \\[protein fat carbs] — Log a meal\n"
        "/today — Today's totals\n"
        "/pending — Number of scheduled reminders\n"
        "/listen — Talk to Vita (send a voice note next)\n"
        "/goals <age> <gender> <height> <weight> <activity> <goal> \\[target] — Daily targets\n"
        "/plan <meal> \\[step] — Build a meal step by step\n"
        "/recipes — Saved dishes that fit today's budget\n"
        "/help — Show this message\n\n"
        "Send a photo of your plate to log it as a meal.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_settings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /settings — show the stored settings in HH:MM form."""
    store: SettingsStore = context.bot_data["settings_store"]
    try:
        user_settings = await store.get_settings(str(update.effective_user.id))
    except StoreError as exc:
        logger.error("Settings load failed: %s", exc)
        await update.message.reply_text("Couldn't load your settings. Please try again later.")
        return
    await update.message.reply_text(_format_settings(user_settings), parse_mode="Markdown")


@authorized_only
async def cmd_set(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /set <field> <value> — save one setting and reschedule."""
    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text(
            "Usage: /set <field> <value>\n"
            "Times are HH:MM, toggles on/off, frequency in minutes."
        )
        return

    field, raw = args[0].lower(), " ".join(args[1:])
    user_id = update.effective_user.id
    service = _service_for(context.bot_data, user_id)

    try:
        value = _parse_setting(field, raw)
        saved, pending = await service.save_settings(str(user_id), {field: value})
    except ValueError as exc:
        await update.message.reply_text(f"Invalid value: {exc}")
        return
    except StoreError as exc:
        logger.error("Settings save failed for %s: %s", user_id, exc)
        await update.message.reply_text("Couldn't save your settings. Please try again later.")
        return

    if pending is None:
        note = "reminders could not be scheduled"
    else:
        note = f"{pending} reminders scheduled"
    await update.message.reply_text(f"✅ Saved {field}; {note}.")


@authorized_only
async def cmd_water(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /water <ml> — log water, celebrating the daily goal once."""
    nutrition: NutritionStore = context.bot_data["nutrition"]
    user_id = update.effective_user.id
    try:
        amount = int((context.args or ["250"])[0])
        before = await nutrition.get_daily_totals(str(user_id))
        await nutrition.add_water(str(user_id), amount)
    except ValueError:
        await update.message.reply_text("Usage: /water <ml> (a positive number)")
        return
    except StoreError as exc:
        logger.error("Water log failed: %s", exc)
        await update.message.reply_text("Couldn't log water. Please try again later.")
        return

    total = before.water_ml + amount
    await update.message.reply_text(f"💧 +{amount} ml (today: {total} ml)")
    if before.water_ml < WATER_GOAL_ML <= total:
        await _service_for(context.bot_data, user_id).send_achievement(
            str(user_id), "Water goal reached", f"You drank {total} ml today. Great job!",
        )


@authorized_only
async def cmd_meal(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /meal <name> <kcal> [p f c] — log a meal manually."""
    nutrition: NutritionStore = context.bot_data["nutrition"]
    try:
        name, calories, protein, fat, carbs = _parse_meal_args(context.args or [])
        meal = await nutrition.add_meal(
            str(update.effective_user.id),
            name=name,
            calories=calories,
            protein=protein,
            fat=fat,
            carbs=carbs,
            meal_type=_meal_type_for(_now().hour),
        )
    except ValueError as exc:
        await update.message.reply_text(str(exc))
        return
    except StoreError as exc:
        logger.error("Meal log failed: %s", exc)
        await update.message.reply_text("Couldn't log the meal. Please try again later.")
        return
    await update.message.reply_text(
        f"🍽 {meal.name}: {meal.calories:.0f} kcal "
        f"(P {meal.protein:g} / F {meal.fat:g} / C {meal.carbs:g}) as {meal.meal_type}"
    )


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — show today's nutrition totals."""
    nutrition: NutritionStore = context.bot_data["nutrition"]
    try:
        totals = await nutrition.get_daily_totals(str(update.effective_user.id))
    except StoreError as exc:
        logger.error("Daily totals failed: %s", exc)
        await update.message.reply_text("Couldn't load today's totals. Please try again later.")
        return

    lines = [
        f"Today ({totals.date})",
        f"Calories: {totals.calories:.0f} kcal",
        f"Protein {totals.protein:.1f} g · Fat {totals.fat:.1f} g · Carbs {totals.carbs:.1f} g",
        f"Water: {totals.water_ml} ml",
    ]
    if totals.meals:
        lines.append("Meals: " + ", ".join(totals.meals))
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_pending(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pending — how many reminders are scheduled."""
    service = _service_for(context.bot_data, update.effective_user.id)
    count = await service.pending_count()
    await update.message.reply_text(f"⏰ {count} reminders scheduled.")


@authorized_only
async def cmd_listen(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /listen — open a capture window for the next voice note."""
    session = await _session_for(context.bot_data, context.bot, update.effective_user.id)
    if await session.start_listening():
        await update.message.reply_text(_listening_prompt())
    elif session.state is not VoiceState.IDLE:
        await update.message.reply_text(MSG_BUSY)


@authorized_only
async def cmd_goals(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /goals — ask the goal calculator for daily targets."""
    args = context.args or []
    if len(args) < len(_GOAL_FIELDS):
        await update.message.reply_text(
            "Usage: /goals <age> <gender> <height cm> <weight kg> "
            "<activity> <goal> [target kg]\n"
            "e.g. /goals 30 female 168 70 moderate lose 62"
        )
        return

    profile: dict = dict(zip(_GOAL_FIELDS, args))
    if len(args) > len(_GOAL_FIELDS):
        profile["targetWeight"] = args[len(_GOAL_FIELDS)]
    for key in ("age", "height", "currentWeight", "targetWeight"):
        if key in profile:
            try:
                profile[key] = float(profile[key])
            except ValueError:
                await update.message.reply_text(f"'{profile[key]}' is not a number.")
                return

    assistant: AssistantClient = context.bot_data["assistant"]
    try:
        goals = await assistant.calculate_goals(profile)
    except AssistantError as exc:
        logger.error("Goal calculation failed: %s", exc)
        await update.message.reply_text("Couldn't calculate your goals. Please try again later.")
        return

    msg = (
        f"🎯 Daily targets\n"
        f"Calories: {goals.daily_calories} kcal\n"
        f"Protein {goals.protein} g · Fat {goals.fat} g · Carbs {goals.carbs} g\n"
        f"Water: {goals.water_ml} ml"
    )
    if goals.explanation:
        msg += f"\n\n{goals.explanation}"
    await update.message.reply_text(msg)


def _ai_failure(exc: AssistantError, action: str) -> str:
    """Short user-facing text for a failed AI call."""
    if isinstance(exc, RateLimitedError):
        return MSG_RATE_LIMITED
    if isinstance(exc, QuotaExceededError):
        return MSG_QUOTA_EXCEEDED
    return f"Couldn't {action}. Please try again later."


def _format_food(food: FoodItem) -> str:
    portion = f" {food.quantity:g} {food.unit}" if food.quantity else ""
    line = f"• {food.name}{portion}: {food.calories:.0f} kcal"
    if food.reason:
        line += f" ({food.reason})"
    return line


@authorized_only
async def cmd_plan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /plan <meal> [step] — suggest foods for one step of a meal."""
    args = [a.lower() for a in context.args or []]
    if not args or args[0] not in _PLAN_MEALS:
        await update.message.reply_text(
            f"Usage: /plan <{'|'.join(_PLAN_MEALS)}> [{'|'.join(PLAN_STEPS)}]"
        )
        return
    meal_type = args[0]
    step = args[1] if len(args) > 1 else PLAN_STEPS[0]

    assistant: AssistantClient = context.bot_data["assistant"]
    try:
        plan = await assistant.plan_meals(meal_type, step)
    except ValueError as exc:
        await update.message.reply_text(str(exc))
        return
    except AssistantError as exc:
        logger.error("Meal planning failed: %s", exc)
        await update.message.reply_text(_ai_failure(exc, "plan the meal"))
        return

    lines = [f"🥗 {meal_type.capitalize()} · {step}"]
    if plan.message:
        lines.append(plan.message)
    lines.extend(_format_food(item) for item in plan.items)
    if plan.next_step in PLAN_STEPS:
        lines.append(f"Next: /plan {meal_type} {plan.next_step}")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_recipes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /recipes — which saved dishes still fit today's budget."""
    assistant: AssistantClient = context.bot_data["assistant"]
    try:
        advice = await assistant.recommend_recipes()
    except AssistantError as exc:
        logger.error("Recipe advice failed: %s", exc)
        await update.message.reply_text(_ai_failure(exc, "suggest recipes"))
        return

    lines = [advice.coach_message or "🍳 Recipe ideas"]
    for rec in advice.recommendations:
        portion = "" if rec.portion == 1 else f" ×{rec.portion:g}"
        reason = f" ({rec.reason})" if rec.reason else ""
        lines.append(f"• {rec.name}{portion}: {rec.calories:.0f} kcal{reason}")
    if advice.simple_foods:
        lines.append("Simple options:")
        lines.extend(_format_food(food) for food in advice.simple_foods)
    if "calories" in advice.budget:
        lines.append(f"Left today: {advice.budget['calories']} kcal")
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — send them straight to the assistant."""
    session = await _session_for(context.bot_data, context.bot, update.effective_user.id)
    if not await session.handle_transcript(update.message.text or ""):
        await update.message.reply_text(MSG_BUSY)


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice notes — transcribe via Whisper, then feed the voice session.

    While the session is idle the note goes to the wake listener first: a
    note with the wake phrase opens a capture window for the next note. Any
    other note is taken as a request and processed straight away. During a
    capture (after /listen or the wake phrase) the note is the request.
    """
    session = await _session_for(context.bot_data, context.bot, update.effective_user.id)
    speech: WhisperSpeechBackend = session.speech
    voice = update.message.voice
    tmp_path: str | None = None

    try:
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)
        text = await speech.transcribe(tmp_path)
    except SpeechError as exc:
        logger.error("Voice handling error: %s", exc)
        await update.message.reply_text(
            "Sorry, I couldn't understand your voice message. Please try again."
        )
        return
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)

    if text:
        await update.message.reply_text(f"🎤 I heard: {text}")

    if session.state is VoiceState.IDLE and session.wake.active:
        # The wake listener holds the microphone; the note may be its phrase.
        await speech.deliver(text)
        if session.state is VoiceState.LISTENING:
            await update.message.reply_text(_listening_prompt())
            return

    if session.state is VoiceState.IDLE:
        if not await session.start_listening():
            # Unavailable or denied speech was already reported by the session.
            if session.state is not VoiceState.IDLE:
                await update.message.reply_text(MSG_BUSY)
            return
    elif session.state is not VoiceState.LISTENING:
        await update.message.reply_text(MSG_BUSY)
        return
    if not await speech.deliver(text):
        logger.debug("Voice note arrived after recognition ended for %s",
                     update.effective_user.id)


@authorized_only
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle meal photos — recognise the food and log it as one meal."""
    user_id = update.effective_user.id
    assistant: AssistantClient = context.bot_data["assistant"]
    nutrition: NutritionStore = context.bot_data["nutrition"]
    photo = update.message.photo[-1]  # largest size

    try:
        photo_file = await context.bot.get_file(photo.file_id)
        image = bytes(await photo_file.download_as_bytearray())
    except TelegramError as exc:
        logger.error("Photo download failed: %s", exc)
        await update.message.reply_text("Couldn't download the photo. Please try again.")
        return

    try:
        analysis = await assistant.analyze_food(image)
    except AssistantError as exc:
        logger.error("Photo analysis failed: %s", exc)
        await update.message.reply_text(_ai_failure(exc, "recognise the food"))
        return

    name = analysis.notes or ", ".join(f.name for f in analysis.foods) or "Meal"
    meal_type = analysis.meal_type or _meal_type_for(_now().hour)
    try:
        await nutrition.add_meal(
            str(user_id),
            name=name,
            calories=analysis.calories,
            protein=analysis.protein,
            fat=analysis.fat,
            carbs=analysis.carbs,
            meal_type=meal_type,
        )
    except (ValueError, StoreError) as exc:
        logger.error("Photo meal log failed: %s", exc)
        await update.message.reply_text("Recognised the food but couldn't log it. Please try again.")
        return

    lines = [
        f"📸 {name}: {analysis.calories:.0f} kcal "
        f"(P {analysis.protein:g} / F {analysis.fat:g} / C {analysis.carbs:g}) as {meal_type}"
    ]
    lines.extend(_format_food(food) for food in analysis.foods)
    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Reminder delivery
# ---------------------------------------------------------------------------


async def _dispatch_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    hub: TelegramNotificationHub = context.bot_data["hub"]
    await hub.dispatch_due(_now())


async def _on_startup(app: Application) -> None:
    """Rebuild every allowed user's reminders; pending ones live in memory only."""
    store: SettingsStore = app.bot_data["settings_store"]
    for user_id in settings.ALLOWED_USER_IDS:
        service = _service_for(app.bot_data, user_id)
        try:
            user_settings = await store.get_settings(str(user_id))
        except StoreError as exc:
            logger.error("Startup reschedule skipped for %s: %s", user_id, exc)
            continue
        await service.initialize(str(user_id))
        pending = await service.reschedule(user_settings)
        logger.info("Startup: %s reminders pending for user %s", pending, user_id)


async def _on_shutdown(app: Application) -> None:
    for session in app.bot_data.get("sessions", {}).values():
        await session.close()


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    settings_store: SettingsStore | None = None,
    nutrition: NutritionStore | None = None,
    assistant: AssistantClient | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        settings_store: SettingsStore implementation. Defaults to create_stores().
        nutrition: NutritionStore implementation. Defaults to create_stores().
        assistant: Hosted assistant client. Defaults to one built from settings.
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_on_startup)
        .post_shutdown(_on_shutdown)
        .build()
    )

    if settings_store is None or nutrition is None:
        from src.adapters.store_factory import create_stores
        default_settings, default_nutrition = create_stores()
        settings_store = settings_store or default_settings
        nutrition = nutrition or default_nutrition

    if assistant is None:
        assistant = AssistantClient(
            settings.BACKEND_URL, settings.BACKEND_API_KEY, settings.HTTP_TIMEOUT_SECONDS,
        )

    # Store ports in bot_data for handler access
    app.bot_data["settings_store"] = settings_store
    app.bot_data["nutrition"] = nutrition
    app.bot_data["assistant"] = assistant
    app.bot_data["hub"] = TelegramNotificationHub(app.bot, settings.ALLOWED_USER_IDS)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("settings", cmd_settings))
    app.add_handler(CommandHandler("set", cmd_set))
    app.add_handler(CommandHandler("water", cmd_water))
    app.add_handler(CommandHandler("meal", cmd_meal))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("pending", cmd_pending))
    app.add_handler(CommandHandler("listen", cmd_listen))
    app.add_handler(CommandHandler("goals", cmd_goals))
    app.add_handler(CommandHandler("plan", cmd_plan))
    app.add_handler(CommandHandler("recipes", cmd_recipes))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    # Voice messages
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))

    # Meal photos
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))

    app.job_queue.run_repeating(
        _dispatch_job,
        interval=DISPATCH_INTERVAL_SECONDS,
        first=1,
        name="notification_dispatch",
    )

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Vita Tracker bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
