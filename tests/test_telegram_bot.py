"""Tests for src.bot.telegram_bot — command parsing and handlers.

External services (Telegram, Whisper, the hosted assistant) are mocked;
stores are real temp-file SQLite databases.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from src.adapters.telegram_notifications import TelegramNotificationHub
from src.adapters.whisper_speech import WhisperSpeechBackend
from src.bot.telegram_bot import (
    MSG_BUSY,
    _meal_type_for,
    _parse_meal_args,
    _parse_setting,
    _service_for,
    cmd_meal,
    cmd_plan,
    cmd_recipes,
    cmd_set,
    cmd_today,
    cmd_water,
    handle_photo,
    handle_text,
    handle_voice,
)
from src.config import settings
from src.core.notification_plan import ADHOC_ID_START
from src.core.voice_session import (
    MSG_QUOTA_EXCEEDED,
    MSG_RATE_LIMITED,
    MSG_SPEECH_UNAVAILABLE,
    VoiceState,
)
from src.integrations.assistant_api import (
    FoodAnalysis,
    FoodItem,
    MealPlanStep,
    QuotaExceededError,
    RateLimitedError,
    RecipeAdvice,
    RecipeRecommendation,
)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseSetting:
    def test_bool_words(self):
        assert _parse_setting("push_enabled", "off") is False
        assert _parse_setting("daily_stats_enabled", "Yes") is True

    def test_time_passed_through(self):
        assert _parse_setting("lunch_time", "12:30") == "12:30"

    def test_time_cleared(self):
        assert _parse_setting("snack_time", "none") is None

    def test_frequency(self):
        assert _parse_setting("water_reminder_frequency", "90") == 90

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            _parse_setting("push_token", "abc")

    def test_bad_bool(self):
        with pytest.raises(ValueError):
            _parse_setting("push_enabled", "maybe")


class TestParseMealArgs:
    def test_name_and_all_macros(self):
        assert _parse_meal_args(["Greek", "salad", "320", "12", "25", "10"]) == (
            "Greek salad", 320.0, 12.0, 25.0, 10.0,
        )

    def test_calories_only(self):
        assert _parse_meal_args(["Apple", "95"]) == ("Apple", 95.0, 0.0, 0.0, 0.0)

    def test_decimal_comma(self):
        assert _parse_meal_args(["Yogurt", "120,5"])[1] == 120.5

    def test_numeric_name_prefix_kept(self):
        name, calories, *_ = _parse_meal_args(["7up", "1", "2", "3", "4", "5"])
        assert name == "7up 1"
        assert calories == 2.0

    @pytest.mark.parametrize("args", [[], ["Apple"], ["95"]])
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            _parse_meal_args(args)


def test_meal_type_for_hour():
    assert _meal_type_for(8) == "breakfast"
    assert _meal_type_for(13) == "lunch"
    assert _meal_type_for(19) == "dinner"
    assert _meal_type_for(23) == "snack"
    assert _meal_type_for(3) == "snack"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _make_update(text="", user_id=12345):
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.message.reply_text = AsyncMock()
    return update


@pytest.fixture
def bot():
    bot = MagicMock()
    bot.send_message = AsyncMock()
    bot.send_audio = AsyncMock()
    return bot


@pytest.fixture
def context(bot, settings_db, nutrition_db, assistant):
    context = MagicMock()
    context.bot = bot
    context.args = []
    context.bot_data = {
        "settings_store": settings_db,
        "nutrition": nutrition_db,
        "assistant": assistant,
        "hub": TelegramNotificationHub(bot, [12345]),
    }
    return context


def _replies(update):
    return [c.args[0] for c in update.message.reply_text.call_args_list]


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_stranger_is_ignored(self, context):
        update = _make_update(user_id=999)
        context.args = ["push_enabled", "off"]
        await cmd_set(update, context)
        update.message.reply_text.assert_not_called()
        assert "services" not in context.bot_data


class TestSettingsCommands:
    @pytest.mark.asyncio
    async def test_set_saves_and_reschedules(self, context, settings_db):
        update = _make_update()
        context.args = ["water_reminders_enabled", "off"]

        await cmd_set(update, context)

        assert _replies(update) == ["✅ Saved water_reminders_enabled; 4 reminders scheduled."]
        assert (await settings_db.get_settings("12345")).water_reminders_enabled is False
        assert len(context.bot_data["hub"].pending(12345)) == 4

    @pytest.mark.asyncio
    async def test_set_invalid_time(self, context):
        update = _make_update()
        context.args = ["lunch_time", "25:99"]
        await cmd_set(update, context)
        assert _replies(update)[0].startswith("Invalid value")

    @pytest.mark.asyncio
    async def test_set_usage(self, context):
        update = _make_update()
        context.args = ["lunch_time"]
        await cmd_set(update, context)
        assert _replies(update)[0].startswith("Usage")

    def test_service_is_reused_per_user(self, context):
        assert _service_for(context.bot_data, 12345) is _service_for(context.bot_data, 12345)
        assert _service_for(context.bot_data, 1) is not _service_for(context.bot_data, 12345)


class TestLoggingCommands:
    @pytest.mark.asyncio
    async def test_meal(self, context, nutrition_db):
        update = _make_update()
        context.args = ["Greek", "salad", "320", "12", "25", "10"]
        await cmd_meal(update, context)

        assert _replies(update)[0].startswith("🍽 Greek salad: 320 kcal")
        totals = await nutrition_db.get_daily_totals("12345")
        assert totals.meals == ["Greek salad"]

    @pytest.mark.asyncio
    async def test_water_goal_sends_achievement_once(self, context):
        update = _make_update()
        context.args = ["1500"]
        await cmd_water(update, context)
        hub = context.bot_data["hub"]
        assert hub.pending(12345) == {}

        context.args = ["500"]
        await cmd_water(update, context)
        assert [i for i in hub.pending(12345) if i >= ADHOC_ID_START]

        context.args = ["250"]
        await cmd_water(update, context)
        assert len(hub.pending(12345)) == 1
        assert _replies(update)[-1] == "💧 +250 ml (today: 2250 ml)"

    @pytest.mark.asyncio
    async def test_water_rejects_bad_amount(self, context):
        update = _make_update()
        context.args = ["-5"]
        await cmd_water(update, context)
        assert _replies(update)[0].startswith("Usage")

    @pytest.mark.asyncio
    async def test_today(self, context, nutrition_db):
        await nutrition_db.add_water("12345", 300)
        update = _make_update()
        await cmd_today(update, context)
        assert "Water: 300 ml" in _replies(update)[0]


# ---------------------------------------------------------------------------
# Assistant round trip through text and voice
# ---------------------------------------------------------------------------


class TestAssistantHandlers:
    @pytest.mark.asyncio
    async def test_text_goes_to_assistant(self, context, assistant, bot):
        update = _make_update("How am I doing today?")
        try:
            await handle_text(update, context)
        finally:
            await context.bot_data["sessions"][12345].close()

        assert assistant.asked[0]["text"] == "How am I doing today?"
        bot.send_message.assert_awaited_with(chat_id=12345, text="Hello!")
        assert bot.send_audio.await_args.kwargs["audio"] == b"mp3-bytes"

    @pytest.mark.asyncio
    async def test_voice_note_transcribed_then_processed(self, context, assistant, bot):
        update = _make_update()
        update.message.voice.file_id = "file-1"
        voice_file = MagicMock()
        voice_file.download_to_drive = AsyncMock()
        bot.get_file = AsyncMock(return_value=voice_file)

        with patch.object(
            WhisperSpeechBackend, "transcribe", AsyncMock(return_value="I ate an apple"),
        ):
            try:
                await handle_voice(update, context)
            finally:
                await context.bot_data["sessions"][12345].close()

        assert _replies(update) == ["🎤 I heard: I ate an apple"]
        assert assistant.asked[0]["text"] == "I ate an apple"
        bot.send_audio.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_wake_phrase_note_opens_capture(self, context, assistant, bot):
        bot.get_file = AsyncMock(return_value=MagicMock(download_to_drive=AsyncMock()))
        wake_note = _make_update()
        request_note = _make_update()
        transcripts = AsyncMock(
            side_effect=[f"{settings.WAKE_PHRASE}!", "I drank a glass of water"],
        )

        with patch.object(WhisperSpeechBackend, "transcribe", transcripts):
            try:
                await handle_voice(wake_note, context)
                session = context.bot_data["sessions"][12345]
                assert session.state is VoiceState.LISTENING
                assert assistant.asked == []

                await handle_voice(request_note, context)
            finally:
                await context.bot_data["sessions"][12345].close()

        assert _replies(wake_note)[-1].startswith("🎤 Listening")
        assert assistant.asked[0]["text"] == "I drank a glass of water"
        assert MSG_BUSY not in _replies(request_note)

    @pytest.mark.asyncio
    async def test_voice_note_without_speech_is_not_busy(
        self, context, assistant, bot, monkeypatch,
    ):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
        bot.get_file = AsyncMock(return_value=MagicMock(download_to_drive=AsyncMock()))
        update = _make_update()

        with patch.object(
            WhisperSpeechBackend, "transcribe", AsyncMock(return_value="hello"),
        ):
            try:
                await handle_voice(update, context)
            finally:
                await context.bot_data["sessions"][12345].close()

        assert MSG_BUSY not in _replies(update)
        bot.send_message.assert_awaited_with(chat_id=12345, text=MSG_SPEECH_UNAVAILABLE)
        assert assistant.asked == []


# ---------------------------------------------------------------------------
# Photos, meal planning and recipes
# ---------------------------------------------------------------------------


def _photo_update(bot, image=b"jpeg"):
    update = _make_update()
    small, large = MagicMock(file_id="small"), MagicMock(file_id="large")
    update.message.photo = [small, large]
    photo_file = MagicMock()
    photo_file.download_as_bytearray = AsyncMock(return_value=bytearray(image))
    bot.get_file = AsyncMock(return_value=photo_file)
    return update


class TestFoodHandlers:
    @pytest.mark.asyncio
    async def test_photo_logged_as_meal(self, context, assistant, bot, nutrition_db):
        update = _photo_update(bot)
        assistant.analyze_food = AsyncMock(return_value=FoodAnalysis(
            foods=[FoodItem("Гречка", 150, "г", 165), FoodItem("Котлета", 100, "г", 220)],
            calories=385, protein=24, fat=16.5, carbs=37,
            meal_type="lunch", notes="Гречка с котлетой",
        ))

        await handle_photo(update, context)

        bot.get_file.assert_awaited_once_with("large")
        assistant.analyze_food.assert_awaited_once_with(b"jpeg")
        totals = await nutrition_db.get_daily_totals("12345")
        assert totals.calories == 385
        assert totals.meals == ["Гречка с котлетой"]
        reply = _replies(update)[0]
        assert reply.startswith("📸 Гречка с котлетой: 385 kcal")
        assert "as lunch" in reply
        assert "• Котлета 100 г: 220 kcal" in reply

    @pytest.mark.asyncio
    async def test_photo_rate_limited(self, context, assistant, bot, nutrition_db):
        update = _photo_update(bot)
        assistant.analyze_food = AsyncMock(side_effect=RateLimitedError("slow down"))

        await handle_photo(update, context)

        assert _replies(update) == [MSG_RATE_LIMITED]
        totals = await nutrition_db.get_daily_totals("12345")
        assert totals.meals == []

    @pytest.mark.asyncio
    async def test_plan_step(self, context, assistant):
        update = _make_update()
        context.args = ["Lunch"]
        assistant.plan_meals = AsyncMock(return_value=MealPlanStep(
            items=[FoodItem("Курица", 120, "г", 198, reason="Много белка")],
            message="Начнём с белка",
            next_step="carbs",
        ))

        await cmd_plan(update, context)

        assistant.plan_meals.assert_awaited_once_with("lunch", "protein")
        reply = _replies(update)[0]
        assert "Начнём с белка" in reply
        assert "• Курица 120 г: 198 kcal (Много белка)" in reply
        assert reply.endswith("Next: /plan lunch carbs")

    @pytest.mark.asyncio
    async def test_plan_requires_meal_type(self, context, assistant):
        update = _make_update()
        context.args = ["brunch"]
        assistant.plan_meals = AsyncMock()

        await cmd_plan(update, context)

        assert _replies(update)[0].startswith("Usage: /plan")
        assistant.plan_meals.assert_not_called()

    @pytest.mark.asyncio
    async def test_recipes(self, context, assistant):
        update = _make_update()
        assistant.recommend_recipes = AsyncMock(return_value=RecipeAdvice(
            recommendations=[
                RecipeRecommendation("Омлет", "perfect", "Вписывается", 1.0, 310),
                RecipeRecommendation("Паста", "partial", "", 0.5, 350),
            ],
            simple_foods=[FoodItem("Творог", 150, "г", 180)],
            coach_message="Отличный день!",
            budget={"calories": 650},
        ))

        await cmd_recipes(update, context)

        assert _replies(update)[0].split("\n") == [
            "Отличный день!",
            "• Омлет: 310 kcal (Вписывается)",
            "• Паста ×0.5: 350 kcal",
            "Simple options:",
            "• Творог 150 г: 180 kcal",
            "Left today: 650 kcal",
        ]

    @pytest.mark.asyncio
    async def test_recipes_quota_exceeded(self, context, assistant):
        update = _make_update()
        assistant.recommend_recipes = AsyncMock(side_effect=QuotaExceededError("top up"))

        await cmd_recipes(update, context)

        assert _replies(update) == [MSG_QUOTA_EXCEEDED]
