"""Tests for src.adapters.telegram_notifications — chat as the notification tray."""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from telegram.error import Forbidden, NetworkError

from src.adapters.telegram_notifications import TelegramNotificationHub
from src.core.notification_plan import NotificationCategory, NotificationDescriptor

NOW = datetime(2024, 1, 1, 9, 0)


def _notification(id, at, repeats=True, title="Lunch", body="Time for lunch!"):
    return NotificationDescriptor(
        id=id, title=title, body=body, at=at, repeats=repeats,
        category=NotificationCategory.MEAL,
    )


@pytest.fixture
def bot():
    bot = MagicMock()
    bot.send_message = AsyncMock()
    return bot


@pytest.fixture
def hub(bot):
    return TelegramNotificationHub(bot, allowed_chat_ids=[12345])


class TestBackend:
    @pytest.mark.asyncio
    async def test_permission_follows_allow_list(self, hub):
        assert await hub.backend_for(12345).request_permissions() == "granted"
        assert await hub.backend_for(999).check_permissions() == "denied"

    @pytest.mark.asyncio
    async def test_open_hub_grants_everyone(self, bot):
        hub = TelegramNotificationHub(bot)
        assert await hub.backend_for(999).check_permissions() == "granted"

    @pytest.mark.asyncio
    async def test_schedule_cancel_and_pending(self, hub):
        backend = hub.backend_for(12345)
        await backend.schedule([_notification(2, NOW), _notification(1, NOW)])
        assert await backend.get_pending() == [1, 2]

        await backend.cancel([1, 3])
        assert await backend.get_pending() == [2]
        assert await hub.backend_for(777).get_pending() == []

    @pytest.mark.asyncio
    async def test_schedule_copies_descriptors(self, hub):
        original = _notification(1, NOW)
        await hub.backend_for(12345).schedule([original])
        hub.pending(12345)[1].at += timedelta(days=3)
        assert original.at == NOW

    @pytest.mark.asyncio
    async def test_push_token_is_chat_id(self, hub):
        assert await hub.backend_for(12345).register_push() == "12345"


class TestDispatchDue:
    @pytest.mark.asyncio
    async def test_sends_due_and_rolls_repeating_forward(self, hub, bot):
        backend = hub.backend_for(12345)
        await backend.schedule([
            _notification(1, NOW - timedelta(minutes=1)),
            _notification(2, NOW + timedelta(hours=1)),
        ])

        sent = await hub.dispatch_due(NOW)

        assert sent == 1
        bot.send_message.assert_awaited_once()
        assert bot.send_message.call_args.kwargs["chat_id"] == 12345
        assert bot.send_message.call_args.kwargs["text"] == "*Lunch*\nTime for lunch!"
        assert hub.pending(12345)[1].at == datetime(2024, 1, 2, 8, 59)

    @pytest.mark.asyncio
    async def test_missed_days_fire_once(self, hub, bot):
        await hub.backend_for(12345).schedule([_notification(1, NOW - timedelta(days=3))])
        assert await hub.dispatch_due(NOW) == 1
        assert hub.pending(12345)[1].at == NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_one_shot_removed_after_delivery(self, hub):
        await hub.backend_for(12345).schedule([_notification(150_000, NOW, repeats=False)])
        await hub.dispatch_due(NOW)
        assert hub.pending(12345) == {}

    @pytest.mark.asyncio
    async def test_transient_failure_keeps_reminders_for_retry(self, hub, bot):
        bot.send_message.side_effect = NetworkError("offline")
        await hub.backend_for(12345).schedule([
            _notification(1, NOW),
            _notification(150_000, NOW, repeats=False),
        ])

        assert await hub.dispatch_due(NOW) == 0
        assert sorted(hub.pending(12345)) == [1, 150_000]
        assert hub.pending(12345)[1].at == NOW

        bot.send_message.side_effect = None
        assert await hub.dispatch_due(NOW + timedelta(seconds=30)) == 2
        assert list(hub.pending(12345)) == [1]
        assert hub.pending(12345)[1].at == NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_blocked_chat_settles_reminders(self, hub, bot):
        bot.send_message.side_effect = Forbidden("bot was blocked by the user")
        await hub.backend_for(12345).schedule([
            _notification(1, NOW),
            _notification(150_000, NOW, repeats=False),
        ])

        assert await hub.dispatch_due(NOW) == 0
        assert list(hub.pending(12345)) == [1]
        assert hub.pending(12345)[1].at == NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_new_chat_registered_during_send(self, hub, bot):
        async def send(**kwargs):
            await hub.backend_for(2).get_pending()

        bot.send_message.side_effect = send
        await hub.backend_for(12345).schedule([_notification(1, NOW)])

        assert await hub.dispatch_due(NOW) == 1
        assert hub.pending(2) == {}

    @pytest.mark.asyncio
    async def test_nothing_due(self, hub, bot):
        await hub.backend_for(12345).schedule([_notification(1, NOW + timedelta(seconds=1))])
        assert await hub.dispatch_due(NOW) == 0
        bot.send_message.assert_not_called()
