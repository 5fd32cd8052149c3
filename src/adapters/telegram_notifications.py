"""Telegram notification adapter — implements NotificationBackend.

The chat plays the part of the device notification tray: reminders are held
per chat and delivered as messages when due. ``TelegramNotificationHub`` owns
the pending reminders for every chat and is polled by the bot's job queue;
``TelegramNotificationBackend`` is the per-chat view the core service uses.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from telegram.error import BadRequest, Forbidden, TelegramError

if TYPE_CHECKING:
    from telegram import Bot

    from src.core.notification_plan import NotificationDescriptor

logger = logging.getLogger(__name__)

_REPEAT_INTERVAL = timedelta(days=1)


class TelegramNotificationHub:
    """Pending reminders for all chats, delivered through one bot."""

    platform = "telegram"

    def __init__(self, bot: Bot, allowed_chat_ids: list[int] | None = None) -> None:
        self._bot = bot
        self._allowed = set(allowed_chat_ids or [])
        self._pending: dict[int, dict[int, NotificationDescriptor]] = {}

    def backend_for(self, chat_id: int) -> TelegramNotificationBackend:
        return TelegramNotificationBackend(self, chat_id)

    def is_allowed(self, chat_id: int) -> bool:
        return not self._allowed or chat_id in self._allowed

    def pending(self, chat_id: int) -> dict[int, NotificationDescriptor]:
        return self._pending.setdefault(chat_id, {})

    async def dispatch_due(self, now: datetime) -> int:
        """Send every reminder due at or before ``now``. Returns the count sent.

        Repeating reminders are moved forward a day at a time until they are
        in the future again; one-shot reminders are dropped once delivered.
        A reminder whose send fails for a transient reason stays due and is
        retried on the next call; one the chat can never receive (blocked
        bot, rejected message) is settled as if sent.
        """
        sent = 0
        for chat_id, pending in list(self._pending.items()):
            for notification in sorted(pending.values(), key=lambda n: n.at):
                if notification.at > now:
                    continue
                try:
                    await self._bot.send_message(
                        chat_id=chat_id,
                        text=f"*{notification.title}*\n{notification.body}",
                        parse_mode="Markdown",
                    )
                    sent += 1
                except (Forbidden, BadRequest) as exc:
                    logger.error("Notification #%d can't be delivered to %d: %s",
                                 notification.id, chat_id, exc)
                except TelegramError as exc:
                    logger.warning("Failed to deliver notification #%d to %d, will retry: %s",
                                   notification.id, chat_id, exc)
                    continue

                if notification.repeats:
                    while notification.at <= now:
                        notification.at += _REPEAT_INTERVAL
                elif pending.get(notification.id) is notification:
                    del pending[notification.id]
        if sent:
            logger.info("Delivered %d due notifications", sent)
        return sent


class TelegramNotificationBackend:
    """NotificationBackend for a single chat."""

    platform = TelegramNotificationHub.platform

    def __init__(self, hub: TelegramNotificationHub, chat_id: int) -> None:
        self._hub = hub
        self._chat_id = chat_id

    async def request_permissions(self) -> str:
        return "granted" if self._hub.is_allowed(self._chat_id) else "denied"

    async def check_permissions(self) -> str:
        return await self.request_permissions()

    async def get_pending(self) -> list[int]:
        return sorted(self._hub.pending(self._chat_id))

    async def cancel(self, ids: list[int]) -> None:
        pending = self._hub.pending(self._chat_id)
        for notification_id in ids:
            pending.pop(notification_id, None)

    async def schedule(self, notifications: list[NotificationDescriptor]) -> None:
        pending = self._hub.pending(self._chat_id)
        for notification in notifications:
            pending[notification.id] = replace(notification)
        logger.debug("Chat %d now has %d pending notifications", self._chat_id, len(pending))

    async def register_push(self) -> str | None:
        """The chat id is the only address a bot needs to reach the user."""
        return str(self._chat_id)
