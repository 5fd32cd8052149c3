"""
Vita Tracker — Notification Service.

Keeps the device's pending reminders in sync with the user's settings.
Every settings save rebuilds the full plan and replaces whatever is pending:
cancel everything first, then schedule the new batch. A failure between the
two steps leaves no reminders rather than duplicates; the next save fixes it.

This module is platform-agnostic: it depends on the NotificationBackend and
SettingsStore protocols, not on specific implementations.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from src.core.notification_plan import (
    NotificationCategory,
    adhoc_notification,
    build_plan,
)
from src.data.models import EDITABLE_FIELDS

if TYPE_CHECKING:
    from src.core.notification_plan import NotificationDescriptor
    from src.data.models import NotificationSettings
    from src.ports.notification_port import NotificationBackend
    from src.ports.store_port import SettingsStore

logger = logging.getLogger(__name__)

_GRANTED = "granted"
_ADHOC_DELAY = timedelta(seconds=1)


class NotificationService:
    """Process-scoped reminder scheduler. Create one per host and inject it."""

    def __init__(
        self,
        backend: NotificationBackend,
        store: SettingsStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._store = store
        self._clock = clock or datetime.now
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, user_id: str | None = None) -> bool:
        """Request notification permission and register for push.

        Safe to call repeatedly. Returns True if notifications may be shown.
        """
        if self._initialized:
            return True
        try:
            status = await self._backend.request_permissions()
            if status != _GRANTED:
                logger.warning("Local notifications permission denied (%s)", status)
                return False

            token = await self._backend.register_push()
            if token and user_id is not None:
                await self._save_push_token(user_id, token)

            self._initialized = True
            logger.info("Notification service initialized on %s", self._backend.platform)
            return True
        except Exception as exc:
            logger.error("Failed to initialize notifications: %s", exc)
            return False

    async def _save_push_token(self, user_id: str, token: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_push_token(user_id, token, self._backend.platform)
            logger.info("Push token saved for user %s", user_id)
        except Exception as exc:
            logger.error("Failed to save push token for %s: %s", user_id, exc)

    async def check_permissions(self) -> bool:
        """Re-check (never re-request) notification permission."""
        try:
            return await self._backend.check_permissions() == _GRANTED
        except Exception as exc:
            logger.error("Failed to check notification permissions: %s", exc)
            return False

    # -----------------------------------------------------------------------
    # Cancel-then-reschedule
    # -----------------------------------------------------------------------

    async def apply(self, plan: list[NotificationDescriptor]) -> int | None:
        """Replace all pending reminders with ``plan``.

        Returns the pending count afterwards, or None if nothing could be
        scheduled (permission missing or a backend call failed).
        """
        if not await self.check_permissions():
            logger.warning("Notifications not permitted, %d reminders not scheduled", len(plan))
            return None

        try:
            pending = await self._backend.get_pending()
            if pending:
                await self._backend.cancel(pending)
                logger.info("Cancelled %d pending notifications", len(pending))

            if plan:
                await self._backend.schedule(plan)
                logger.info("Scheduled %d notifications", len(plan))

            return len(await self._backend.get_pending())
        except Exception as exc:
            logger.error("Failed to schedule notifications: %s", exc)
            return None

    async def pending_count(self) -> int:
        try:
            return len(await self._backend.get_pending())
        except Exception as exc:
            logger.error("Failed to get pending notifications: %s", exc)
            return 0

    async def cancel_all(self) -> None:
        try:
            pending = await self._backend.get_pending()
            if pending:
                await self._backend.cancel(pending)
                logger.info("All notifications cancelled")
        except Exception as exc:
            logger.error("Failed to cancel notifications: %s", exc)

    async def reschedule(
        self,
        settings: NotificationSettings,
        now: datetime | None = None,
    ) -> int | None:
        """Bring pending reminders in line with ``settings``."""
        if not settings.push_enabled:
            await self.cancel_all()
            return 0
        plan = build_plan(settings, now or self._clock())
        return await self.apply(plan)

    async def save_settings(
        self,
        user_id: str,
        changes: dict,
        now: datetime | None = None,
    ) -> tuple[NotificationSettings, int | None]:
        """Persist a settings edit, then reschedule from the saved record.

        Raises ValueError for unknown fields or invalid values; store errors
        propagate so the caller can report that nothing was saved.
        """
        if self._store is None:
            raise RuntimeError("NotificationService has no settings store")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        saved = await self._store.update_settings(user_id, changes)
        pending = await self.reschedule(saved, now)
        return saved, pending

    # -----------------------------------------------------------------------
    # One-off notifications
    # -----------------------------------------------------------------------

    async def send_achievement(self, user_id: str, title: str, body: str) -> bool:
        """Show an achievement right away if the user opted in."""
        return await self._send_adhoc(
            user_id, "achievement_notifications_enabled",
            title, body, NotificationCategory.ACHIEVEMENT,
        )

    async def send_motivation(self, user_id: str, message: str) -> bool:
        """Show a motivational nudge right away if the user opted in."""
        return await self._send_adhoc(
            user_id, "motivation_notifications_enabled",
            "Motivation", message, NotificationCategory.MOTIVATION,
        )

    async def _send_adhoc(
        self,
        user_id: str,
        toggle: str,
        title: str,
        body: str,
        category: NotificationCategory,
    ) -> bool:
        if self._store is None:
            return False
        try:
            settings = await self._store.get_settings(user_id)
            if not getattr(settings, toggle):
                return False
            notification = adhoc_notification(
                title, body, self._clock() + _ADHOC_DELAY, category,
            )
            await self._backend.schedule([notification])
            logger.info("Sent %s notification #%d to user %s",
                        category.value, notification.id, user_id)
            return True
        except Exception as exc:
            logger.error("Failed to send %s notification: %s", category.value, exc)
            return False
