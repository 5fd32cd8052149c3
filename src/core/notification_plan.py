"""Notification plan builder — pure business logic.

Turns a user's NotificationSettings into the full list of daily-repeating
reminders (meals, water, daily stats). The plan is rebuilt from scratch on
every settings save; there is no diffing against what is already pending.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from src.core.time_parser import (
    format_minutes,
    minutes_since_midnight,
    next_occurrence,
)

if TYPE_CHECKING:
    from src.data.models import NotificationSettings

logger = logging.getLogger(__name__)

# Plan ids are sequential from 1 and stay below ADHOC_ID_START;
# one-off notifications draw from the disjoint range above it.
ADHOC_ID_START = 100_000
ADHOC_ID_END = 1_000_000

_MIN_WATER_FREQUENCY = 1


class NotificationCategory(str, Enum):
    """Category tag, sent to the native side as ``actionTypeId``."""

    MEAL = "meal_reminder"
    WATER = "water_reminder"
    DAILY_STATS = "daily_stats"
    ACHIEVEMENT = "achievement"
    MOTIVATION = "motivation"


@dataclass
class NotificationDescriptor:
    """One notification as handed to the native notification subsystem."""

    id: int
    title: str
    body: str
    at: datetime
    repeats: bool
    category: NotificationCategory
    sound: str = "default"

    def to_native(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "schedule": {"at": self.at, "repeats": self.repeats},
            "sound": self.sound,
            "actionTypeId": self.category.value,
        }


# (settings field, title, body) in plan order
_MEALS: tuple[tuple[str, str, str], ...] = (
    ("breakfast_time", "Breakfast", "Time for breakfast! 🍳"),
    ("lunch_time", "Lunch", "Time for lunch! 🍽️"),
    ("dinner_time", "Dinner", "Time for dinner! 🍲"),
    ("snack_time", "Snack", "Time for a snack! 🥗"),
)

_WATER_TITLE = "Time to drink water"
_WATER_BODY = "Don't forget to drink some water! 💧"
_STATS_TITLE = "Your daily stats"
_STATS_BODY = "Check out today's progress! 📊"


def clamp_frequency(raw: object) -> int:
    """Coerce a water reminder frequency to a positive whole number of minutes."""
    try:
        value = int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.warning("Invalid water reminder frequency %r, using %d", raw, _MIN_WATER_FREQUENCY)
        return _MIN_WATER_FREQUENCY
    return max(value, _MIN_WATER_FREQUENCY)


def water_slots(start: str, end: str, frequency_minutes: object) -> list[str]:
    """Return every "HH:MM" slot from start to end inclusive."""
    step = clamp_frequency(frequency_minutes)
    current = minutes_since_midnight(start)
    last = minutes_since_midnight(end)

    slots: list[str] = []
    while current <= last:
        slots.append(format_minutes(current))
        current += step
    return slots


def build_plan(
    settings: NotificationSettings,
    now: datetime,
) -> list[NotificationDescriptor]:
    """Build the ordered list of reminders for one scheduling pass.

    Ids are assigned from 1 in the order breakfast, lunch, dinner, snack,
    water slots, daily stats. An empty list means "schedule nothing".
    """
    plan: list[NotificationDescriptor] = []
    next_id = 1

    if settings.meal_reminders_enabled:
        for field_name, title, body in _MEALS:
            meal_time = getattr(settings, field_name)
            if not meal_time:
                continue
            plan.append(NotificationDescriptor(
                id=next_id,
                title=title,
                body=body,
                at=next_occurrence(meal_time, now),
                repeats=True,
                category=NotificationCategory.MEAL,
            ))
            next_id += 1

    if settings.water_reminders_enabled:
        for slot in water_slots(
            settings.water_reminder_start,
            settings.water_reminder_end,
            settings.water_reminder_frequency,
        ):
            plan.append(NotificationDescriptor(
                id=next_id,
                title=_WATER_TITLE,
                body=_WATER_BODY,
                at=next_occurrence(slot, now),
                repeats=True,
                category=NotificationCategory.WATER,
            ))
            next_id += 1

    if settings.daily_stats_enabled and settings.daily_stats_time:
        plan.append(NotificationDescriptor(
            id=next_id,
            title=_STATS_TITLE,
            body=_STATS_BODY,
            at=next_occurrence(settings.daily_stats_time, now),
            repeats=True,
            category=NotificationCategory.DAILY_STATS,
        ))
        next_id += 1

    if next_id > ADHOC_ID_START:
        logger.warning("Plan for user %s has %d entries, overlapping ad-hoc ids",
                       settings.user_id, len(plan))

    logger.debug("Built notification plan for user %s: %d entries", settings.user_id, len(plan))
    return plan


def adhoc_notification(
    title: str,
    body: str,
    at: datetime,
    category: NotificationCategory,
) -> NotificationDescriptor:
    """Build a one-shot notification with an id outside the plan range."""
    return NotificationDescriptor(
        id=random.randrange(ADHOC_ID_START, ADHOC_ID_END),
        title=title,
        body=body,
        at=at,
        repeats=False,
        category=category,
    )
