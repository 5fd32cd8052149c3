"""
Vita Tracker — Data Models.

Notification settings live one row per user and drive every reminder the
app schedules. Nutrition rows (meals, water) are plain entries summed per day
to give the assistant a snapshot of the user's progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, field_validator

from src.core.time_parser import to_display_time, to_storage_time

TIME_FIELDS = (
    "breakfast_time",
    "lunch_time",
    "dinner_time",
    "snack_time",
    "water_reminder_start",
    "water_reminder_end",
    "daily_stats_time",
)


class NotificationSettings(BaseModel):
    """Per-user reminder configuration.

    Times are stored canonically as "HH:MM:SS"; assigning "HH:MM" pads it.

    JSON example:
    {
        "user_id": "12345",
        "meal_reminders_enabled": true,
        "breakfast_time": "08:00:00",
        "water_reminder_frequency": 120,
        "push_token": null
    }
    """

    user_id: str
    push_enabled: bool = True
    meal_reminders_enabled: bool = True
    breakfast_time: str | None = "08:00:00"
    lunch_time: str | None = "13:00:00"
    dinner_time: str | None = "19:00:00"
    snack_time: str | None = None
    water_reminders_enabled: bool = True
    water_reminder_frequency: int = 120   # minutes
    water_reminder_start: str = "08:00:00"
    water_reminder_end: str = "22:00:00"
    achievement_notifications_enabled: bool = True
    motivation_notifications_enabled: bool = True
    daily_stats_enabled: bool = True
    daily_stats_time: str | None = "20:00:00"
    push_token: str | None = None
    device_platform: str | None = None

    model_config = {"validate_assignment": True}

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_user_id(cls, v: str | int) -> str:
        return str(v)

    @field_validator(*TIME_FIELDS, mode="before")
    @classmethod
    def canonical_time(cls, v: str | None) -> str | None:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return to_storage_time(str(v))

    def display_times(self) -> dict[str, str | None]:
        """Return every time field in the "HH:MM" form the UI edits."""
        return {
            name: to_display_time(value) if value else None
            for name, value in ((n, getattr(self, n)) for n in TIME_FIELDS)
        }


# Fields a user may change through an explicit settings save
EDITABLE_FIELDS: frozenset[str] = frozenset(
    name for name in NotificationSettings.model_fields
    if name not in ("user_id", "push_token", "device_platform")
)


@dataclass
class MealEntry:
    """A single logged meal, as written by manual entry or the voice assistant."""

    id: int | str                     # local autoincrement or hosted uuid
    user_id: str
    name: str
    calories: float
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0
    meal_type: str = "snack"          # breakfast | lunch | dinner | snack
    eaten_on: str = ""                # ISO date YYYY-MM-DD


@dataclass
class NutritionGoals:
    """Daily targets as returned by the goal calculator."""

    daily_calories: int
    protein: int
    fat: int
    carbs: int
    water_ml: int
    explanation: str = ""


@dataclass
class DailyTotals:
    """Sum of everything a user logged on one day."""

    date: str                         # ISO date YYYY-MM-DD
    calories: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0
    water_ml: int = 0
    meals: list[str] = field(default_factory=list)

    def to_context(self) -> dict:
        """Shape the totals as the assistant endpoint's ``userContext``."""
        return {
            "date": self.date,
            "calories": round(self.calories),
            "protein": round(self.protein, 1),
            "fat": round(self.fat, 1),
            "carbs": round(self.carbs, 1),
            "water": self.water_ml,
            "meals": list(self.meals),
        }
