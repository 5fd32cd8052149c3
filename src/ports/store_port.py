"""Store port — abstract interface to the data store.

The hosted store and the local SQLite store both satisfy these protocols.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.data.models import DailyTotals, MealEntry, NotificationSettings


class StoreError(Exception):
    """Raised when any data store operation fails."""


class SettingsStore(Protocol):
    """Notification settings, one record per user."""

    async def get_settings(self, user_id: str) -> NotificationSettings: ...

    async def update_settings(
        self, user_id: str, changes: dict,
    ) -> NotificationSettings: ...

    async def save_push_token(
        self, user_id: str, token: str, platform: str,
    ) -> None: ...


class NutritionStore(Protocol):
    """Meal and water entries, aggregated per day."""

    async def get_daily_totals(
        self, user_id: str, target_date: str | None = None,
    ) -> DailyTotals: ...

    async def add_water(self, user_id: str, amount_ml: int) -> None: ...

    async def add_meal(
        self,
        user_id: str,
        name: str,
        calories: float,
        protein: float = 0.0,
        fat: float = 0.0,
        carbs: float = 0.0,
        meal_type: str = "snack",
    ) -> MealEntry: ...
