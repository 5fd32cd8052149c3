"""Hosted data store adapter — implements SettingsStore and NutritionStore.

Talks to the hosted relational store through its REST interface
(``/rest/v1/<table>``, PostgREST filter syntax). Row-level access control is
enforced server-side; this client only sends the service key.

Tables used: notification_settings, meals, water_log.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import httpx

from src.data.models import DailyTotals, MealEntry, NotificationSettings
from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10


class HostedStore:
    """REST client for the hosted tables."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = _TIMEOUT_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key
        self._timeout = timeout
        self._clock = clock or datetime.now

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        json: dict | list | None = None,
        prefer: str | None = None,
    ) -> list[dict]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(
                    method,
                    f"{self._rest_url}/{table}",
                    params=params,
                    json=json,
                    headers=self._headers(prefer),
                )
                resp.raise_for_status()
                if not resp.content:
                    return []
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Hosted store %s %s failed: %s", method, table, exc)
            raise StoreError(f"{method} {table} failed: {exc}") from exc
        return data if isinstance(data, list) else [data]

    # -----------------------------------------------------------------------
    # SettingsStore
    # -----------------------------------------------------------------------

    async def get_settings(self, user_id: str) -> NotificationSettings:
        """Fetch the user's settings row, inserting defaults if absent."""
        rows = await self._request(
            "GET", "notification_settings",
            params={"user_id": f"eq.{user_id}", "select": "*"},
        )
        if not rows:
            rows = await self._request(
                "POST", "notification_settings",
                json={"user_id": str(user_id)},
                prefer="return=representation",
            )
            logger.info("Default notification settings created for user %s", user_id)
        if not rows:
            raise StoreError(f"No notification settings for user {user_id}")
        return NotificationSettings(**rows[0])

    async def update_settings(self, user_id: str, changes: dict) -> NotificationSettings:
        current = await self.get_settings(user_id)
        merged = NotificationSettings(**{**current.model_dump(), **changes, "user_id": current.user_id})
        values = merged.model_dump(include=set(changes) - {"user_id"})
        if not values:
            return merged

        rows = await self._request(
            "PATCH", "notification_settings",
            params={"user_id": f"eq.{user_id}"},
            json=values,
            prefer="return=representation",
        )
        logger.info("Notification settings updated for user %s: %s",
                    user_id, ", ".join(sorted(values)))
        return NotificationSettings(**rows[0]) if rows else merged

    async def save_push_token(self, user_id: str, token: str, platform: str) -> None:
        await self._request(
            "PATCH", "notification_settings",
            params={"user_id": f"eq.{user_id}"},
            json={"push_token": token, "device_platform": platform},
        )
        logger.info("Push token stored for user %s (%s)", user_id, platform)

    # -----------------------------------------------------------------------
    # NutritionStore
    # -----------------------------------------------------------------------

    async def get_daily_totals(
        self, user_id: str, target_date: str | None = None,
    ) -> DailyTotals:
        if target_date is None:
            target_date = self._clock().date().isoformat()

        meals = await self._request(
            "GET", "meals",
            params={
                "user_id": f"eq.{user_id}",
                "meal_date": f"eq.{target_date}",
                "select": "meal_type,notes,total_calories,total_protein,total_fat,total_carbs",
            },
        )
        water = await self._request(
            "GET", "water_log",
            params={
                "user_id": f"eq.{user_id}",
                "log_date": f"eq.{target_date}",
                "select": "amount_ml",
            },
        )
        return DailyTotals(
            date=target_date,
            calories=sum(float(m.get("total_calories") or 0) for m in meals),
            protein=sum(float(m.get("total_protein") or 0) for m in meals),
            fat=sum(float(m.get("total_fat") or 0) for m in meals),
            carbs=sum(float(m.get("total_carbs") or 0) for m in meals),
            water_ml=sum(int(w.get("amount_ml") or 0) for w in water),
            meals=[m.get("notes") or m.get("meal_type") or "meal" for m in meals],
        )

    async def add_water(self, user_id: str, amount_ml: int) -> None:
        if amount_ml <= 0:
            raise ValueError("amount_ml must be positive")
        await self._request(
            "POST", "water_log",
            json={
                "user_id": str(user_id),
                "amount_ml": amount_ml,
                "log_date": self._clock().date().isoformat(),
            },
        )
        logger.info("Water logged: %d ml for user %s", amount_ml, user_id)

    async def add_meal(
        self,
        user_id: str,
        name: str,
        calories: float,
        protein: float = 0.0,
        fat: float = 0.0,
        carbs: float = 0.0,
        meal_type: str = "snack",
    ) -> MealEntry:
        if calories < 0:
            raise ValueError("calories must not be negative")
        now = self._clock()
        rows = await self._request(
            "POST", "meals",
            json={
                "user_id": str(user_id),
                "meal_type": meal_type,
                "meal_date": now.date().isoformat(),
                "meal_time": now.strftime("%H:%M:%S"),
                "total_calories": calories,
                "total_protein": protein,
                "total_fat": fat,
                "total_carbs": carbs,
                "notes": name,
            },
            prefer="return=representation",
        )
        meal_id = rows[0].get("id", 0) if rows else 0
        logger.info("Meal logged: '%s' %.0f kcal for user %s", name, calories, user_id)
        return MealEntry(
            id=meal_id,
            user_id=str(user_id),
            name=name,
            calories=calories,
            protein=protein,
            fat=fat,
            carbs=carbs,
            meal_type=meal_type,
            eaten_on=now.date().isoformat(),
        )
