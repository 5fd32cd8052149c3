"""
Vita Tracker — Local Database.

SQLite-backed implementation of the settings and nutrition stores, used when
DATA_BACKEND=sqlite (single-host deployments and tests). The hosted REST
store in src.adapters.hosted_store satisfies the same protocols.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable

from src.data.models import DailyTotals, MealEntry, NotificationSettings

logger = logging.getLogger(__name__)

_BOOL_FIELDS = (
    "push_enabled",
    "meal_reminders_enabled",
    "water_reminders_enabled",
    "achievement_notifications_enabled",
    "motivation_notifications_enabled",
    "daily_stats_enabled",
)


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _prepare_path(db_path: str | None) -> str:
    if db_path is None:
        from src.config import settings
        db_path = settings.DATABASE_PATH
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return db_path


class NotificationSettingsDB:
    """One notification_settings row per user.

    Rows are created lazily on first read, changed only by an explicit
    update, and never deleted.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._db_path = _prepare_path(db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return _connect(self._db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notification_settings (
                    user_id                           TEXT PRIMARY KEY,
                    push_enabled                      INTEGER NOT NULL DEFAULT 1,
                    meal_reminders_enabled            INTEGER NOT NULL DEFAULT 1,
                    breakfast_time                    TEXT DEFAULT '08:00:00',
                    lunch_time                        TEXT DEFAULT '13:00:00',
                    dinner_time                       TEXT DEFAULT '19:00:00',
                    snack_time                        TEXT,
                    water_reminders_enabled           INTEGER NOT NULL DEFAULT 1,
                    water_reminder_frequency          INTEGER NOT NULL DEFAULT 120,
                    water_reminder_start              TEXT NOT NULL DEFAULT '08:00:00',
                    water_reminder_end                TEXT NOT NULL DEFAULT '22:00:00',
                    achievement_notifications_enabled INTEGER NOT NULL DEFAULT 1,
                    motivation_notifications_enabled  INTEGER NOT NULL DEFAULT 1,
                    daily_stats_enabled               INTEGER NOT NULL DEFAULT 1,
                    daily_stats_time                  TEXT DEFAULT '20:00:00',
                    push_token                        TEXT,
                    device_platform                   TEXT
                )
            """)
        logger.debug("Notification settings table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_settings(row: sqlite3.Row) -> NotificationSettings:
        data = dict(row)
        for name in _BOOL_FIELDS:
            data[name] = bool(data[name])
        return NotificationSettings(**data)

    def _fetch(self, user_id: str) -> NotificationSettings | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM notification_settings WHERE user_id = ?", (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_settings(row)

    async def get_settings(self, user_id: str) -> NotificationSettings:
        """Fetch the user's settings, creating the default row if absent."""
        user_id = str(user_id)
        existing = self._fetch(user_id)
        if existing is not None:
            return existing

        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO notification_settings (user_id) VALUES (?)",
                (user_id,),
            )
        logger.info("Default notification settings created for user %s", user_id)
        return self._fetch(user_id)  # type: ignore[return-value]

    async def update_settings(self, user_id: str, changes: dict) -> NotificationSettings:
        """Validate and persist ``changes``; returns the saved record."""
        current = await self.get_settings(user_id)
        merged = NotificationSettings(**{**current.model_dump(), **changes, "user_id": current.user_id})
        values = merged.model_dump(include=set(changes))
        if not values:
            return merged

        assignments = ", ".join(f"{name} = ?" for name in values)
        params = [int(v) if isinstance(v, bool) else v for v in values.values()]
        with self._connect() as conn:
            conn.execute(
                f"UPDATE notification_settings SET {assignments} WHERE user_id = ?",
                (*params, merged.user_id),
            )
        logger.info("Notification settings updated for user %s: %s",
                    merged.user_id, ", ".join(sorted(values)))
        return merged

    async def save_push_token(self, user_id: str, token: str, platform: str) -> None:
        await self.get_settings(user_id)
        with self._connect() as conn:
            conn.execute(
                "UPDATE notification_settings SET push_token = ?, device_platform = ? "
                "WHERE user_id = ?",
                (token, platform, str(user_id)),
            )
        logger.info("Push token stored for user %s (%s)", user_id, platform)


class NutritionDB:
    """Meals and water entries with per-day aggregation."""

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db_path = _prepare_path(db_path)
        self._clock = clock or datetime.now
        self._init_db()

    def _today(self) -> str:
        return self._clock().date().isoformat()

    def _connect(self) -> sqlite3.Connection:
        return _connect(self._db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS meals (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id    TEXT    NOT NULL,
                    name       TEXT    NOT NULL,
                    calories   REAL    NOT NULL DEFAULT 0,
                    protein    REAL    NOT NULL DEFAULT 0,
                    fat        REAL    NOT NULL DEFAULT 0,
                    carbs      REAL    NOT NULL DEFAULT 0,
                    meal_type  TEXT    NOT NULL DEFAULT 'snack',
                    eaten_on   TEXT    NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS water_log (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id    TEXT    NOT NULL,
                    amount_ml  INTEGER NOT NULL,
                    logged_on  TEXT    NOT NULL
                )
            """)
        logger.debug("Nutrition tables initialized at %s", self._db_path)

    async def add_meal(
        self,
        user_id: str,
        name: str,
        calories: float,
        protein: float = 0.0,
        fat: float = 0.0,
        carbs: float = 0.0,
        meal_type: str = "snack",
        eaten_on: str | None = None,
    ) -> MealEntry:
        """Insert a meal. eaten_on defaults to today."""
        if eaten_on is None:
            eaten_on = self._today()
        if calories < 0:
            raise ValueError("calories must not be negative")

        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO meals
                    (user_id, name, calories, protein, fat, carbs, meal_type, eaten_on)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (str(user_id), name, calories, protein, fat, carbs, meal_type, eaten_on),
            )
            meal_id = cursor.lastrowid

        logger.info("Meal logged: #%d '%s' %.0f kcal for user %s", meal_id, name, calories, user_id)
        return MealEntry(
            id=meal_id,
            user_id=str(user_id),
            name=name,
            calories=calories,
            protein=protein,
            fat=fat,
            carbs=carbs,
            meal_type=meal_type,
            eaten_on=eaten_on,
        )

    async def add_water(
        self, user_id: str, amount_ml: int, logged_on: str | None = None,
    ) -> None:
        if amount_ml <= 0:
            raise ValueError("amount_ml must be positive")
        if logged_on is None:
            logged_on = self._today()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO water_log (user_id, amount_ml, logged_on) VALUES (?, ?, ?)",
                (str(user_id), amount_ml, logged_on),
            )
        logger.info("Water logged: %d ml for user %s", amount_ml, user_id)

    async def get_daily_totals(
        self, user_id: str, target_date: str | None = None,
    ) -> DailyTotals:
        """Sum meals and water for one day (today by default)."""
        if target_date is None:
            target_date = self._today()

        with self._connect() as conn:
            meals = conn.execute(
                "SELECT * FROM meals WHERE user_id = ? AND eaten_on = ? ORDER BY id",
                (str(user_id), target_date),
            ).fetchall()
            water = conn.execute(
                "SELECT COALESCE(SUM(amount_ml), 0) AS total FROM water_log "
                "WHERE user_id = ? AND logged_on = ?",
                (str(user_id), target_date),
            ).fetchone()

        return DailyTotals(
            date=target_date,
            calories=sum(m["calories"] for m in meals),
            protein=sum(m["protein"] for m in meals),
            fat=sum(m["fat"] for m in meals),
            carbs=sum(m["carbs"] for m in meals),
            water_ml=int(water["total"]),
            meals=[m["name"] for m in meals],
        )
