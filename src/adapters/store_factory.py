"""Store factory — creates the right data store based on config."""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

from src.config import settings
from src.core.time_parser import now_in

if TYPE_CHECKING:
    from src.ports.store_port import NutritionStore, SettingsStore


def create_stores() -> tuple[SettingsStore, NutritionStore]:
    """Return (settings store, nutrition store) matching DATA_BACKEND.

    "Today" for daily totals is the date in the configured TIMEZONE.
    """
    backend = settings.DATA_BACKEND.lower()
    clock = partial(now_in, settings.TIMEZONE)

    if backend == "sqlite":
        from src.data.db import NotificationSettingsDB, NutritionDB

        return NotificationSettingsDB(), NutritionDB(clock=clock)

    if backend == "hosted":
        from src.adapters.hosted_store import HostedStore

        store = HostedStore(settings.BACKEND_URL, settings.BACKEND_API_KEY, clock=clock)
        return store, store

    raise ValueError(f"Unknown DATA_BACKEND: {backend!r}")
