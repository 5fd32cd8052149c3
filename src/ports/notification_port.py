"""Notification port — abstract interface to the device's notification subsystem.

Core modules depend on this protocol, never on a specific host platform.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.core.notification_plan import NotificationDescriptor


class NotificationError(Exception):
    """Raised when any notification backend operation fails."""


class NotificationBackend(Protocol):
    """Abstract local-notification interface used by core modules.

    Permission results are "granted", "denied" or "prompt".
    """

    platform: str

    async def request_permissions(self) -> str: ...

    async def check_permissions(self) -> str: ...

    async def get_pending(self) -> list[int]: ...

    async def cancel(self, ids: list[int]) -> None: ...

    async def schedule(self, notifications: list[NotificationDescriptor]) -> None: ...

    async def register_push(self) -> str | None: ...
