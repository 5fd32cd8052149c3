"""Assistant port — abstract interface to the remote diet-coach functions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.integrations.assistant_api import AssistantReply


class AssistantPort(Protocol):
    """Conversational assistant used by the voice session."""

    async def ask(
        self,
        text: str,
        user_context: dict | None = None,
        history: list[dict] | None = None,
    ) -> AssistantReply: ...


class SpeechSynthesizer(Protocol):
    """Text-to-speech; returns encoded audio (MP3) bytes."""

    async def synthesize(self, text: str, voice: str) -> bytes: ...
