"""Telegram audio adapter — implements AudioPlayer.

"Playing" a reply means sending the synthesized MP3 to the chat; playback
is over as far as the session is concerned once Telegram accepts it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from telegram import Bot

logger = logging.getLogger(__name__)


class TelegramAudioPlayer:
    """Telegram implementation of AudioPlayer for one chat."""

    def __init__(self, bot: Bot, chat_id: int) -> None:
        self._bot = bot
        self._chat_id = chat_id

    async def play(self, audio: bytes) -> None:
        await self._bot.send_audio(
            chat_id=self._chat_id,
            audio=audio,
            filename="vita.mp3",
            title="Vita",
        )
        logger.debug("Sent %d bytes of audio to %d", len(audio), self._chat_id)
