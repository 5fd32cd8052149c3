"""Whisper speech adapter — implements SpeechBackend for voice notes.

A chat has no live microphone: each voice note is one complete utterance.
The bot transcribes the note with OpenAI Whisper, then delivers the text to
whoever currently holds the "microphone" (the wake listener or the voice
session) as a ``partialResults`` event followed by ``end``.

IMPORTANT: This is the ONLY module in the project that uses the OpenAI SDK.
OpenAI is used here exclusively for Whisper audio transcription; the
assistant itself runs behind the hosted AI functions.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from openai import AsyncOpenAI

from src.ports.speech_port import END, PARTIAL_RESULTS, SpeechError, SpeechUnavailableError

if TYPE_CHECKING:
    from src.ports.speech_port import SpeechListener

logger = logging.getLogger(__name__)


class _Subscription:
    def __init__(self, listeners: list[SpeechListener], callback: SpeechListener) -> None:
        self._listeners = listeners
        self._callback = callback

    def remove(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class WhisperSpeechBackend:
    """SpeechBackend whose utterances are transcribed voice notes."""

    def __init__(self, api_key: str, client: AsyncOpenAI | None = None) -> None:
        self._api_key = api_key
        self._client = client
        self._listeners: dict[str, list[SpeechListener]] = {}
        self._language = "ru"
        self.listening = False
        self._run = 0

    def _openai(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def available(self) -> bool:
        return bool(self._api_key) or self._client is not None

    async def check_permissions(self) -> bool:
        # Voice notes are sent deliberately; there is no microphone to grant.
        return True

    async def request_permissions(self) -> bool:
        return True

    async def start(
        self, language: str, partial_results: bool = True, popup: bool = False,
    ) -> None:
        if not await self.available():
            raise SpeechUnavailableError("OPENAI_API_KEY is not configured")
        self._language = language.split("-")[0].lower() or "ru"
        self.listening = True
        self._run += 1

    async def stop(self) -> None:
        self.listening = False

    def add_listener(self, event: str, callback: SpeechListener) -> _Subscription:
        listeners = self._listeners.setdefault(event, [])
        listeners.append(callback)
        return _Subscription(listeners, callback)

    async def transcribe(self, file_path: str) -> str:
        """Transcribe an audio file (OGG, MP3, ...) using OpenAI Whisper.

        Raises SpeechError if the Whisper API call fails.
        """
        try:
            with open(file_path, "rb") as audio_file:
                response = await self._openai().audio.transcriptions.create(
                    model="whisper-1",
                    file=audio_file,
                    language=self._language,
                )
        except Exception as exc:
            logger.error("Whisper transcription failed for %s: %s", file_path, exc)
            raise SpeechError(f"transcription failed: {exc}") from exc

        text = response.text.strip()
        logger.info("Transcribed %d chars from %s", len(text), Path(file_path).name)
        return text

    async def deliver(self, text: str) -> bool:
        """Hand a finished utterance to the current listener.

        Returns False if recognition is not running. If a listener restarts
        recognition while handling the text (the wake phrase opening a
        capture), the new run is left open for the next voice note.
        """
        if not self.listening:
            return False
        run = self._run
        await self._emit(PARTIAL_RESULTS, {"matches": [text]})
        if self.listening and self._run == run:
            self.listening = False
            await self._emit(END, {})
        return True

    async def _emit(self, event: str, payload: dict) -> None:
        for callback in list(self._listeners.get(event, [])):
            await callback(payload)
