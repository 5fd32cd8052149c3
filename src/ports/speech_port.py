"""Speech port — abstract interfaces for speech input and audio output.

The voice session depends on these protocols only. A speech backend reports
progress through events rather than return values:

- ``partialResults``: ``{"matches": [str, ...]}`` while an utterance is heard
- ``end``: ``{}`` when the recognizer stops on its own
- ``error``: ``{"message": str, "fatal": bool}``; fatal means continuous
  listening is not supported on this host at all
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

PARTIAL_RESULTS = "partialResults"
END = "end"
ERROR = "error"

SpeechListener = Callable[[dict], Awaitable[None]]


class SpeechError(Exception):
    """Raised when the speech recognizer fails for a transient reason."""


class SpeechUnavailableError(SpeechError):
    """Raised when speech recognition is not installed or not supported."""


class ListenerHandle(Protocol):
    def remove(self) -> None: ...


class SpeechBackend(Protocol):
    """Abstract speech-recognition interface used by the voice session."""

    async def available(self) -> bool: ...

    async def check_permissions(self) -> bool: ...

    async def request_permissions(self) -> bool: ...

    async def start(
        self, language: str, partial_results: bool = True, popup: bool = False,
    ) -> None: ...

    async def stop(self) -> None: ...

    def add_listener(self, event: str, callback: SpeechListener) -> ListenerHandle: ...


class AudioPlayer(Protocol):
    """Plays synthesized speech; ``play`` returns when playback has finished."""

    async def play(self, audio: bytes) -> None: ...
