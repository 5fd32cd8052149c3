"""Wake-word listener — passive speech recognition while the assistant is idle.

Keeps a recognition session running and watches every partial transcript for
the trigger phrase. The recognizer stops on its own after each utterance and
on transient errors, so the listener re-arms itself after a short gap. If the
host reports that continuous recognition is not supported at all, the
listener switches itself off for the rest of the session.

The listener shares the microphone with the active capture in VoiceSession;
the session always calls ``stop()`` before it starts recording.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from src.ports.speech_port import (
    END,
    ERROR,
    PARTIAL_RESULTS,
    SpeechError,
    SpeechUnavailableError,
)

if TYPE_CHECKING:
    from src.core.timers import TimerHandle, Timers
    from src.ports.speech_port import ListenerHandle, SpeechBackend

logger = logging.getLogger(__name__)

END_RESTART_DELAY = 0.5     # seconds between utterances
ERROR_RESTART_DELAY = 2.0   # backoff after a transient recognizer error


def contains_phrase(matches: list[str], phrase: str) -> bool:
    """Case-insensitive substring match of the phrase against any candidate."""
    needle = phrase.strip().lower()
    if not needle:
        return False
    return any(needle in (m or "").lower() for m in matches)


class WakeWordListener:
    """Passive trigger-phrase detector with self-restart."""

    def __init__(
        self,
        speech: SpeechBackend,
        timers: Timers,
        phrase: str,
        language: str,
        on_wake: Callable[[], Awaitable[object]],
        is_idle: Callable[[], bool],
    ) -> None:
        self._speech = speech
        self._timers = timers
        self._phrase = phrase
        self._language = language
        self._on_wake = on_wake
        self._is_idle = is_idle
        self._handles: list[ListenerHandle] = []
        self._restart_timer: TimerHandle | None = None
        self._wanted = False
        self.active = False
        self.disabled = False

    def attach(self) -> None:
        """Subscribe to recognizer events. Call once."""
        if self._handles:
            return
        self._handles = [
            self._speech.add_listener(PARTIAL_RESULTS, self._handle_partial),
            self._speech.add_listener(END, self._handle_end),
            self._speech.add_listener(ERROR, self._handle_error),
        ]

    def detach(self) -> None:
        for handle in self._handles:
            handle.remove()
        self._handles = []

    async def start(self) -> None:
        """Begin (or resume) passive listening."""
        self._cancel_restart()
        if self.disabled or self.active:
            return
        if not self._is_idle():
            return
        self._wanted = True
        try:
            await self._speech.start(self._language, partial_results=True, popup=False)
        except SpeechUnavailableError as exc:
            self._disable(str(exc))
            return
        except SpeechError as exc:
            logger.warning("Wake listener failed to start: %s", exc)
            self._schedule_restart(ERROR_RESTART_DELAY)
            return
        self.active = True
        logger.debug("Wake listener started (phrase=%r)", self._phrase)

    async def stop(self) -> None:
        """Release the microphone and stay off until ``start()`` is called again."""
        self._wanted = False
        self._cancel_restart()
        if not self.active:
            return
        self.active = False
        try:
            await self._speech.stop()
        except SpeechError as exc:
            logger.debug("Wake listener stop ignored: %s", exc)
        logger.debug("Wake listener stopped")

    # -- recognizer events ----------------------------------------------------

    async def _handle_partial(self, payload: dict) -> None:
        if not self.active:
            return
        matches = payload.get("matches") or []
        if not contains_phrase(matches, self._phrase):
            return
        if not self._is_idle():
            return
        logger.info("Wake phrase detected: %r", matches[0] if matches else "")
        await self._on_wake()

    async def _handle_end(self, payload: dict) -> None:
        if not self.active:
            return
        self.active = False
        self._schedule_restart(END_RESTART_DELAY)

    async def _handle_error(self, payload: dict) -> None:
        if not self.active:
            return
        self.active = False
        message = payload.get("message", "")
        if payload.get("fatal"):
            self._disable(message)
            return
        logger.debug("Wake listener error, restarting: %s", message)
        self._schedule_restart(ERROR_RESTART_DELAY)

    # -- restart handling -----------------------------------------------------

    def _disable(self, reason: str) -> None:
        self.disabled = True
        self.active = False
        self._wanted = False
        self._cancel_restart()
        logger.warning("Continuous listening unavailable, wake word disabled: %s", reason)

    def _schedule_restart(self, delay: float) -> None:
        self._cancel_restart()
        if not self._wanted or self.disabled:
            return
        self._restart_timer = self._timers.call_later(delay, self._restart)

    def _cancel_restart(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    async def _restart(self) -> None:
        self._restart_timer = None
        if not self._wanted or self.disabled or not self._is_idle():
            return
        await self.start()
