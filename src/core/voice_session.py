"""
Vita Tracker — Voice Session.

Four-state loop driving the voice assistant:

    idle → listening → processing → speaking → idle

While idle, the wake-word listener holds the microphone. Starting an active
capture (button press or wake phrase) first stops the passive listener, then
records for at most ``listen_timeout`` seconds. A transcript goes to the
hosted assistant together with today's nutrition totals; the reply's actions
are written to the nutrition store like any manual entry, and the reply text
is spoken back. Every path, errors included, ends in idle with the passive
listener re-armed.

Coordination is by state only: all transitions run on the event loop, and a
request that does not fit the current state is ignored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from src.core.timers import AsyncioTimers
from src.core.wake_listener import WakeWordListener
from src.integrations.assistant_api import QuotaExceededError, RateLimitedError
from src.ports.speech_port import (
    END,
    ERROR,
    PARTIAL_RESULTS,
    SpeechError,
    SpeechUnavailableError,
)

if TYPE_CHECKING:
    from src.core.timers import TimerHandle, Timers
    from src.ports.assistant_port import AssistantPort, SpeechSynthesizer
    from src.ports.speech_port import AudioPlayer, ListenerHandle, SpeechBackend
    from src.ports.store_port import NutritionStore

logger = logging.getLogger(__name__)

DEFAULT_LISTEN_TIMEOUT = 5.0
DEFAULT_RESTART_DELAY = 1.0
_MAX_HISTORY = 10

# User-facing notices
MSG_RATE_LIMITED = "Too many requests, please try again later."
MSG_QUOTA_EXCEEDED = "AI credits are exhausted. Please top up and try again."
MSG_PROCESS_FAILED = "Sorry, I couldn't process that command."
MSG_NO_SPEECH = "I didn't catch that. Please try again."
MSG_MIC_DENIED = "Microphone access is denied. Allow it in your device settings to talk to Vita."
MSG_SPEECH_UNAVAILABLE = (
    "Speech recognition is not available. Reinstall the app or sync the "
    "speech plugin to use voice commands."
)
MSG_LISTEN_FAILED = "Couldn't start listening. Please try again."


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class VoiceSession:
    """Owns the microphone, the audio player and the assistant round-trip."""

    def __init__(
        self,
        speech: SpeechBackend,
        assistant: AssistantPort,
        synthesizer: SpeechSynthesizer,
        player: AudioPlayer,
        *,
        user_id: str,
        nutrition: NutritionStore | None = None,
        notify: Callable[[str], Awaitable[None]] | None = None,
        timers: Timers | None = None,
        wake_phrase: str = "vita",
        language: str = "ru-RU",
        voice: str = "alena",
        listen_timeout: float = DEFAULT_LISTEN_TIMEOUT,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._speech = speech
        self._assistant = assistant
        self._synthesizer = synthesizer
        self._player = player
        self._user_id = user_id
        self._nutrition = nutrition
        self._notify_cb = notify
        self._timers = timers or AsyncioTimers()
        self._language = language
        self._voice = voice
        self._listen_timeout = listen_timeout
        self._restart_delay = restart_delay
        self._clock = clock or datetime.now

        self._state = VoiceState.IDLE
        self._recognition_active = False
        self._voice_disabled = False
        self._closed = False
        self._listen_timer: TimerHandle | None = None
        self._restart_timer: TimerHandle | None = None
        self._handles: list[ListenerHandle] = []
        self._history: list[dict] = []

        self.wake = WakeWordListener(
            speech,
            self._timers,
            phrase=wake_phrase,
            language=language,
            on_wake=self.start_listening,
            is_idle=lambda: self._state is VoiceState.IDLE and not self._closed,
        )

    @property
    def state(self) -> VoiceState:
        return self._state

    @property
    def recognition_active(self) -> bool:
        return self._recognition_active

    @property
    def speech(self) -> SpeechBackend:
        return self._speech

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def initialize(self) -> None:
        """Subscribe to recognizer events and arm the wake-word listener."""
        if not self._handles:
            self._handles = [
                self._speech.add_listener(PARTIAL_RESULTS, self._on_partial_results),
                self._speech.add_listener(END, self._on_recognition_end),
                self._speech.add_listener(ERROR, self._on_recognition_error),
            ]
            self.wake.attach()
        await self._restart_passive()

    async def close(self) -> None:
        """Release every resource the session holds."""
        self._closed = True
        self._cancel_listen_timer()
        self._cancel_restart_timer()
        await self.wake.stop()
        if self._recognition_active:
            self._recognition_active = False
            await self._stop_recognition()
        for handle in self._handles:
            handle.remove()
        self._handles = []
        self.wake.detach()
        self._set_state(VoiceState.IDLE)

    # -----------------------------------------------------------------------
    # idle → listening
    # -----------------------------------------------------------------------

    async def start_listening(self) -> bool:
        """Begin an active capture. Ignored unless the session is idle.

        Returns True if recording started.
        """
        if self._state is not VoiceState.IDLE or self._closed:
            logger.debug("start_listening ignored in state %s", self._state.value)
            return False
        if self._voice_disabled:
            await self._notify(MSG_SPEECH_UNAVAILABLE)
            return False

        self._set_state(VoiceState.LISTENING)
        self._cancel_restart_timer()
        await self.wake.stop()

        try:
            if not await self._speech.available():
                raise SpeechUnavailableError("speech recognition plugin not available")
            if not await self._speech.check_permissions():
                if not await self._speech.request_permissions():
                    logger.warning("Microphone permission denied for user %s", self._user_id)
                    self._set_state(VoiceState.IDLE)
                    await self._notify(MSG_MIC_DENIED)
                    return False
            self._recognition_active = True
            await self._speech.start(self._language, partial_results=True, popup=False)
        except SpeechUnavailableError as exc:
            logger.error("Voice disabled for this session: %s", exc)
            self._recognition_active = False
            self._voice_disabled = True
            self._set_state(VoiceState.IDLE)
            await self._notify(MSG_SPEECH_UNAVAILABLE)
            return False
        except SpeechError as exc:
            logger.error("Failed to start recognition: %s", exc)
            self._recognition_active = False
            await self._return_to_idle(MSG_LISTEN_FAILED)
            return False

        if self._state is not VoiceState.LISTENING:
            # A transcript arrived while start() was still pending.
            return True
        self._listen_timer = self._timers.call_later(
            self._listen_timeout, self._on_listen_timeout,
        )
        logger.info("Listening for user %s", self._user_id)
        return True

    # -----------------------------------------------------------------------
    # listening → processing | idle
    # -----------------------------------------------------------------------

    async def _on_partial_results(self, payload: dict) -> None:
        if not self._recognition_active or self._state is not VoiceState.LISTENING:
            return
        transcript = next(
            (m.strip() for m in payload.get("matches") or [] if m and m.strip()), "",
        )
        if not transcript:
            return

        self._cancel_listen_timer()
        self._recognition_active = False
        self._set_state(VoiceState.PROCESSING)
        await self._stop_recognition()
        logger.info("Heard: %s", transcript[:80])
        await self._process(transcript)

    async def _on_recognition_end(self, payload: dict) -> None:
        # The recognizer stopped on its own; the listen timer decides what's next.
        if self._recognition_active:
            self._recognition_active = False

    async def _on_recognition_error(self, payload: dict) -> None:
        if not self._recognition_active or self._state is not VoiceState.LISTENING:
            return
        logger.warning("Recognition error while listening: %s", payload.get("message", ""))
        self._cancel_listen_timer()
        self._recognition_active = False
        if payload.get("fatal"):
            self._voice_disabled = True
            self._set_state(VoiceState.IDLE)
            await self._notify(MSG_SPEECH_UNAVAILABLE)
            return
        await self._return_to_idle(MSG_NO_SPEECH)

    async def _on_listen_timeout(self) -> None:
        self._listen_timer = None
        if self._state is not VoiceState.LISTENING:
            return
        logger.info("No speech within %.1fs", self._listen_timeout)
        self._recognition_active = False
        await self._stop_recognition()
        await self._return_to_idle(MSG_NO_SPEECH)

    # -----------------------------------------------------------------------
    # processing → speaking | idle
    # -----------------------------------------------------------------------

    async def handle_transcript(self, text: str) -> bool:
        """Process text that did not come through the microphone.

        Used for voice notes transcribed elsewhere and for typed messages.
        Returns False if the session is busy.
        """
        text = (text or "").strip()
        if not text or self._state is not VoiceState.IDLE or self._closed:
            return False
        self._set_state(VoiceState.PROCESSING)
        self._cancel_restart_timer()
        await self.wake.stop()
        await self._process(text)
        return True

    async def _process(self, transcript: str) -> None:
        context = await self._daily_context()
        try:
            reply = await self._assistant.ask(
                transcript, user_context=context, history=list(self._history),
            )
        except RateLimitedError:
            await self._return_to_idle(MSG_RATE_LIMITED)
            return
        except QuotaExceededError:
            await self._return_to_idle(MSG_QUOTA_EXCEEDED)
            return
        except Exception as exc:
            logger.error("Assistant call failed: %s", exc)
            await self._return_to_idle(MSG_PROCESS_FAILED)
            return

        self._remember("user", transcript)
        self._remember("assistant", reply.text)
        await self._apply_actions(reply.actions)
        await self._notify(reply.text)
        await self._speak(reply.text)

    async def _daily_context(self) -> dict | None:
        if self._nutrition is None:
            return None
        try:
            totals = await self._nutrition.get_daily_totals(
                self._user_id, self._clock().date().isoformat(),
            )
        except Exception as exc:
            logger.warning("Daily totals unavailable for assistant context: %s", exc)
            return None
        return totals.to_context()

    async def _apply_actions(self, actions: list[dict]) -> None:
        """Write assistant-requested entries the same way manual entry does."""
        if not actions or self._nutrition is None:
            return
        for action in actions:
            kind = action.get("type")
            try:
                if kind == "log_water":
                    await self._nutrition.add_water(self._user_id, int(action["amount_ml"]))
                elif kind == "log_meal":
                    await self._nutrition.add_meal(
                        self._user_id,
                        name=str(action["name"]),
                        calories=float(action.get("calories", 0)),
                        protein=float(action.get("protein", 0)),
                        fat=float(action.get("fat", 0)),
                        carbs=float(action.get("carbs", 0)),
                        meal_type=str(action.get("meal_type", "snack")),
                    )
                else:
                    logger.info("Ignoring unknown assistant action %r", kind)
                    continue
                logger.info("Applied assistant action %s for user %s", kind, self._user_id)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Malformed assistant action %r: %s", action, exc)
            except Exception as exc:
                logger.error("Failed to apply assistant action %s: %s", kind, exc)

    def _remember(self, role: str, content: str) -> None:
        self._history.append({"role": role, "content": content})
        del self._history[:-_MAX_HISTORY]

    # -----------------------------------------------------------------------
    # speaking → idle
    # -----------------------------------------------------------------------

    async def _speak(self, text: str) -> None:
        self._set_state(VoiceState.SPEAKING)
        try:
            audio = await self._synthesizer.synthesize(text, self._voice)
            await self._player.play(audio)
        except Exception as exc:
            logger.warning("Speech playback failed: %s", exc)
        await self._return_to_idle()

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    async def _return_to_idle(self, message: str | None = None) -> None:
        self._set_state(VoiceState.IDLE)
        if message:
            await self._notify(message)
        self._schedule_passive_restart()

    def _schedule_passive_restart(self) -> None:
        self._cancel_restart_timer()
        if self._closed:
            return
        self._restart_timer = self._timers.call_later(
            self._restart_delay, self._restart_passive,
        )

    async def _restart_passive(self) -> None:
        self._restart_timer = None
        if self._state is not VoiceState.IDLE or self._closed or self._voice_disabled:
            return
        try:
            if not await self._speech.available():
                return
            if not await self._speech.check_permissions():
                logger.debug("Microphone not granted, wake word stays off")
                return
        except SpeechError as exc:
            logger.debug("Wake listener not restarted: %s", exc)
            return
        if self._state is not VoiceState.IDLE or self._closed:
            return
        await self.wake.start()

    async def _stop_recognition(self) -> None:
        try:
            await self._speech.stop()
        except SpeechError as exc:
            logger.debug("Recognition stop ignored: %s", exc)

    def _cancel_listen_timer(self) -> None:
        if self._listen_timer is not None:
            self._listen_timer.cancel()
            self._listen_timer = None

    def _cancel_restart_timer(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    def _set_state(self, state: VoiceState) -> None:
        if state is not self._state:
            logger.debug("Voice state %s → %s", self._state.value, state.value)
            self._state = state

    async def _notify(self, message: str) -> None:
        if self._notify_cb is None:
            return
        try:
            await self._notify_cb(message)
        except Exception as exc:
            logger.warning("Failed to deliver voice notice: %s", exc)
