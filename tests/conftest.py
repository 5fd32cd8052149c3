"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides temp DBs plus in-memory fakes for every port.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("BACKEND_URL", "https://backend.example.test")
os.environ.setdefault("BACKEND_API_KEY", "fake-backend-key")
os.environ.setdefault("OPENAI_API_KEY", "fake-openai-key")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")

import pytest

from src.ports.notification_port import NotificationError
from src.ports.speech_port import SpeechError


@pytest.fixture
def settings_db(tmp_path):
    """Return a NotificationSettingsDB instance backed by a temp file."""
    from src.data.db import NotificationSettingsDB
    return NotificationSettingsDB(db_path=str(tmp_path / "test_vita.db"))


@pytest.fixture
def nutrition_db(tmp_path):
    """Return a NutritionDB instance backed by a temp file."""
    from src.data.db import NutritionDB
    return NutritionDB(db_path=str(tmp_path / "test_vita.db"))


# ---------------------------------------------------------------------------
# Notification backend fake
# ---------------------------------------------------------------------------


class FakeNotificationBackend:
    """Records every call; ``fail_on`` makes the named method raise."""

    platform = "test"

    def __init__(self, permission="granted", token="push-token"):
        self.permission = permission
        self.token = token
        self.pending = {}
        self.calls = []
        self.fail_on = set()

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise NotificationError(f"{name} failed")

    async def request_permissions(self):
        self._record("request_permissions")
        return self.permission

    async def check_permissions(self):
        self._record("check_permissions")
        return self.permission

    async def get_pending(self):
        self._record("get_pending")
        return sorted(self.pending)

    async def cancel(self, ids):
        self._record("cancel", list(ids))
        for notification_id in ids:
            self.pending.pop(notification_id, None)

    async def schedule(self, notifications):
        self._record("schedule", [n.id for n in notifications])
        for n in notifications:
            self.pending[n.id] = n

    async def register_push(self):
        self._record("register_push")
        return self.token


@pytest.fixture
def notification_backend():
    return FakeNotificationBackend()


# ---------------------------------------------------------------------------
# Speech / timers / assistant fakes
# ---------------------------------------------------------------------------


class _Handle:
    def __init__(self, listeners, callback):
        self._listeners = listeners
        self._callback = callback

    def remove(self):
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class FakeSpeechBackend:
    def __init__(self, available=True, permitted=True, grant_on_request=True):
        self.is_available = available
        self.permitted = permitted
        self.grant_on_request = grant_on_request
        self.listeners = {}
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False
        self.start_error = None

    async def available(self):
        return self.is_available

    async def check_permissions(self):
        return self.permitted

    async def request_permissions(self):
        self.permitted = self.grant_on_request
        return self.permitted

    async def start(self, language, partial_results=True, popup=False):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.running = True

    async def stop(self):
        self.stop_calls += 1
        if not self.running:
            raise SpeechError("not running")
        self.running = False

    def add_listener(self, event, callback):
        listeners = self.listeners.setdefault(event, [])
        listeners.append(callback)
        return _Handle(listeners, callback)

    async def emit(self, event, payload):
        for callback in list(self.listeners.get(event, [])):
            await callback(payload)


class _ManualHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualTimers:
    """Timers that only fire when the test says so."""

    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = _ManualHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def live(self):
        return [h for h in self.handles if not h.cancelled]

    async def fire_all(self):
        """Fire every live timer once, in scheduling order."""
        due = self.live
        for handle in due:
            handle.cancel()
        for handle in due:
            await handle.callback()


class FakeAssistant:
    def __init__(self, reply_text="Hello!", actions=None, error=None):
        self.reply_text = reply_text
        self.actions = actions or []
        self.error = error
        self.asked = []
        self.synthesized = []
        self.synth_error = None

    async def ask(self, text, user_context=None, history=None):
        from src.integrations.assistant_api import AssistantReply

        self.asked.append({"text": text, "user_context": user_context, "history": history})
        if self.error is not None:
            raise self.error
        return AssistantReply(text=self.reply_text, actions=list(self.actions))

    async def synthesize(self, text, voice):
        self.synthesized.append((text, voice))
        if self.synth_error is not None:
            raise self.synth_error
        return b"mp3-bytes"


class FakePlayer:
    def __init__(self):
        self.played = []

    async def play(self, audio):
        self.played.append(audio)


@pytest.fixture
def speech():
    return FakeSpeechBackend()


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def player():
    return FakePlayer()
