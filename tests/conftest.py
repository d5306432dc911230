import os

import pytest

# Keep tests independent of a developer's `.env` / shell.
for _name in ("REDIS_URL", "CURRENT_USER_ID", "HANDOFF_PATTERNS", "NOTIFICATIONS_ENABLED"):
    os.environ.pop(_name, None)

from inbox_sync.chime import ChimePlayer
from inbox_sync.events import EventBus
from inbox_sync.notifications import NotificationCenter
from inbox_sync.sync.alerts import ChimeGate
from inbox_sync.visibility import PageVisibility
from .utils import FakeTimers, RecordingOutput


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def visibility():
    return PageVisibility()


@pytest.fixture
def bus():
    return EventBus(maxsize=50)


@pytest.fixture
def notifications(bus):
    return NotificationCenter(bus, permission="granted")


@pytest.fixture
def audio():
    return RecordingOutput()


@pytest.fixture
def gate(audio, timers):
    return ChimeGate(ChimePlayer(lambda: audio), timers, cooldown_ms=3000)
