import random

import pytest

from core import SessionScheduler
from resources import Resource, ResourceGuard
from timers import TimerHandle


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeTimerSource:
    """Fires callbacks in due-time order (arming order on ties) as the clock is advanced."""

    def __init__(self, clock):
        self.clock = clock
        self._pending = []
        self._seq = 0

    def call_later(self, delay, callback):
        handle = TimerHandle()
        self._seq += 1
        self._pending.append((self.clock.now + delay, self._seq, handle, callback))
        return handle

    @property
    def armed(self):
        return [entry for entry in self._pending if not entry[2].cancelled]

    def advance(self, seconds):
        target = self.clock.now + seconds
        while True:
            due = [entry for entry in self.armed if entry[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._pending.remove(entry)
            self.clock.now = max(self.clock.now, entry[0])
            entry[3]()
        self._pending = self.armed
        self.clock.now = target


class FixedRng:
    def __init__(self, value):
        self.value = value

    def randint(self, a, b):
        assert a <= self.value <= b
        return self.value


class RecordingIndicator:
    def __init__(self):
        self.renders = []
        self.clears = 0

    def render(self, time_remaining, sounds_played):
        self.renders.append((time_remaining, sounds_played))

    def clear(self):
        self.clears += 1


class RecordingResource(Resource):

    def __init__(self, name, deny=False, fail_release=False):
        super().__init__()
        self.name = name
        self.deny = deny
        self.fail_release = fail_release
        self.acquire_calls = 0
        self.release_calls = 0

    def acquire(self):
        self.acquire_calls += 1
        if self.deny:
            return False
        self.held = True
        return True

    def release(self):
        self.release_calls += 1
        if self.fail_release:
            raise RuntimeError(f"{self.name} release failed")
        self.held = False


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimerSource(clock)


@pytest.fixture
def indicator():
    return RecordingIndicator()


@pytest.fixture
def resources():
    return [RecordingResource('wake_lock'), RecordingResource('audio_focus'),
            RecordingResource('indicator_channel')]


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_scheduler(clock, timers, indicator, resources, events):
    def _make(rng=None, **kwargs):
        scheduler = SessionScheduler(timers=timers, clock=clock, rng=rng or random.Random(7),
                                     resource_guard=ResourceGuard(resources), indicator=indicator, **kwargs)
        scheduler.add_listener(events.append)
        return scheduler
    return _make


@pytest.fixture
def scheduler(make_scheduler):
    return make_scheduler()
