"""
Event surface between the scheduler and its listener.

Events are immutable and emitted in the order their ticks happened. Delivery
is fire-and-forget: a listener that raises is logged and skipped so one bad
listener cannot stall the countdown.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum

from config import EVENT_LOG_SIZE

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TIMER_UPDATE = 'TIMER_UPDATE'
    PLAY_SOUND = 'PLAY_SOUND'
    SESSION_ENDED = 'SESSION_ENDED'


@dataclass(frozen=True)
class TimerEvent:
    event_type: EventType
    time_remaining: int
    sounds_played: int

    def to_dict(self):
        return {
            'eventType': self.event_type.value,
            'timeRemaining': self.time_remaining,
            'soundsPlayed': self.sounds_played,
        }


class EventEmitter:
    """Delivers events to registered listeners, in registration order."""

    def __init__(self):
        self._listeners = []

    def add_listener(self, listener):
        self._listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event):
        logger.info(f"Sending event: {event.event_type.value}, timeRemaining={event.time_remaining}, "
                    f"soundsPlayed={event.sounds_played}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener {listener!r} failed on {event.event_type.value}: {e}")


class EventLog:
    """Bounded, sequence-numbered buffer of events for clients that poll."""

    def __init__(self, maxlen=EVENT_LOG_SIZE):
        self._entries = deque(maxlen=maxlen)
        self._next_seq = 1
        self._lock = threading.Lock()

    def __call__(self, event):
        with self._lock:
            self._entries.append((self._next_seq, event))
            self._next_seq += 1

    @property
    def last_seq(self):
        with self._lock:
            return self._next_seq - 1

    def since(self, seq=0):
        """Returns (seq, event) pairs newer than ``seq``, oldest first."""
        with self._lock:
            return [(s, e) for s, e in self._entries if s > seq]
