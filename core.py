import functools
import logging
import random
import threading
import time
from enum import Enum

from config import SCHEDULER_SETTINGS
from events import EventEmitter, EventType, TimerEvent
from indicator import COMPLETE, LogIndicator
from resources import ResourceGuard
from timers import TimerSource

logger = logging.getLogger(__name__)


# --- Errors ---

class SchedulerError(Exception):
    """Base class for errors reported back to the caller of a scheduler command."""


class InvalidParameters(SchedulerError):
    pass


class DuplicateStart(SchedulerError):
    pass


class MissingField(SchedulerError):
    pass


# --- Session State ---

class SessionState(str, Enum):
    IDLE = 'Idle'
    RUNNING = 'Running'
    ENDING = 'Ending'
    STOPPED = 'Stopped'


def sample_delay(min_wait, max_wait, rng=random):
    """Uniform integer delay in [min_wait, max_wait], both ends inclusive."""
    return rng.randint(min_wait, max_wait)


def _require_int(name, value):
    if value is None:
        raise InvalidParameters(f"Missing required parameter: {name}")
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameters(f"{name} must be an integer, got {type(value).__name__}")
    return value


def _require_timestamp(name, value, optional=False):
    if value is None and optional:
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameters(f"{name} must be a timestamp, got {type(value).__name__}")
    return value


def validate_session_parameters(duration, min_wait, max_wait):
    _require_int('duration', duration)
    _require_int('minWait', min_wait)
    _require_int('maxWait', max_wait)
    if duration <= 0:
        raise InvalidParameters(f"duration must be positive, got {duration}")
    if not 0 <= min_wait <= max_wait:
        raise InvalidParameters(f"wait window must satisfy 0 <= minWait <= maxWait, got [{min_wait}, {max_wait}]")


class Session:
    """The one running session. Only SessionScheduler touches it, and only under its lock."""

    def __init__(self, start_time, duration_seconds, min_wait_seconds, max_wait_seconds, sounds_played=0):
        self.start_time = start_time
        self.duration_seconds = duration_seconds
        self.min_wait_seconds = min_wait_seconds
        self.max_wait_seconds = max_wait_seconds
        self.sounds_played = sounds_played
        self.next_sound_deadline = None
        self.state = SessionState.RUNNING

        # Owned by the scheduler for teardown
        self.resources = None
        self.countdown = None
        self.sound_timer = None

    def time_remaining(self, now):
        return self.duration_seconds - int(now - self.start_time)

    def to_snapshot(self):
        return {
            'startTime': self.start_time,
            'durationSeconds': self.duration_seconds,
            'minWaitSeconds': self.min_wait_seconds,
            'maxWaitSeconds': self.max_wait_seconds,
            'soundsPlayed': self.sounds_played,
            'nextSoundDeadline': self.next_sound_deadline,
        }


class SessionScheduler:
    """
    Runs one meditation session at a time.

    Two timing processes drive a session: the countdown ticks every second,
    refreshing the indicator and emitting TIMER_UPDATE on every fifth second
    of remaining time; the sound process fires PLAY_SOUND after a random delay
    in [minWait, maxWait] and re-arms itself. Timer callbacks, commands and
    external syncs all apply their changes under one re-entrant lock. Every
    callback is bound to the session that armed it, so once that session is
    torn down a late callback has nothing to act on.

    Resources (wake lock, audio focus, indicator channel) are acquired on
    start and released exactly once on stop or natural completion.
    """

    def __init__(self, timers=None, clock=time.time, rng=None, resource_guard=None, indicator=None,
                 emitter=None, store=None, history=None, settings=None):
        self._lock = threading.RLock()
        self._timers = timers if timers is not None else TimerSource()
        self._clock = clock
        self._rng = rng if rng is not None else random.Random()
        self.guard = resource_guard if resource_guard is not None else ResourceGuard()
        self.indicator = indicator if indicator is not None else LogIndicator()
        self.emitter = emitter if emitter is not None else EventEmitter()
        self.store = store
        self.history = history

        settings = {**SCHEDULER_SETTINGS, **(settings or {})}
        self._tick_seconds = settings['tick_seconds']
        self._update_every = settings['timer_update_every_seconds']
        self._tick_log_every = settings['tick_log_every_seconds']
        self._min_rearm_seconds = settings['min_rearm_seconds']
        self._retry_seconds = settings['resource_retry_seconds']

        self._session = None
        self._state = SessionState.IDLE
        self._last_snapshot = {'timeRemaining': 0, 'soundsPlayed': 0}

    # --- Queries ---

    @property
    def state(self):
        with self._lock:
            return self._session.state if self._session is not None else self._state

    @property
    def session(self):
        return self._session

    def snapshot(self):
        """Last values shown on the indicator or sent to the listener."""
        with self._lock:
            return {'state': self.state.value, **self._last_snapshot}

    def add_listener(self, listener):
        self.emitter.add_listener(listener)

    # --- Commands ---

    def start(self, duration, min_wait, max_wait):
        validate_session_parameters(duration, min_wait, max_wait)
        with self._lock:
            if self._session is not None:
                raise DuplicateStart(f"A session is already {self._session.state.value}; stop it first")
            logger.info(f"Starting session: duration={duration}s, minWait={min_wait}s, maxWait={max_wait}s")
            self._begin(Session(self._clock(), duration, min_wait, max_wait))

    def resume(self):
        """Picks up a session saved by a previous process. Returns True if one was resumed."""
        if self.store is None:
            return False
        snapshot = self.store.load()
        if snapshot is None:
            return False
        try:
            validate_session_parameters(snapshot['durationSeconds'], snapshot['minWaitSeconds'],
                                        snapshot['maxWaitSeconds'])
            _require_int('soundsPlayed', snapshot['soundsPlayed'])
            _require_timestamp('startTime', snapshot['startTime'])
            _require_timestamp('nextSoundDeadline', snapshot['nextSoundDeadline'], optional=True)
        except InvalidParameters as e:
            logger.error(f"Discarding saved session: {e}")
            self.store.clear()
            return False

        with self._lock:
            if self._session is not None:
                return False
            session = Session(snapshot['startTime'], snapshot['durationSeconds'], snapshot['minWaitSeconds'],
                              snapshot['maxWaitSeconds'], sounds_played=max(0, snapshot['soundsPlayed']))
            logger.info(f"Resuming session started at {session.start_time}, "
                        f"soundsPlayed={session.sounds_played}")
            self._begin(session, sound_deadline=snapshot['nextSoundDeadline'])
        return True

    def stop(self):
        """Ends the running session without SESSION_ENDED. A no-op when nothing is running."""
        with self._lock:
            session = self._session
            if session is None:
                logger.debug("Stop requested with no active session")
                return
            logger.info("Stopping session")
            self._teardown(session)

    def sync_external_state(self, time_remaining, sounds_played):
        """
        Applies the listener's view of the session.

        The sound counter only moves forward: a sync carrying a lower count than
        the one already held is stale and is dropped. Returns True when applied.
        """
        if time_remaining is None or sounds_played is None:
            raise MissingField("Missing timeRemaining or soundsPlayed")
        _require_int('timeRemaining', time_remaining)
        _require_int('soundsPlayed', sounds_played)
        if sounds_played < 0:
            raise InvalidParameters(f"soundsPlayed must not be negative, got {sounds_played}")

        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.RUNNING:
                logger.debug("Sync ignored: no running session")
                return False
            if sounds_played < session.sounds_played:
                logger.debug(f"Stale sync ignored: soundsPlayed={sounds_played} < {session.sounds_played}")
                return False

            logger.info(f"Received sync: timeRemaining={time_remaining}, soundsPlayed={sounds_played}")
            session.sounds_played = sounds_played
            self._last_snapshot['soundsPlayed'] = sounds_played
            if time_remaining >= 0:
                self._render(time_remaining, sounds_played)
            self._save(session)
            return True

    # --- Lifecycle (lock held) ---

    def _begin(self, session, sound_deadline=None):
        now = self._clock()
        session.resources = self.guard.acquire()
        session.resources.last_retry = now
        self._session = session
        self._state = SessionState.RUNNING

        self._render(session.time_remaining(now), session.sounds_played)
        self._arm_countdown(session, now)
        if sound_deadline is not None and sound_deadline > now:
            self._arm_sound(session, now, delay=sound_deadline - now)
        else:
            self._arm_sound(session, now)
        self._save(session)

    def _teardown(self, session):
        if self._session is not session:
            return
        completed = session.state is SessionState.ENDING

        # Cancel first: nothing from this session may run once release begins
        for handle in (session.countdown, session.sound_timer):
            if handle is not None:
                handle.cancel()
        session.countdown = None
        session.sound_timer = None

        self.guard.release(session.resources)
        session.state = SessionState.STOPPED
        self._session = None
        self._state = SessionState.STOPPED

        if not completed:
            self._clear_indicator()
        if self.store is not None:
            self.store.clear()
        if self.history is not None:
            self.history.record(session.duration_seconds, session.sounds_played, completed,
                                session.min_wait_seconds, session.max_wait_seconds)

    def _end(self, session, remaining):
        session.state = SessionState.ENDING
        logger.info("Session ended")
        self._emit(EventType.SESSION_ENDED, remaining, session.sounds_played)
        self._render(COMPLETE, session.sounds_played)
        self._teardown(session)

    # --- Countdown Process ---

    def _arm_countdown(self, session, now):
        elapsed = now - session.start_time
        delay = self._tick_seconds - (elapsed % self._tick_seconds)
        session.countdown = self._timers.call_later(delay, functools.partial(self._on_tick, session))

    def _on_tick(self, session):
        with self._lock:
            if session is not self._session or session.state is not SessionState.RUNNING:
                return
            now = self._clock()
            remaining = session.time_remaining(now)
            if remaining % self._tick_log_every == 0:
                logger.info(f"Timer tick: {remaining}s remaining")

            if remaining <= 0:
                self._end(session, remaining)
                return

            self._render(remaining, session.sounds_played)
            if remaining % self._update_every == 0:
                self._emit(EventType.TIMER_UPDATE, remaining, session.sounds_played)
                self._save(session)

            # A listener may have stopped the session from inside the emit
            if session is not self._session:
                return
            self._retry_resources(session, now)
            self._arm_countdown(session, now)

    # --- Sound Scheduling Process ---

    def _arm_sound(self, session, now, delay=None):
        if delay is None:
            delay = sample_delay(session.min_wait_seconds, session.max_wait_seconds, self._rng)
            logger.info(f"Scheduling next sound in {delay} seconds")
        session.next_sound_deadline = now + delay
        session.sound_timer = self._timers.call_later(max(delay, self._min_rearm_seconds),
                                                      functools.partial(self._on_sound_due, session))

    def _on_sound_due(self, session):
        with self._lock:
            if session is not self._session or session.state is not SessionState.RUNNING:
                return
            now = self._clock()
            remaining = session.time_remaining(now)
            if remaining <= 0:
                # The countdown tick due now ends the session
                return
            # Counter is advanced by the listener through sync_external_state
            self._emit(EventType.PLAY_SOUND, remaining, session.sounds_played)
            if session is self._session and session.state is SessionState.RUNNING:
                self._arm_sound(session, now)
                self._save(session)

    # --- Collaborators ---

    def _emit(self, event_type, remaining, sounds_played):
        self._last_snapshot = {'timeRemaining': max(remaining, 0), 'soundsPlayed': sounds_played}
        self.emitter.emit(TimerEvent(event_type, remaining, sounds_played))

    def _render(self, time_remaining, sounds_played):
        if time_remaining != COMPLETE:
            self._last_snapshot = {'timeRemaining': time_remaining, 'soundsPlayed': sounds_played}
        try:
            self.indicator.render(time_remaining, sounds_played)
        except Exception as e:
            logger.error(f"Indicator update failed: {e}")

    def _clear_indicator(self):
        try:
            self.indicator.clear()
        except Exception as e:
            logger.error(f"Indicator clear failed: {e}")

    def _retry_resources(self, session, now):
        handle = session.resources
        if handle is None or not handle.degraded:
            return
        if now - handle.last_retry >= self._retry_seconds:
            self.guard.retry_missing(handle, now)

    def _save(self, session):
        if self.store is not None:
            self.store.save(session.to_snapshot())
