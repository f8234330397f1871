"""
Resource guard for the exclusive resources a session pins while it runs.

A session takes a wake lock, audio focus and the indicator channel as one
bundle. Acquisition is best effort: a resource that cannot be had is logged
and retried later, the session goes on without it. Release walks every held
resource independently so one failing release never leaves the others pinned.
"""

import logging
import time

from config import SCHEDULER_SETTINGS

logger = logging.getLogger(__name__)


class ResourceAcquisitionDegraded(Exception):
    """A resource could not be acquired; the session runs without it."""


class ResourceReleaseFailed(Exception):
    """Releasing one resource failed; the others are still released."""


class Resource:
    """
    Contract for platform resources.

    ``acquire()`` returns True when granted; False or ResourceAcquisitionDegraded
    means denied. ``release()`` may raise ResourceReleaseFailed. Neither call may
    block for long, they run on the scheduler's serialized path.
    """

    name = 'resource'

    def __init__(self):
        self.held = False

    def acquire(self):
        self.held = True
        return True

    def release(self):
        self.held = False


class WakeLock(Resource):
    """Partial wake lock with a hard upper bound on how long it may be held."""

    name = 'wake_lock'

    def __init__(self, max_hold_seconds=SCHEDULER_SETTINGS['wake_lock_max_seconds'], clock=time.time):
        super().__init__()
        self.max_hold_seconds = max_hold_seconds
        self._clock = clock
        self._expires_at = None

    @property
    def is_held(self):
        return self.held and self._clock() < self._expires_at

    def acquire(self):
        self._expires_at = self._clock() + self.max_hold_seconds
        self.held = True
        return True

    def release(self):
        if self.is_held:
            logger.debug("Wake lock released")
        self.held = False
        self._expires_at = None


class AudioFocus(Resource):
    name = 'audio_focus'


class IndicatorChannel(Resource):
    name = 'indicator_channel'


class ResourceHandle:
    """Scoped bundle returned by ResourceGuard.acquire()."""

    def __init__(self):
        self.acquired = []
        self.missing = []
        self.released = False
        self.last_retry = None

    @property
    def degraded(self):
        return bool(self.missing)


def default_resources():
    return [WakeLock(), AudioFocus(), IndicatorChannel()]


class ResourceGuard:

    def __init__(self, resources=None):
        self.resources = resources if resources is not None else default_resources()

    def _try_acquire(self, resource):
        try:
            if resource.acquire() is False:
                raise ResourceAcquisitionDegraded(f"{resource.name} denied")
            return True
        except Exception as e:
            logger.warning(f"Resource acquisition degraded ({resource.name}): {e}")
            return False

    def acquire(self):
        handle = ResourceHandle()
        for resource in self.resources:
            if self._try_acquire(resource):
                handle.acquired.append(resource)
            else:
                handle.missing.append(resource)
        if handle.degraded:
            logger.warning(f"Session running degraded, missing: {[r.name for r in handle.missing]}")
        return handle

    def retry_missing(self, handle, now=None):
        """Tries once more for every missing resource. Returns how many were recovered."""
        if handle.released or not handle.missing:
            return 0
        handle.last_retry = now
        recovered = [r for r in handle.missing if self._try_acquire(r)]
        for resource in recovered:
            handle.missing.remove(resource)
            handle.acquired.append(resource)
            logger.info(f"Resource recovered: {resource.name}")
        return len(recovered)

    def release(self, handle):
        """Releases each acquired resource once. Failures are logged, never raised."""
        if handle is None or handle.released:
            return
        handle.released = True
        # Reverse acquisition order
        for resource in reversed(handle.acquired):
            try:
                resource.release()
            except Exception as e:
                logger.error(f"Resource release failed ({resource.name}): {e}")
        handle.acquired = []
        handle.missing = []
