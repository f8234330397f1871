"""One-shot timer source backed by threading.Timer worker threads."""

import logging
import threading

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancelable reference to one armed callback."""

    def __init__(self):
        self._timer = None
        self._cancelled = False

    @property
    def cancelled(self):
        return self._cancelled

    def cancel(self):
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class TimerSource:
    """Schedules callbacks on daemon threads. Callbacks of cancelled handles never run."""

    def call_later(self, delay, callback):
        handle = TimerHandle()

        def fire():
            if handle.cancelled:
                return
            try:
                callback()
            except Exception as e:
                logger.exception(f"Timer callback failed: {e}")

        timer = threading.Timer(max(0.0, delay), fire)
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle
