"""Persistent indicator (notification) contract and a logging implementation."""

import logging

logger = logging.getLogger(__name__)

COMPLETE = 'complete'
INDICATOR_TITLE = "Meditation in Progress"


def format_indicator_text(time_remaining, sounds_played):
    """Builds the indicator line, e.g. '9:55 remaining • 2 sounds played'."""
    if time_remaining != COMPLETE and time_remaining > 0:
        minutes, seconds = divmod(time_remaining, 60)
        return f"{minutes}:{seconds:02d} remaining • {sounds_played} sounds played"
    return f"Session complete • {sounds_played} sounds played"


class LogIndicator:
    """
    Renders the indicator into the log.

    Hosts with a real notification surface pass their own object with the same
    ``render(time_remaining, sounds_played)`` / ``clear()`` methods.
    """

    def __init__(self):
        self.last_text = None

    def render(self, time_remaining, sounds_played):
        text = format_indicator_text(time_remaining, sounds_played)
        if text != self.last_text:
            logger.debug(f"{INDICATOR_TITLE}: {text}")
        self.last_text = text

    def clear(self):
        self.last_text = None
        logger.debug("Indicator cleared")
