"""Saves the running session to disk so a restarted process can resume it."""

import json
import logging
import os
import time

from config import SESSION_STATE_FILE, MAX_SESSION_AGE_SECONDS

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ('startTime', 'durationSeconds', 'minWaitSeconds', 'maxWaitSeconds',
                   'soundsPlayed', 'nextSoundDeadline')


class SessionStore:

    def __init__(self, path=SESSION_STATE_FILE, max_age_seconds=MAX_SESSION_AGE_SECONDS, clock=time.time):
        self.path = path
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def save(self, snapshot):
        data = {key: snapshot[key] for key in SNAPSHOT_FIELDS}
        data['savedAt'] = self._clock()
        try:
            directory = os.path.dirname(self.path)
            if directory and not os.path.exists(directory):
                os.makedirs(directory)
            tmp_path = self.path + '.tmp'
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save session state: {e}")

    def load(self):
        """
        Returns the saved snapshot, or None when there is nothing to resume.

        Snapshots older than ``max_age_seconds``, unreadable files and sessions
        whose time already ran out are cleared.
        """
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            snapshot = {key: data[key] for key in SNAPSHOT_FIELDS}
            saved_at = float(data['savedAt'])
            now = self._clock()
            remaining = snapshot['durationSeconds'] - int(now - snapshot['startTime'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load session state: {e}")
            self.clear()
            return None

        if now - saved_at > self.max_age_seconds:
            logger.info("Session expired, clearing...")
            self.clear()
            return None

        if remaining <= 0:
            logger.info("Session time expired, clearing...")
            self.clear()
            return None

        return snapshot

    def clear(self):
        try:
            if os.path.exists(self.path):
                os.remove(self.path)
        except OSError as e:
            logger.error(f"Failed to clear session state: {e}")
