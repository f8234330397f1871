import json
import logging
import os
import uuid
from datetime import datetime

import pytz
import requests
import requests.exceptions

from config import HISTORY_SETTINGS

logger = logging.getLogger(__name__)

TIMEZONE = pytz.utc
HEADERS = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
}


class SessionHistory:
    """
    Keeps a record of every finished session.

    Records are written as one JSON file each into ``history_dir`` first, then
    pushed to the remote sessions collection by ``upload_pending()``. A record
    that fails to upload stays queued for the next attempt.
    """

    def __init__(self, history_dir=HISTORY_SETTINGS['history_dir'], base_url=HISTORY_SETTINGS['base_url'],
                 token=None, collection=HISTORY_SETTINGS['collection'], timeout=HISTORY_SETTINGS['timeout']):
        self.history_dir = history_dir
        self.base_url = base_url.rstrip('/') if base_url else None
        self.token = token
        self.collection = collection
        self.timeout = timeout

    def record(self, duration_seconds, sounds_played, completed, min_wait, max_wait):
        """Saves a finished session. Returns the file path, or None if it could not be written."""
        created = datetime.now(TIMEZONE)
        record = {
            'duration': duration_seconds,
            'sounds_played': sounds_played,
            'completed': completed,
            'config': {'minWait': min_wait, 'maxWait': max_wait},
            'created': created.isoformat(),
            'synced': False,
        }
        try:
            if not os.path.exists(self.history_dir):
                os.makedirs(self.history_dir)
                logger.info(f"Created directory: {self.history_dir}")
            name = f"{created.strftime('%Y%m%d%H%M%S%f')}_{uuid.uuid4().hex[:8]}.json"
            filename = os.path.join(self.history_dir, name)
            with open(filename, 'w', encoding='utf-8') as f:
                json.dump(record, f, ensure_ascii=False, indent=2)
        except OSError as e:
            logger.error(f"Could not save session record: {e}")
            return None

        logger.info(f"Saved session record ({'completed' if completed else 'stopped'}, "
                    f"{sounds_played} sounds) to file: {filename}")
        return filename

    def _load(self, path):
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def records(self):
        """All saved records, oldest first, each with its ``path``."""
        if not os.path.isdir(self.history_dir):
            return []
        result = []
        for name in sorted(os.listdir(self.history_dir)):
            if not name.endswith('.json'):
                continue
            path = os.path.join(self.history_dir, name)
            try:
                record = self._load(path)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable record {path}: {e}")
                continue
            record['path'] = path
            result.append(record)
        return result

    def pending(self):
        return [r for r in self.records() if not r.get('synced')]

    def _headers(self):
        headers = dict(HEADERS)
        if self.token:
            headers['Authorization'] = self.token
        return headers

    def upload_pending(self):
        """Posts unsynced records to the remote collection."""
        if not self.base_url:
            logger.info("Cannot sync: no history URL configured")
            return {'success': 0, 'failed': 0}

        queue = self.pending()
        logger.info(f"Syncing {len(queue)} session records...")
        url = f"{self.base_url}/api/collections/{self.collection}/records"
        success = 0
        failed = 0

        for record in queue:
            path = record.pop('path')
            payload = {k: v for k, v in record.items() if k != 'synced'}
            try:
                response = requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                logger.error(f"Failed to sync record {path}: {e}")
                failed += 1
                continue

            record['synced'] = True
            try:
                with open(path, 'w', encoding='utf-8') as f:
                    json.dump(record, f, ensure_ascii=False, indent=2)
            except OSError as e:
                logger.error(f"Uploaded {path} but could not mark it synced: {e}")
            success += 1

        logger.info(f"Sync complete: {success} succeeded, {failed} failed")
        return {'success': success, 'failed': failed}
