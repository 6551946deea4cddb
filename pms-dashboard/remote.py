"""
Client for the spreadsheet-backed script endpoint, plus the stage-data cache.

The endpoint is a single POST target. Every call sends a form-encoded
``action`` field (and optional extra fields) and gets back
``{"success": bool, "data": ..., "error": "..."}``.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import requests

logger = logging.getLogger('pms.remote')

TIMEOUT_SECONDS = float(os.environ.get('PMS_TIMEOUT_SECONDS', '30'))

FETCH_BATCH_SIZE = 3
FETCH_BATCH_DELAY = 0.1  # seconds between batches


class RemoteError(Exception):
    """Transport failure, non-2xx reply or ``success: false`` from the endpoint."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class ScriptClient:
    def __init__(self, url, session=None, timeout=TIMEOUT_SECONDS):
        if not url:
            raise ValueError('Script URL is required')
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def request(self, action, **params):
        """POST one action and return its ``data`` payload."""
        form = {'action': action}
        form.update(params)
        try:
            response = self.session.post(self.url, data=form, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteError(f'Request failed: {e}') from e

        if not 200 <= response.status_code < 300:
            raise RemoteError(f'HTTP error: status {response.status_code}', status=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError('Invalid JSON in response') from e

        if not isinstance(body, dict) or not body.get('success'):
            error = body.get('error') if isinstance(body, dict) else None
            raise RemoteError(error or 'Unknown error occurred')

        return body.get('data')

    def get_all_parties(self):
        return self.request('getAllParties')

    def get_all_stage_data(self):
        return self.request('getAllStageData')

    def get_stage_data(self, stage_name):
        return self.request('getStageData', stageName=stage_name)


class StageCache:
    """
    Read-through cache of raw stage rows keyed by stage name.

    Entries are never invalidated; a fresh cache is the only way to see new
    data. Failed fetches are not stored, so the next lookup tries again.
    """

    def __init__(self, client, batch_size=FETCH_BATCH_SIZE, batch_delay=FETCH_BATCH_DELAY):
        self.client = client
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.errors = {}
        self._rows = {}
        self._lock = threading.Lock()

    def __contains__(self, stage_name):
        with self._lock:
            return stage_name in self._rows

    def __len__(self):
        with self._lock:
            return len(self._rows)

    def _store(self, stage_name, rows):
        with self._lock:
            self._rows[stage_name] = rows
            self.errors.pop(stage_name, None)

    def _fetch(self, stage_name):
        rows = self.client.get_stage_data(stage_name)
        if not isinstance(rows, list):
            rows = []
        logger.debug('Fetched %s: %d rows', stage_name, len(rows))
        self._store(stage_name, rows)
        return rows

    def get(self, stage_name):
        """Cached rows for a stage, fetching on a miss. Raises RemoteError on failure."""
        with self._lock:
            if stage_name in self._rows:
                return self._rows[stage_name]
        try:
            return self._fetch(stage_name)
        except RemoteError as e:
            with self._lock:
                self.errors[stage_name] = str(e)
            raise

    def prefetch(self, stage_names):
        """
        Fetch every uncached stage, a few at a time.

        Names are deduplicated in first-seen order. Each batch waits for all of
        its requests to settle before the pause and the next batch; a failing
        stage is recorded in ``errors`` and does not stop the others.
        """
        pending = []
        for name in stage_names:
            if name and name not in pending and name not in self:
                pending.append(name)
        if not pending:
            return {}

        failures = {}
        batches = [pending[i:i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for bi, batch in enumerate(batches):
                if bi > 0 and self.batch_delay:
                    time.sleep(self.batch_delay)
                jobs = [(name, pool.submit(self._fetch, name)) for name in batch]
                for name, fut in jobs:
                    try:
                        fut.result()
                    except RemoteError as e:
                        failures[name] = str(e)
                        logger.warning('Stage %s failed: %s', name, e)
                logger.debug('Batch %d/%d done (%s)', bi + 1, len(batches), ', '.join(batch))

        with self._lock:
            self.errors.update(failures)
        return failures
