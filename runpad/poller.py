import logging
import threading
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from runpad.channel import StateChannel
from runpad.status import OutputSnapshot

logger = logging.getLogger(__name__)

POLL_JOB_PREFIX = "runpad-output-poll"


class OutputPoller:
    """Re-reads the stdout/stderr capture files on a fixed interval.

    Every tick publishes a fresh OutputSnapshot with the full contents of both
    files, whether or not anything changed. The external process may be halfway
    through a write when we read; the next tick picks up the rest.
    """

    def __init__(self, stdout_path, stderr_path, interval_ms=100, scheduler=None):
        self.stdout_path = stdout_path
        self.stderr_path = stderr_path
        self.interval_ms = interval_ms
        self.output_channel = StateChannel("output", OutputSnapshot())
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or BackgroundScheduler(daemon=True)
        self._lock = threading.Lock()
        self._job = None
        # Unique per poller so pollers sharing one scheduler keep their own jobs
        self.job_id = f"{POLL_JOB_PREFIX}-{id(self):x}"

    @property
    def snapshot(self):
        return self.output_channel.latest

    @property
    def running(self):
        return self._job is not None

    def subscribe(self, callback, replay=False):
        return self.output_channel.subscribe(callback, replay=replay)

    def start(self):
        with self._lock:
            if self._job is not None:
                return
            self._job = self._scheduler.add_job(
                self.tick,
                'interval',
                seconds=self.interval_ms / 1000.0,
                id=self.job_id,
                next_run_time=datetime.now(),
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            if not self._scheduler.running:
                self._scheduler.start()
        logger.debug("Output polling started every %d ms", self.interval_ms)

    def stop(self):
        with self._lock:
            job, self._job = self._job, None
            if job is not None:
                try:
                    job.remove()
                except JobLookupError as e:
                    logger.debug("Poll job already gone: %s", e)
            if self._owns_scheduler and self._scheduler.running:
                self._scheduler.shutdown(wait=True)
                # Fresh scheduler for a later start()
                self._scheduler = BackgroundScheduler(daemon=True)
        logger.debug("Output polling stopped")

    def configure(self, stdout_path=None, stderr_path=None, interval_ms=None):
        """Point the poller at new files and/or a new interval without stopping it."""
        with self._lock:
            if stdout_path:
                self.stdout_path = stdout_path
            if stderr_path:
                self.stderr_path = stderr_path
            if interval_ms and interval_ms != self.interval_ms:
                self.interval_ms = interval_ms
                if self._job is not None:
                    self._job.reschedule('interval', seconds=interval_ms / 1000.0)

    def tick(self):
        previous = self.snapshot
        snapshot = OutputSnapshot(
            stdout=self._read(self.stdout_path, previous.stdout),
            stderr=self._read(self.stderr_path, previous.stderr),
        )
        self.output_channel.publish(snapshot)
        return snapshot

    @staticmethod
    def _read(path, fallback):
        try:
            # errors='replace': a multi-byte character may be cut by a concurrent write
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                return f.read()
        except FileNotFoundError:
            return ""
        except OSError as e:
            logger.debug("Could not read '%s', keeping previous contents: %s", path, e)
            return fallback
