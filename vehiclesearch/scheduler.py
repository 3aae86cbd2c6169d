# vehiclesearch/scheduler.py
"""Background reindex jobs on an APScheduler `BackgroundScheduler`."""
import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .errors import SearchError
from .schemas import ReindexSummary
from .services import SyncService
from .utils import logger

scheduler = BackgroundScheduler()


class ReindexJob:
    """At most one full reindex at a time, cancellable between pages."""

    JOB_ID = "reindex-all"
    PERIODIC_JOB_ID = "reindex-periodic"

    def __init__(self, scheduler: BackgroundScheduler, sync_service: SyncService):
        self.scheduler = scheduler
        self.sync = sync_service
        self._lock = threading.Lock()
        self._running = False
        self._cancel = threading.Event()
        self.last_summary: Optional[ReindexSummary] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def start(self, rebuild: bool = False) -> bool:
        with self._lock:
            if self._running:
                logger.warning("Re-index already running, not starting another")
                return False
            self._running = True
            self._cancel = threading.Event()
        # no trigger: run once, now
        self.scheduler.add_job(self.run, kwargs={"rebuild": rebuild}, id=self.JOB_ID, replace_existing=True)
        return True

    def run(self, rebuild: bool = False) -> Optional[ReindexSummary]:
        with self._lock:
            if not self._running:
                # called directly rather than through start()
                self._running = True
                self._cancel = threading.Event()
            cancel = self._cancel
        try:
            self.last_summary = self.sync.reindex_all(rebuild=rebuild, cancel_event=cancel)
            self.last_error = None
        except SearchError as e:
            logger.exception("Re-index failed: %s", e)
            self.last_error = str(e)
        finally:
            with self._lock:
                self._running = False
        return self.last_summary

    def cancel(self) -> bool:
        with self._lock:
            if not self._running:
                return False
            self._cancel.set()
        logger.info("Re-index cancellation requested")
        return True

    def schedule_periodic(self, hours: int) -> None:
        self.scheduler.add_job(self.start, "interval", hours=hours, id=self.PERIODIC_JOB_ID,
                               replace_existing=True)
        logger.info("Periodic re-index every %d hours", hours)


def start_scheduler(job: ReindexJob, interval_hours: int = 0) -> None:
    if interval_hours > 0:
        job.schedule_periodic(interval_hours)
    if not job.scheduler.running:
        job.scheduler.start()
        logger.info("Scheduler started")
