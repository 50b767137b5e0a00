"""
Periodic clean-up of the job queue.

One pass of CleanupEngine.run:
  1. StaleJobReclaimer marks running jobs whose worker stopped sending
     heartbeats as incomplete, unless a retry already took over.
  2. ExpiredJobReaper deletes terminal root jobs older than the retention
     window, deferring any job another job still depends on, up to a
     per-call limit.

Nothing is carried between passes, and no lock is taken: overlapping passes
are safe because closing is a compare-and-set and deleting is idempotent.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from .config import BATCH_SIZE, STALE_THRESHOLD
from .models import CleanupConfig, CleanupReport, Job, JobCriteria, JobState
from .scan import scan_in_batches, scan_one_by_one
from .storage import JobStore
from .utils import utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class StaleJobReclaimer:
    def __init__(self, store: JobStore, clock: Clock = utcnow):
        self._store = store
        self._clock = clock

    def find_stale_jobs(self, stale_threshold: timedelta) -> Iterator[Job]:
        criteria = JobCriteria(
            state=JobState.RUNNING,
            worker_assigned=True,
            checked_before=self._clock() - stale_threshold,
        )
        return scan_one_by_one(self._store, criteria)

    def reclaim_stale_jobs(
        self,
        stale_threshold: timedelta = STALE_THRESHOLD,
        report: Optional[CleanupReport] = None,
    ) -> CleanupReport:
        if report is None:
            report = CleanupReport()
        for job in self.find_stale_jobs(stale_threshold):
            if job.is_retried():
                # a retry owns the work now
                logger.debug("job %s is stale but already retried, skipping", job.id)
                report.skipped_retried += 1
                continue

            if self._store.close_job(job, JobState.INCOMPLETE, closed_at=self._clock()):
                logger.debug("job %s (worker %s) marked incomplete", job.id, job.worker_name)
                report.reclaimed += 1

        logger.info(
            "reclaimed %d stale job(s), skipped %d already retried",
            report.reclaimed, report.skipped_retried,
        )
        return report


class ExpiredJobReaper:
    def __init__(self, store: JobStore, clock: Clock = utcnow, batch_size: int = BATCH_SIZE):
        self._store = store
        self._clock = clock
        self._batch_size = batch_size

    def find_expired_jobs(self, max_retention: timedelta) -> Iterator[Job]:
        """
        Root jobs past retention: first those closed before the cutoff, then
        canceled ones created before it (cancellation may never set closed_at).
        Each sub-scan keeps its own exclusion set.
        """
        cutoff = self._clock() - max_retention
        closed = JobCriteria(closed_before=cutoff, roots_only=True)
        canceled = JobCriteria(state=JobState.CANCELED, created_before=cutoff, roots_only=True)

        yield from scan_in_batches(self._store, closed, self._batch_size)
        yield from scan_in_batches(self._store, canceled, self._batch_size)

    def reap_expired_jobs(
        self,
        max_retention: timedelta,
        per_call_limit: int,
        report: Optional[CleanupReport] = None,
    ) -> CleanupReport:
        if per_call_limit <= 0:
            raise ValueError("per_call_limit must be > 0")
        if report is None:
            report = CleanupReport()
        to_delete = set()

        for job in self.find_expired_jobs(max_retention):
            if job.id in to_delete:
                # returned by both sub-scans
                continue

            # checked per job, right before the decision, never cached
            if self._store.has_incoming_dependency(job.id):
                logger.debug("job %s still has dependents, deferring", job.id)
                report.deferred += 1
                continue

            to_delete.add(job.id)
            if len(to_delete) >= per_call_limit:
                logger.info("per-call limit of %d reached", per_call_limit)
                break

        if to_delete:
            self._store.delete_jobs(to_delete)
        report.deleted += len(to_delete)
        logger.info(
            "deleted %d expired job(s), deferred %d with dependents",
            len(to_delete), report.deferred,
        )
        return report


class CleanupEngine:
    def __init__(self, store: JobStore, clock: Clock = utcnow, batch_size: int = BATCH_SIZE):
        self.reclaimer = StaleJobReclaimer(store, clock=clock)
        self.reaper = ExpiredJobReaper(store, clock=clock, batch_size=batch_size)

    def run(self, config: CleanupConfig) -> CleanupReport:
        """
        Reclaim first, then reap. Jobs reclaimed in this pass were closed just
        now, so they cannot be past retention until a later pass.
        An error in either phase propagates; work already committed stays.
        """
        report = CleanupReport()
        self.reclaimer.reclaim_stale_jobs(config.stale_threshold, report=report)
        self.reaper.reap_expired_jobs(config.max_retention, config.per_call_limit, report=report)
        return report
