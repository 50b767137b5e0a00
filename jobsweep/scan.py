"""
Lazy cursors over a job set that shrinks while it is being walked.

Offset pagination skips or revisits rows once the caller starts closing or
deleting what it was handed. Both scans here instead remember every id they
have yielded and ask the store for the next match outside that set. The
exclusion set lives only as long as the generator, so a scan is restartable
from scratch but never resumes across invocations.
"""

import logging
from typing import Iterator

from .models import Job, JobCriteria
from .storage import JobStore

logger = logging.getLogger(__name__)


def scan_one_by_one(store: JobStore, criteria: JobCriteria) -> Iterator[Job]:
    """Yield matching jobs one query at a time, each exactly once, in id order."""
    excluded = set()
    while True:
        store.clear_session_cache()
        job = store.find_one(criteria, excluding=excluded)
        if job is None:
            return
        excluded.add(job.id)
        yield job


def scan_in_batches(store: JobStore, criteria: JobCriteria, batch_size: int) -> Iterator[Job]:
    """
    Yield matching jobs fetched batch_size at a time.

    All ids of a batch are excluded before the first of them is yielded,
    so rows the caller defers are not fetched again by this scan.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")
    excluded = set()
    while True:
        store.clear_session_cache()
        jobs = store.find_batch(criteria, excluding=excluded, limit=batch_size)
        if not jobs:
            return
        excluded.update(j.id for j in jobs)
        logger.debug("fetched batch of %d job(s), %d seen so far", len(jobs), len(excluded))
        yield from jobs
