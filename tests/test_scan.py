from datetime import timedelta

import pytest

from conftest import NOW, make_job, make_running

from jobsweep.models import JobCriteria, JobState
from jobsweep.scan import scan_in_batches, scan_one_by_one

RUNNING = JobCriteria(state=JobState.RUNNING)
FINISHED = JobCriteria(state=JobState.FINISHED)


def test_one_by_one_with_mutation(store):
    jobs = [make_running(store, checked_ago=timedelta(minutes=10)) for _ in range(4)]

    seen = []
    for job in scan_one_by_one(store, RUNNING):
        seen.append(job.id)
        store.close_job(job, JobState.INCOMPLETE, closed_at=NOW)

    assert seen == [j.id for j in jobs]


def test_one_by_one_without_mutation_terminates(store):
    jobs = [make_running(store, checked_ago=timedelta(minutes=10)) for _ in range(3)]

    seen = [job.id for job in scan_one_by_one(store, RUNNING)]

    assert seen == [j.id for j in jobs]


def test_one_by_one_mixed_skip_and_close(store):
    jobs = [make_running(store, checked_ago=timedelta(minutes=10)) for _ in range(6)]

    seen = []
    for job in scan_one_by_one(store, RUNNING):
        seen.append(job.id)
        if job.id % 2:
            store.close_job(job, JobState.INCOMPLETE, closed_at=NOW)

    assert sorted(seen) == [j.id for j in jobs]
    assert len(seen) == len(set(seen))


def test_batches_with_rows_removed_mid_scan(store):
    jobs = [make_job(store, JobState.FINISHED) for _ in range(9)]

    seen = []
    for job in scan_in_batches(store, FINISHED, batch_size=2):
        seen.append(job.id)
        if job.id % 3 == 0:
            store.delete_jobs([job.id])

    assert seen == [j.id for j in jobs]


def test_batches_sees_fresh_state_each_round(store):
    first, second = make_job(store, JobState.FINISHED), make_job(store, JobState.FINISHED)
    # stale instance in the identity map
    stale = store.get(second.id)

    store.conn.execute("UPDATE jobs SET command='changed' WHERE id=?", (second.id,))
    store.conn.commit()
    assert store.get(second.id) is stale

    jobs = list(scan_in_batches(store, FINISHED, batch_size=1))

    assert [j.id for j in jobs] == [first.id, second.id]
    assert jobs[1].command == "changed"


def test_empty_set(store):
    assert list(scan_one_by_one(store, RUNNING)) == []
    assert list(scan_in_batches(store, RUNNING, batch_size=10)) == []


def test_batch_size_must_be_positive(store):
    with pytest.raises(ValueError):
        list(scan_in_batches(store, FINISHED, batch_size=0))
