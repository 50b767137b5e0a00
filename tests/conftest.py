"""
Shared fixtures: a throwaway SQLite store per test and a frozen clock.
"""
from datetime import datetime, timedelta, timezone

import pytest

from jobsweep.models import Job, JobState, TERMINAL_STATES
from jobsweep.storage import SQLiteJobStore

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def frozen_clock():
    return NOW


@pytest.fixture
def store(tmp_path):
    s = SQLiteJobStore(tmp_path / "queue.db")
    yield s
    s.close()


def make_job(store, state=JobState.PENDING, *, age=timedelta(hours=1), **fields) -> Job:
    """Insert a job created `age` before NOW. Terminal jobs get closed_at = created_at unless given."""
    fields.setdefault("command", "echo hi")
    fields.setdefault("created_at", NOW - age)
    if state in TERMINAL_STATES and state != JobState.CANCELED:
        fields.setdefault("closed_at", fields["created_at"])
    return store.add_job(Job(state=state, **fields))


def make_running(store, *, checked_ago, worker="w1", **fields) -> Job:
    return make_job(
        store,
        JobState.RUNNING,
        worker_name=worker,
        checked_at=NOW - checked_ago,
        **fields,
    )


def exists(store, job_id) -> bool:
    store.clear_session_cache()
    return store.get(job_id) is not None
