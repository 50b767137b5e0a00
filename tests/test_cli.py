from datetime import timedelta

import pytest
from typer.testing import CliRunner

from jobsweep.cli import app
from jobsweep.models import Job, JobState
from jobsweep.storage import get_store
from jobsweep.utils import utcnow

runner = CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("JOBSWEEP_HOME", str(tmp_path))
    return tmp_path


def _add(state, age, **fields):
    created = utcnow() - age
    if state not in (JobState.PENDING, JobState.RUNNING, JobState.CANCELED):
        fields.setdefault("closed_at", created)
    return get_store().add_job(Job(command="echo hi", state=state, created_at=created, **fields))


def _exists(job_id):
    store = get_store()
    store.clear_session_cache()
    return store.get(job_id) is not None


def test_clean_up(home):
    old = _add(JobState.FINISHED, timedelta(days=40))
    young = _add(JobState.FINISHED, timedelta(days=5))
    stale = _add(JobState.RUNNING, timedelta(hours=1), worker_name="w1", checked_at=utcnow() - timedelta(minutes=30))

    result = runner.invoke(app, ["clean-up"])

    assert result.exit_code == 0, result.output
    assert "deleted" in result.output
    assert not _exists(old.id)
    assert _exists(young.id)
    store = get_store()
    store.clear_session_cache()
    assert store.get(stale.id).state == JobState.INCOMPLETE


def test_clean_up_options(home):
    jobs = [_add(JobState.FAILED, timedelta(days=3)) for _ in range(3)]

    result = runner.invoke(app, ["clean-up", "--max-retention", "2 days", "--per-call", "2"])

    assert result.exit_code == 0, result.output
    assert [_exists(j.id) for j in jobs] == [False, False, True]


def test_clean_up_uses_stored_config(home):
    job = _add(JobState.FINISHED, timedelta(days=3))

    assert runner.invoke(app, ["config", "set", "max_retention", "1 day"]).exit_code == 0
    assert runner.invoke(app, ["clean-up"]).exit_code == 0

    assert not _exists(job.id)


@pytest.mark.parametrize("args", [
    ["clean-up", "--max-retention", "forever"],
    ["clean-up", "--per-call", "0"],
])
def test_clean_up_bad_config(home, args):
    job = _add(JobState.FINISHED, timedelta(days=40))

    result = runner.invoke(app, args)

    assert result.exit_code == 2
    assert _exists(job.id)


def test_status_and_list(home):
    _add(JobState.FINISHED, timedelta(days=1))
    _add(JobState.PENDING, timedelta(days=1))

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "finished" in result.output
    assert "pending" in result.output

    result = runner.invoke(app, ["list", "--state", "pending"])
    assert result.exit_code == 0
    assert "pending" in result.output
    assert "finished" not in result.output


def test_config_get_set(home):
    assert runner.invoke(app, ["config", "get", "per_call"]).output.strip() == "1000"

    result = runner.invoke(app, ["config", "set", "per_call", "25"])
    assert result.exit_code == 0
    assert runner.invoke(app, ["config", "get", "per_call"]).output.strip() == "25"

    assert runner.invoke(app, ["config", "set", "per_call", "none"]).exit_code == 2
    assert runner.invoke(app, ["config", "set", "colour", "blue"]).exit_code == 2
    assert runner.invoke(app, ["config", "get", "colour"]).exit_code == 2
