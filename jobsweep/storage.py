import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .config import DEFAULTS
from .errors import ReferentialIntegrityError
from .models import Job, JobCriteria, JobState, TERMINAL_STATES
from .utils import from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

_local = threading.local()


class JobStore(ABC):
    """
    Persistence surface the clean-up engine needs.

    Every find is ordered by id ascending and takes the set of ids the caller
    has already seen, so a scan can make progress while the matching set shrinks.
    """

    @abstractmethod
    def find_one(self, criteria: JobCriteria, excluding: Set[int]) -> Optional[Job]:
        pass

    @abstractmethod
    def find_batch(self, criteria: JobCriteria, excluding: Set[int], limit: int) -> List[Job]:
        """An empty list means the scan is exhausted."""
        pass

    @abstractmethod
    def has_incoming_dependency(self, job_id: int) -> bool:
        """True if some job still declares a dependency on this one."""
        pass

    @abstractmethod
    def close_job(self, job: Job, new_state: JobState, closed_at: Optional[datetime] = None) -> bool:
        """Move a job to a terminal state and stamp closed_at. Returns False if the job moved underneath us."""
        pass

    @abstractmethod
    def delete_jobs(self, job_ids: Iterable[int]) -> int:
        """
        Delete jobs (and, by cascade, their retries) in one atomic write.
        Must raise ReferentialIntegrityError rather than leave a dangling edge.
        """
        pass

    @abstractmethod
    def clear_session_cache(self) -> None:
        pass


SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS jobs(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  command TEXT NOT NULL,
  state TEXT NOT NULL,
  worker_name TEXT,
  checked_at TEXT,
  created_at TEXT NOT NULL,
  closed_at TEXT,
  original_job_id INTEGER REFERENCES jobs(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_jobs_state_checked ON jobs(state,checked_at);
CREATE INDEX IF NOT EXISTS idx_jobs_closed ON jobs(closed_at);
CREATE INDEX IF NOT EXISTS idx_jobs_original ON jobs(original_job_id);
CREATE TABLE IF NOT EXISTS job_dependencies(
  source_job_id INTEGER NOT NULL REFERENCES jobs(id),
  dest_job_id INTEGER NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
  PRIMARY KEY (source_job_id, dest_job_id)
);
CREATE INDEX IF NOT EXISTS idx_deps_source ON job_dependencies(source_job_id);
CREATE TABLE IF NOT EXISTS config(
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""

_SELECT_JOBS = """
SELECT j.*,
       (SELECT group_concat(r.id) FROM jobs r WHERE r.original_job_id = j.id) AS retry_ids
  FROM jobs j
"""


def _where(criteria: JobCriteria, excluding: Set[int]) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if criteria.state is not None:
        clauses.append("j.state = ?")
        params.append(criteria.state.value)
    if criteria.worker_assigned:
        clauses.append("j.worker_name IS NOT NULL")
    if criteria.checked_before is not None:
        clauses.append("j.checked_at < ?")
        params.append(to_iso(criteria.checked_before))
    if criteria.closed_before is not None:
        clauses.append("j.closed_at < ?")
        params.append(to_iso(criteria.closed_before))
    if criteria.created_before is not None:
        clauses.append("j.created_at < ?")
        params.append(to_iso(criteria.created_before))
    if criteria.roots_only:
        clauses.append("j.original_job_id IS NULL")
    if excluding:
        # one JSON parameter instead of one placeholder per id
        clauses.append("j.id NOT IN (SELECT value FROM json_each(?))")
        params.append(json.dumps(sorted(excluding)))
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


class SQLiteJobStore(JobStore):
    def __init__(self, db_path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        # identity map: one Job instance per id until the cache is cleared
        self._identity_map: Dict[int, Job] = {}
        self._init_db()

    def _init_db(self):
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(SCHEMA)
        for k, v in DEFAULTS.items():
            self.conn.execute(
                "INSERT INTO config(key,value) VALUES(?,?) ON CONFLICT(key) DO NOTHING",
                (k, str(v)),
            )
        self.conn.commit()

    def close(self):
        self.conn.close()

    def _hydrate(self, row: sqlite3.Row) -> Job:
        cached = self._identity_map.get(row["id"])
        if cached is not None:
            return cached
        retry_ids = sorted(int(i) for i in row["retry_ids"].split(",")) if row["retry_ids"] else []
        job = Job(
            id=row["id"],
            command=row["command"],
            state=JobState(row["state"]),
            worker_name=row["worker_name"],
            checked_at=from_iso(row["checked_at"]),
            created_at=from_iso(row["created_at"]),
            closed_at=from_iso(row["closed_at"]),
            original_job_id=row["original_job_id"],
            retry_job_ids=retry_ids,
        )
        self._identity_map[job.id] = job
        return job

    # ---------- JobStore contract ----------
    def find_one(self, criteria: JobCriteria, excluding: Set[int]) -> Optional[Job]:
        jobs = self.find_batch(criteria, excluding, limit=1)
        return jobs[0] if jobs else None

    def find_batch(self, criteria: JobCriteria, excluding: Set[int], limit: int) -> List[Job]:
        where, params = _where(criteria, excluding)
        rows = self.conn.execute(
            _SELECT_JOBS + where + " ORDER BY j.id ASC LIMIT ?",
            (*params, int(limit)),
        ).fetchall()
        return [self._hydrate(r) for r in rows]

    def has_incoming_dependency(self, job_id: int) -> bool:
        # Retries go away with their root, so an edge pointing at a retry blocks the root too.
        row = self.conn.execute(
            """
            SELECT 1 FROM job_dependencies
             WHERE source_job_id = ?
                OR source_job_id IN (SELECT id FROM jobs WHERE original_job_id = ?)
             LIMIT 1
            """,
            (job_id, job_id),
        ).fetchone()
        return row is not None

    def close_job(self, job: Job, new_state: JobState, closed_at: Optional[datetime] = None) -> bool:
        if new_state not in TERMINAL_STATES:
            raise ValueError(f"{new_state.value} is not a terminal state")
        closed_at = closed_at or utcnow()
        with self.conn:
            updated = self.conn.execute(
                "UPDATE jobs SET state=?, closed_at=?, worker_name=NULL WHERE id=? AND state=?",
                (new_state.value, to_iso(closed_at), job.id, job.state.value),
            ).rowcount
        if updated != 1:
            logger.debug("job %s changed state concurrently, not closed", job.id)
            return False
        job.state = new_state
        job.closed_at = closed_at
        job.worker_name = None
        return True

    def delete_jobs(self, job_ids: Iterable[int]) -> int:
        ids = sorted(set(job_ids))
        if not ids:
            return 0
        try:
            with self.conn:
                deleted = self.conn.execute(
                    "DELETE FROM jobs WHERE id IN (SELECT value FROM json_each(?))",
                    (json.dumps(ids),),
                ).rowcount
        except sqlite3.IntegrityError as e:
            raise ReferentialIntegrityError(ids, e) from e
        for job_id in ids:
            self._identity_map.pop(job_id, None)
        return deleted

    def clear_session_cache(self) -> None:
        self._identity_map.clear()

    # ---------- Jobs: insert / query ----------
    def add_job(self, job: Job) -> Job:
        with self.conn:
            cur = self.conn.execute(
                """INSERT INTO jobs(command,state,worker_name,checked_at,created_at,closed_at,original_job_id)
                   VALUES(?,?,?,?,?,?,?)""",
                (
                    job.command,
                    job.state.value,
                    job.worker_name,
                    to_iso(job.checked_at),
                    to_iso(job.created_at),
                    to_iso(job.closed_at),
                    job.original_job_id,
                ),
            )
        if job.original_job_id is not None:
            # the parent's retry list is now out of date
            self._identity_map.pop(job.original_job_id, None)
        return self.get(cur.lastrowid)

    def add_dependency(self, source_job_id: int, dest_job_id: int) -> None:
        """Record that dest_job_id depends on source_job_id."""
        with self.conn:
            self.conn.execute(
                "INSERT OR IGNORE INTO job_dependencies(source_job_id,dest_job_id) VALUES(?,?)",
                (source_job_id, dest_job_id),
            )

    def get(self, job_id: int) -> Optional[Job]:
        row = self.conn.execute(_SELECT_JOBS + " WHERE j.id = ?", (job_id,)).fetchone()
        return self._hydrate(row) if row else None

    def list_jobs(self, state: Optional[JobState] = None) -> List[Job]:
        where, params = _where(JobCriteria(state=state), set())
        rows = self.conn.execute(_SELECT_JOBS + where + " ORDER BY j.id ASC", params).fetchall()
        return [self._hydrate(r) for r in rows]

    def counts_by_state(self) -> List[Tuple[str, int]]:
        cur = self.conn.execute("SELECT state, COUNT(*) FROM jobs GROUP BY state ORDER BY state")
        return [(r[0], r[1]) for r in cur.fetchall()]

    # ---------- Config ----------
    def config_get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM config WHERE key=?", (key,)).fetchone()
        return row[0] if row else default

    def config_set(self, key: str, value: str) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO config(key,value) VALUES(?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, str(value)),
            )


def get_store() -> SQLiteJobStore:
    db_path = Path(os.environ.get("JOBSWEEP_HOME", Path.home() / ".jobsweep")) / "queue.db"
    store = getattr(_local, "store", None)
    if store is None or store.db_path != db_path:
        store = SQLiteJobStore(db_path)
        _local.store = store
    return store
