from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    TERMINATED = "terminated"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


TERMINAL_STATES = frozenset({
    JobState.FINISHED,
    JobState.FAILED,
    JobState.TERMINATED,
    JobState.CANCELED,
    JobState.INCOMPLETE,
})


class Job(BaseModel):
    id: Optional[int] = None
    command: str
    state: JobState = Field(default=JobState.PENDING)
    worker_name: Optional[str] = None  # set only while running
    checked_at: Optional[datetime] = None  # last heartbeat
    created_at: datetime
    closed_at: Optional[datetime] = None
    original_job_id: Optional[int] = None  # None for root jobs
    retry_job_ids: List[int] = Field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.original_job_id is None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_retried(self) -> bool:
        """True once at least one retry has been spawned to take over this job."""
        return len(self.retry_job_ids) > 0


class JobCriteria(BaseModel):
    """
    Store-independent predicate for find_one / find_batch.
    Unset fields do not constrain the result; set fields are ANDed.
    """
    state: Optional[JobState] = None
    worker_assigned: bool = False
    checked_before: Optional[datetime] = None
    closed_before: Optional[datetime] = None
    created_before: Optional[datetime] = None
    roots_only: bool = False


class CleanupConfig(BaseModel):
    stale_threshold: timedelta = timedelta(minutes=5)
    max_retention: timedelta = timedelta(days=30)
    per_call_limit: int = Field(default=1000, gt=0)

    @field_validator("stale_threshold", "max_retention")
    @classmethod
    def _positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("duration must be positive")
        return v


class CleanupReport(BaseModel):
    reclaimed: int = 0
    skipped_retried: int = 0
    deleted: int = 0
    deferred: int = 0
