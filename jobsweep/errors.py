class ConfigError(ValueError):
    """Malformed clean-up configuration. Raised before any scan begins."""


class CleanupError(RuntimeError):
    """Base class for failures of a clean-up pass."""


class ReferentialIntegrityError(CleanupError):
    """A batched delete was rejected because a dependency edge still points at one of the jobs."""

    def __init__(self, job_ids, cause: Exception):
        self.job_ids = sorted(job_ids)
        super().__init__(f"delete of {len(self.job_ids)} job(s) rejected by the store: {cause}")
