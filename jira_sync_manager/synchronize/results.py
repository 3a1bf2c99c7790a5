"""Contains results of sync job processing."""

from jira_sync_manager.synchronize.models import JobOutcome


class JobProcessingResult:
    """Contains the result of one processing attempt of a sync job."""

    def __init__(
        self,
        object_id: int,
        outcome: JobOutcome,
        attempts: int,
        external_key: str | None = None,
        error: str | None = None,
    ) -> None:
        """Initialize the result with the job's object, outcome, attempt count, and key or error."""
        self.object_id = object_id
        self.outcome = outcome
        self.attempts = attempts
        self.external_key = external_key
        self.error = error

    def __repr__(self) -> str:
        """Return a compact representation for logs and test output."""
        return f"JobProcessingResult(object_id={self.object_id!r}, outcome={self.outcome.value!r}, attempts={self.attempts!r})"


class BatchResult:
    """Contains the results of one polling pass of a worker."""

    def __init__(self, results: list[JobProcessingResult] | None = None, recovered_stale: int = 0) -> None:
        """Initialize the batch with its job results and the number of recovered stale jobs."""
        self.results = results or []
        self.recovered_stale = recovered_stale

    def count(self, outcome: JobOutcome) -> int:
        """Number of jobs in the batch with the given outcome."""
        return sum(1 for result in self.results if result.outcome is outcome)

    @property
    def processed(self) -> int:
        """Number of jobs this worker acquired and processed."""
        return len(self.results)
