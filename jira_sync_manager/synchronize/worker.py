"""Processes sync jobs from the durable queue.

Workers poll the job store, move an eligible job to in-flight with a
compare-and-swap, create the Jira issue, and hand the key to the state
writer. The Jira call and the host write-back run under a timeout. Job
store calls run in worker threads, off the event loop shared by the pool.

The external key is recorded on the job row as soon as Jira confirms the
creation. A later attempt of the same job (after a failed write-back or a
worker crash) finds the key and only repeats the write-back, so the Jira
issue is never created twice for the same job. The one remaining window is
a crash between Jira's response and recording the key.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Callable, TypeVar

import jinja2
import structlog

from jira_sync_manager.configuration.exceptions import ConfigurationError
from jira_sync_manager.configuration.models import SyncConfiguration, WorkerSettings
from jira_sync_manager.configuration.provider import ConfigurationProvider
from jira_sync_manager.jira.abc import JiraClientBase
from jira_sync_manager.jira.adapter import JiraAdapter
from jira_sync_manager.jira.models import ExternalIssueRequest, ExternalIssueResponse
from jira_sync_manager.schemas.domain import DomainObject
from jira_sync_manager.storage.host import HostPersistence
from jira_sync_manager.storage.jobs import JobStore, SyncJobSnapshot
from jira_sync_manager.storage.models import utcnow
from jira_sync_manager.synchronize.exceptions import LocalCommitFailure, PermanentFailure, TransientFailure
from jira_sync_manager.synchronize.models import JobOutcome, SyncJobState
from jira_sync_manager.synchronize.results import BatchResult, JobProcessingResult
from jira_sync_manager.synchronize.writer import StateWriter
from jira_sync_manager.utils.constants import EXTERNAL_ISSUE_FAILED_NOTE
from jira_sync_manager.utils.retry import compute_backoff_delay, compute_next_eligible_at
from jira_sync_manager.utils.templates import render_summary

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

ClientFactory = Callable[[SyncConfiguration], JiraClientBase]

T = TypeVar("T")


class SyncWorker:
    """Pulls eligible sync jobs and processes them one at a time."""

    def __init__(
        self,
        job_store: JobStore,
        host: HostPersistence,
        config_provider: ConfigurationProvider,
        settings: WorkerSettings | None = None,
        client_factory: ClientFactory | None = None,
        worker_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the worker.

        Args:
            job_store: Durable queue of sync jobs.
            host: Host persistence used to load objects and write results back.
            config_provider: Read for a fresh configuration snapshot on every job.
            settings: Retry, timeout and polling tunables.
            client_factory: Builds a Jira client from a configuration snapshot.
            worker_id: Identifier recorded as the owner of in-flight jobs.
            clock: Returns the current aware UTC time.
        """
        self.job_store = job_store
        self.host = host
        self.config_provider = config_provider
        self.settings = settings or WorkerSettings()
        self.client_factory = client_factory or self._default_client_factory
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:12]}"
        self.writer = StateWriter(host)
        self._clock = clock

    def _default_client_factory(self, config: SyncConfiguration) -> JiraClientBase:
        return JiraAdapter.create(config, timeout=self.settings.client_timeout)

    # Polling

    async def run_once(self) -> BatchResult:
        """Recover stale jobs, then acquire and process up to one batch of eligible jobs."""
        recovered = await self._call_store(self.job_store.recover_stale, self.settings.processing_timeout, now=self._clock())
        results: list[JobProcessingResult] = []
        candidates = await self._call_store(self.job_store.eligible_jobs, now=self._clock(), limit=self.settings.batch_size)
        for candidate in candidates:
            try:
                job = await self._call_store(self.job_store.acquire, candidate.object_id, self.worker_id, now=self._clock())
                if job is None:
                    logger.debug("Sync job taken by another worker", object_id=candidate.object_id, worker_id=self.worker_id)
                    continue
                results.append(await self.process_job(job))
            except Exception:
                # The job stays in flight and is picked up again by stale recovery.
                logger.exception("Sync job could not be processed", object_id=candidate.object_id, worker_id=self.worker_id)
        return BatchResult(results, recovered_stale=recovered)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll the queue until the stop event is set.

        A failed poll is logged and retried after the poll interval; it never
        ends the loop.
        """
        logger.info("Sync worker started", worker_id=self.worker_id, poll_interval=self.settings.poll_interval)
        while not stop_event.is_set():
            try:
                batch = await self.run_once()
            except Exception:
                logger.exception("Sync worker poll failed", worker_id=self.worker_id)
            else:
                if batch.processed:
                    continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Sync worker stopped", worker_id=self.worker_id)

    # Processing

    async def process_job(self, job: SyncJobSnapshot) -> JobProcessingResult:
        """Process one in-flight job acquired by this worker."""
        attempts = job.attempts + 1
        log = logger.bind(object_id=job.object_id, worker_id=self.worker_id, attempts=attempts)

        if job.attempts >= self.settings.max_attempts or self._retry_window_exceeded(job):
            return await self._fail_terminal(job, job.attempts, job.last_error or "Retry budget exhausted")

        log.info("Processing sync job", job_state=job.state.value, has_recorded_key=job.external_key is not None)
        try:
            external_key = await self._synchronize(job)
        except PermanentFailure as exc:
            return await self._fail_terminal(job, attempts, str(exc))
        except (TransientFailure, LocalCommitFailure, ConfigurationError) as exc:
            return await self._fail_transient(job, attempts, exc)
        except Exception as exc:
            log.exception("Unexpected error while processing sync job")
            return await self._fail_transient(job, attempts, exc)

        if not await self._call_store(self.job_store.mark_succeeded, job.object_id, self.worker_id, attempts, external_key=external_key):
            return JobProcessingResult(job.object_id, JobOutcome.SKIPPED, attempts, external_key=external_key)
        log.info("Sync job succeeded", job_state=SyncJobState.SUCCEEDED.value, external_key=external_key)
        return JobProcessingResult(job.object_id, JobOutcome.SUCCEEDED, attempts, external_key=external_key)

    async def _synchronize(self, job: SyncJobSnapshot) -> str:
        """Create the Jira issue if needed and write its key back. Returns the key."""
        config = SyncConfiguration.from_provider(self.config_provider)
        domain_object = await self._call_host(self.host.get_object, job.object_id)
        if domain_object is None:
            raise PermanentFailure(f"Object {job.object_id} no longer exists in the host")
        if domain_object.has_external_key:
            logger.info("Host object already holds an external key", object_id=job.object_id, external_key=domain_object.external_key)
            return str(domain_object.external_key)

        external_key = job.external_key
        if external_key is None:
            request = self._build_request(config, domain_object)
            response = await self._create_external_issue(config, request)
            external_key = response.key
            try:
                recorded = await self._call_store(self.job_store.record_external_key, job.object_id, self.worker_id, external_key)
            except Exception:
                logger.exception("Failed to record external key on sync job", object_id=job.object_id, external_key=external_key)
                recorded = False
            if not recorded:
                logger.warning("Could not record external key on sync job", object_id=job.object_id, external_key=external_key)
        else:
            logger.info("Reusing external key recorded by an earlier attempt", object_id=job.object_id, external_key=external_key)

        await self._call_host(self.writer.commit, job.object_id, external_key, failure=LocalCommitFailure)
        return external_key

    def _build_request(self, config: SyncConfiguration, domain_object: DomainObject) -> ExternalIssueRequest:
        """Render the summary now, so template edits apply to every job not yet succeeded."""
        try:
            summary = render_summary(config.summary_template, domain_object)
        except jinja2.TemplateError as exc:
            raise ConfigurationError(f"Invalid summary template: {exc}") from exc
        return ExternalIssueRequest(
            project_key=config.project_key,
            issue_type=config.issue_type,
            summary=summary,
            description=domain_object.description,
        )

    async def _create_external_issue(self, config: SyncConfiguration, request: ExternalIssueRequest) -> ExternalIssueResponse:
        client = self.client_factory(config)
        try:
            return await asyncio.wait_for(client.create_issue(request), timeout=self.settings.client_timeout)
        except asyncio.TimeoutError as exc:
            raise TransientFailure(f"Jira call timed out after {self.settings.client_timeout} seconds") from exc
        finally:
            await client.aclose()

    async def _call_store(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a job store call in a thread so a locked database never blocks the other workers."""
        return await asyncio.to_thread(func, *args, **kwargs)

    async def _call_host(self, func: Callable[..., T], *args: Any, failure: type[Exception] = TransientFailure) -> T:
        """Run a blocking host persistence call in a thread under the commit timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.settings.commit_timeout)
        except asyncio.TimeoutError as exc:
            raise failure(f"Host persistence call {getattr(func, '__name__', func)} timed out after {self.settings.commit_timeout} seconds") from exc

    # Failure handling

    def _retry_window_exceeded(self, job: SyncJobSnapshot) -> bool:
        return self._clock() - job.claimed_at > self.settings.max_retry_window

    async def _fail_transient(self, job: SyncJobSnapshot, attempts: int, exc: Exception) -> JobProcessingResult:
        error = f"{type(exc).__name__}: {exc}"
        if attempts >= self.settings.max_attempts or self._retry_window_exceeded(job):
            return await self._fail_terminal(job, attempts, error)

        delay = compute_backoff_delay(
            attempts,
            initial_delay=self.settings.backoff_base,
            max_delay=self.settings.backoff_ceiling,
            retry_after=getattr(exc, "retry_after", None),
        )
        next_eligible_at = compute_next_eligible_at(self._clock(), delay)
        if not await self._call_store(self.job_store.mark_retryable, job.object_id, self.worker_id, attempts, error, next_eligible_at):
            return JobProcessingResult(job.object_id, JobOutcome.SKIPPED, attempts, error=error)
        logger.warning(
            "Sync attempt failed, retry scheduled",
            object_id=job.object_id,
            job_state=SyncJobState.FAILED_RETRYABLE.value,
            attempts=attempts,
            max_attempts=self.settings.max_attempts,
            error_type=type(exc).__name__,
            error=str(exc),
            delay=delay,
            next_eligible_at=next_eligible_at.isoformat(),
        )
        return JobProcessingResult(job.object_id, JobOutcome.RETRY_SCHEDULED, attempts, error=error)

    async def _fail_terminal(self, job: SyncJobSnapshot, attempts: int, error: str) -> JobProcessingResult:
        if not await self._call_store(self.job_store.mark_terminal, job.object_id, self.worker_id, attempts, error):
            return JobProcessingResult(job.object_id, JobOutcome.SKIPPED, attempts, error=error)
        logger.error(
            "Sync job failed terminally; operator action required",
            object_id=job.object_id,
            job_state=SyncJobState.FAILED_TERMINAL.value,
            attempts=attempts,
            error=error,
            recorded_external_key=job.external_key,
        )
        note = EXTERNAL_ISSUE_FAILED_NOTE.format(attempts=attempts, error=error)
        try:
            await asyncio.wait_for(asyncio.to_thread(self.writer.annotate_failure, job.object_id, note), timeout=self.settings.commit_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out appending failure note", object_id=job.object_id)
        return JobProcessingResult(job.object_id, JobOutcome.FAILED_TERMINAL, attempts, error=error)


class WorkerPool:
    """Runs several sync workers concurrently on one event loop."""

    def __init__(self, workers: list[SyncWorker]) -> None:
        """Initialize the pool with already-constructed workers."""
        if not workers:
            raise ValueError("A worker pool needs at least one worker")
        self.workers = workers

    @classmethod
    def create(
        cls,
        job_store: JobStore,
        host: HostPersistence,
        config_provider: ConfigurationProvider,
        settings: WorkerSettings | None = None,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "WorkerPool":
        """Create a pool with ``settings.concurrency`` workers sharing one job store."""
        settings = settings or WorkerSettings()
        prefix = uuid.uuid4().hex[:8]
        workers = [
            SyncWorker(
                job_store,
                host,
                config_provider,
                settings=settings,
                client_factory=client_factory,
                worker_id=f"worker-{prefix}-{index}",
                clock=clock,
            )
            for index in range(settings.concurrency)
        ]
        return cls(workers)

    async def run_once(self) -> list[BatchResult]:
        """Run one polling pass on every worker concurrently."""
        return list(await asyncio.gather(*(worker.run_once() for worker in self.workers)))

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run every worker until the stop event is set."""
        await asyncio.gather(*(worker.run(stop_event) for worker in self.workers))
