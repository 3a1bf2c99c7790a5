"""Contains unit tests for the sync worker and worker pool."""

import asyncio
import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from jira_sync_manager.configuration.models import SyncConfiguration, WorkerSettings
from jira_sync_manager.configuration.provider import MappingConfigurationProvider
from jira_sync_manager.jira.adapter import JiraAdapter
from jira_sync_manager.jira.models import ExternalIssueRequest, ExternalIssueResponse
from jira_sync_manager.schemas.domain import DomainObject
from jira_sync_manager.storage.host import SqlHostPersistence
from jira_sync_manager.storage.jobs import JobStore
from jira_sync_manager.synchronize.exceptions import PermanentFailure, RateLimitedError, TransientFailure
from jira_sync_manager.synchronize.models import JobOutcome, SyncJobState
from jira_sync_manager.synchronize.worker import SyncWorker, WorkerPool

from helpers import FakeClock, FakeJiraClient, sync_settings


class SlowJiraClient(FakeJiraClient):
    """Jira client that never answers in time."""

    async def create_issue(self, request: ExternalIssueRequest) -> ExternalIssueResponse:
        self.requests.append(request)
        await asyncio.sleep(10)
        raise AssertionError("unreachable")


class FlakyHost(SqlHostPersistence):
    """Host persistence whose write-back fails a given number of times."""

    def __init__(self, session_factory: sessionmaker[Session], failures: int) -> None:
        super().__init__(session_factory)
        self.failures = failures

    def set_external_key_and_note(self, object_id: int, external_key: str, note_text: str) -> None:
        if self.failures:
            self.failures -= 1
            raise ConnectionError("host database unavailable")
        super().set_external_key_and_note(object_id, external_key, note_text)


def make_worker(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    client: FakeJiraClient,
    clock: FakeClock,
    **settings: object,
) -> SyncWorker:
    return SyncWorker(
        job_store,
        host,
        config_provider,
        settings=WorkerSettings(**settings),
        client_factory=lambda config: client,
        worker_id="worker-test",
        clock=clock,
    )


@pytest.fixture
def enqueued(host: SqlHostPersistence, job_store: JobStore, accepted_object: DomainObject) -> DomainObject:
    """An accepted object stored in the host with a pending sync job."""
    host.save_object(accepted_object)
    job_store.try_claim(accepted_object.id)
    return accepted_object


@pytest.mark.asyncio
async def test_successful_sync_writes_key_and_note(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test the full path from pending job to written-back external key."""
    client = FakeJiraClient(["ABC-123"])
    worker = make_worker(job_store, host, config_provider, client, clock)

    batch = await worker.run_once()

    assert batch.count(JobOutcome.SUCCEEDED) == 1
    job = job_store.get(enqueued.id)
    assert job.state is SyncJobState.SUCCEEDED
    assert job.attempts == 1
    assert job.external_key == "ABC-123"
    assert host.get_external_key(enqueued.id) == "ABC-123"
    assert host.list_notes(enqueued.id) == ["External issue created: ABC-123"]

    assert len(client.requests) == 1
    request = client.requests[0]
    assert request.project_key == "ABC"
    assert request.issue_type == "Task"
    assert request.summary == "#101 Printer on fire"
    assert request.description == "Smoke everywhere."
    assert client.closed == 1


@pytest.mark.asyncio
async def test_rate_limited_job_is_retried_until_success(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that three 429 responses followed by a success create one issue."""
    rate_limited = [RateLimitedError("Jira rate limit exceeded", retry_after=10) for _ in range(3)]
    client = FakeJiraClient([*rate_limited, "ABC-124"])
    worker = make_worker(job_store, host, config_provider, client, clock)

    eligible_times = []
    for expected_attempts in (1, 2, 3):
        batch = await worker.run_once()
        assert batch.count(JobOutcome.RETRY_SCHEDULED) == 1
        job = job_store.get(enqueued.id)
        assert job.state is SyncJobState.FAILED_RETRYABLE
        assert job.attempts == expected_attempts
        assert job.next_eligible_at >= clock.now + timedelta(seconds=10)
        eligible_times.append(job.next_eligible_at)

        assert (await worker.run_once()).processed == 0
        clock.now = job.next_eligible_at

    assert eligible_times == sorted(set(eligible_times))

    batch = await worker.run_once()
    assert batch.count(JobOutcome.SUCCEEDED) == 1
    job = job_store.get(enqueued.id)
    assert job.state is SyncJobState.SUCCEEDED
    assert job.attempts == 4
    assert host.get_external_key(enqueued.id) == "ABC-124"
    assert host.list_notes(enqueued.id) == ["External issue created: ABC-124"]
    assert len(client.requests) == 4


@pytest.mark.asyncio
async def test_backoff_grows_exponentially(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that consecutive transient failures double the delay."""
    client = FakeJiraClient([TransientFailure("Jira API error 503"), TransientFailure("Jira API error 503")])
    worker = make_worker(job_store, host, config_provider, client, clock, backoff_base=2.0)

    await worker.run_once()
    assert job_store.get(enqueued.id).next_eligible_at == clock.now + timedelta(seconds=2)

    clock.advance(2)
    await worker.run_once()
    assert job_store.get(enqueued.id).next_eligible_at == clock.now + timedelta(seconds=4)


@pytest.mark.asyncio
async def test_permanent_failure_is_terminal_and_annotated(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a permanent error ends the job at once and leaves a failure note."""
    client = FakeJiraClient([PermanentFailure("Jira API error 400: project: project is required", status_code=400)])
    worker = make_worker(job_store, host, config_provider, client, clock)

    batch = await worker.run_once()

    assert batch.count(JobOutcome.FAILED_TERMINAL) == 1
    job = job_store.get(enqueued.id)
    assert job.state is SyncJobState.FAILED_TERMINAL
    assert job.attempts == 1
    assert "project is required" in job.last_error
    assert host.get_external_key(enqueued.id) is None
    notes = host.list_notes(enqueued.id)
    assert len(notes) == 1
    assert notes[0].startswith("External issue creation failed after 1 attempt(s)")


@pytest.mark.asyncio
async def test_attempt_ceiling_makes_job_terminal(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a job failing on every attempt stops at the attempt ceiling."""
    client = FakeJiraClient([TransientFailure("Jira API error 502") for _ in range(3)])
    worker = make_worker(job_store, host, config_provider, client, clock, max_attempts=3)

    outcomes = []
    for _ in range(3):
        batch = await worker.run_once()
        outcomes.extend(result.outcome for result in batch.results)
        clock.advance(600)

    assert outcomes == [JobOutcome.RETRY_SCHEDULED, JobOutcome.RETRY_SCHEDULED, JobOutcome.FAILED_TERMINAL]
    job = job_store.get(enqueued.id)
    assert job.state is SyncJobState.FAILED_TERMINAL
    assert job.attempts == 3
    assert (await worker.run_once()).processed == 0
    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_retry_window_makes_job_terminal(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a job still failing after the retry window stops retrying."""
    client = FakeJiraClient([TransientFailure("Jira API error 503"), TransientFailure("Jira API error 503")])
    worker = make_worker(job_store, host, config_provider, client, clock, max_retry_window=timedelta(hours=1))

    assert (await worker.run_once()).count(JobOutcome.RETRY_SCHEDULED) == 1
    clock.advance(2 * 3600)

    assert (await worker.run_once()).count(JobOutcome.FAILED_TERMINAL) == 1
    assert job_store.get(enqueued.id).state is SyncJobState.FAILED_TERMINAL


@pytest.mark.asyncio
async def test_commit_failure_is_retried_without_second_creation(
    session_factory: sessionmaker[Session],
    job_store: JobStore,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    accepted_object: DomainObject,
) -> None:
    """Test that a failed write-back reuses the recorded key on the next attempt."""
    host = FlakyHost(session_factory, failures=1)
    host.save_object(accepted_object)
    job_store.try_claim(accepted_object.id)
    client = FakeJiraClient(["ABC-125"])
    worker = make_worker(job_store, host, config_provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.RETRY_SCHEDULED) == 1
    job = job_store.get(accepted_object.id)
    assert job.external_key == "ABC-125"
    assert "LocalCommitFailure" in job.last_error
    assert host.get_external_key(accepted_object.id) is None

    clock.advance(60)
    assert (await worker.run_once()).count(JobOutcome.SUCCEEDED) == 1
    assert host.get_external_key(accepted_object.id) == "ABC-125"
    assert host.list_notes(accepted_object.id) == ["External issue created: ABC-125"]
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_object_already_linked_in_host_skips_creation(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    accepted_object: DomainObject,
) -> None:
    """Test that a key set on the host meanwhile completes the job without a Jira call."""
    host.save_object(accepted_object.model_copy(update={"external_key": "ABC-77"}))
    job_store.try_claim(accepted_object.id)
    client = FakeJiraClient()
    worker = make_worker(job_store, host, config_provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.SUCCEEDED) == 1
    assert job_store.get(accepted_object.id).external_key == "ABC-77"
    assert client.requests == []
    assert host.list_notes(accepted_object.id) == []


@pytest.mark.asyncio
async def test_deleted_object_fails_terminally(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
) -> None:
    """Test that a job for an object missing from the host fails terminally."""
    job_store.try_claim(555)
    client = FakeJiraClient()
    worker = make_worker(job_store, host, config_provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.FAILED_TERMINAL) == 1
    assert "no longer exists" in job_store.get(555).last_error
    assert client.requests == []


@pytest.mark.asyncio
async def test_client_timeout_is_transient(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a Jira call exceeding the client timeout is retried later."""
    client = SlowJiraClient()
    worker = make_worker(job_store, host, config_provider, client, clock, client_timeout=0.05)

    batch = await worker.run_once()

    assert batch.count(JobOutcome.RETRY_SCHEDULED) == 1
    assert "timed out" in job_store.get(enqueued.id).last_error
    assert client.closed == 1


@pytest.mark.asyncio
async def test_incomplete_configuration_is_retried(
    job_store: JobStore,
    host: SqlHostPersistence,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a job picks up configuration fixed after a failed attempt."""
    provider = MagicMock()
    provider.read.side_effect = [sync_settings(api_token=None), sync_settings(api_token="fixed-token")]
    client = FakeJiraClient(["ABC-126"])
    worker = make_worker(job_store, host, provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.RETRY_SCHEDULED) == 1
    assert "api_token" in job_store.get(enqueued.id).last_error

    clock.advance(60)
    assert (await worker.run_once()).count(JobOutcome.SUCCEEDED) == 1
    assert host.get_external_key(enqueued.id) == "ABC-126"


@pytest.mark.asyncio
async def test_invalid_summary_template_is_retried(
    job_store: JobStore,
    host: SqlHostPersistence,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a broken summary template does not reach Jira."""
    client = FakeJiraClient()
    provider = MappingConfigurationProvider(sync_settings(summary_template="{{ unknown_field }}"))
    worker = make_worker(job_store, host, provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.RETRY_SCHEDULED) == 1
    assert "Invalid summary template" in job_store.get(enqueued.id).last_error
    assert client.requests == []


@pytest.mark.asyncio
async def test_stale_in_flight_job_is_recovered(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a job abandoned by a crashed worker is picked up again."""
    job_store.acquire(enqueued.id, "worker-crashed")
    client = FakeJiraClient(["ABC-127"])
    worker = make_worker(job_store, host, config_provider, client, clock, processing_timeout=timedelta(minutes=10))

    assert (await worker.run_once()).processed == 0
    clock.advance(601)

    batch = await worker.run_once()

    assert batch.recovered_stale == 1
    assert batch.count(JobOutcome.SUCCEEDED) == 1
    job = job_store.get(enqueued.id)
    assert job.attempts == 2
    assert job.external_key == "ABC-127"


@pytest.mark.asyncio
async def test_stale_job_with_recorded_key_is_not_created_twice(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a crash after Jira confirmed the creation only repeats the write-back."""
    job_store.acquire(enqueued.id, "worker-crashed")
    job_store.record_external_key(enqueued.id, "worker-crashed", "ABC-128")
    clock.advance(601)
    client = FakeJiraClient()
    worker = make_worker(job_store, host, config_provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.SUCCEEDED) == 1
    assert host.get_external_key(enqueued.id) == "ABC-128"
    assert client.requests == []


@pytest.mark.asyncio
async def test_worker_pool_processes_each_job_once(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    accepted_object: DomainObject,
) -> None:
    """Test that concurrent workers never process the same job twice."""
    for object_id in (201, 202, 203):
        host.save_object(accepted_object.model_copy(update={"id": object_id}))
        job_store.try_claim(object_id)
    client = FakeJiraClient(["ABC-201", "ABC-202", "ABC-203"])
    pool = WorkerPool.create(
        job_store,
        host,
        config_provider,
        settings=WorkerSettings(concurrency=2),
        client_factory=lambda config: client,
        clock=clock,
    )

    batches = await pool.run_once()

    assert len(pool.workers) == 2
    assert len({worker.worker_id for worker in pool.workers}) == 2
    assert sum(batch.count(JobOutcome.SUCCEEDED) for batch in batches) == 3
    assert len(client.requests) == 3
    assert sorted(host.get_external_key(object_id) for object_id in (201, 202, 203)) == ["ABC-201", "ABC-202", "ABC-203"]


@pytest.mark.asyncio
async def test_run_stops_when_event_is_set(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that the polling loop drains the queue and exits on the stop event."""
    client = FakeJiraClient(["ABC-129"])
    worker = make_worker(job_store, host, config_provider, client, clock, poll_interval=0.01)
    stop_event = asyncio.Event()

    task = asyncio.create_task(worker.run(stop_event))
    for _ in range(200):
        if job_store.get(enqueued.id).state is SyncJobState.SUCCEEDED:
            break
        await asyncio.sleep(0.01)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert job_store.get(enqueued.id).state is SyncJobState.SUCCEEDED


@pytest.mark.asyncio
async def test_run_keeps_polling_after_store_error(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that a locked job database fails one poll and not the polling loop."""
    recover_stale = job_store.recover_stale
    calls = []

    def locked_once(*args: object, **kwargs: object) -> int:
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("UPDATE sync_jobs", None, Exception("database is locked"))
        return recover_stale(*args, **kwargs)

    job_store.recover_stale = locked_once  # type: ignore[method-assign]
    client = FakeJiraClient(["ABC-130"])
    worker = make_worker(job_store, host, config_provider, client, clock, poll_interval=0.01)
    stop_event = asyncio.Event()

    task = asyncio.create_task(worker.run(stop_event))
    for _ in range(200):
        if job_store.get(enqueued.id).state is SyncJobState.SUCCEEDED:
            break
        await asyncio.sleep(0.01)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert len(calls) >= 2
    assert task.exception() is None
    assert job_store.get(enqueued.id).state is SyncJobState.SUCCEEDED
    assert host.get_external_key(enqueued.id) == "ABC-130"


@pytest.mark.asyncio
async def test_store_error_on_one_job_does_not_end_the_batch(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    accepted_object: DomainObject,
) -> None:
    """Test that a job whose final state cannot be stored leaves the others unaffected."""
    for object_id in (201, 202):
        host.save_object(accepted_object.model_copy(update={"id": object_id}))
        job_store.try_claim(object_id)
    mark_succeeded = job_store.mark_succeeded

    def locked_for_201(object_id: int, *args: object, **kwargs: object) -> bool:
        if object_id == 201:
            raise OperationalError("UPDATE sync_jobs", None, Exception("database is locked"))
        return mark_succeeded(object_id, *args, **kwargs)

    job_store.mark_succeeded = locked_for_201  # type: ignore[method-assign]
    client = FakeJiraClient(["ABC-201", "ABC-202"])
    worker = make_worker(job_store, host, config_provider, client, clock)

    batch = await worker.run_once()

    assert [result.object_id for result in batch.results] == [202]
    assert batch.count(JobOutcome.SUCCEEDED) == 1
    assert job_store.get(202).state is SyncJobState.SUCCEEDED
    stuck = job_store.get(201)
    assert stuck.state is SyncJobState.IN_FLIGHT
    assert stuck.external_key is not None
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_store_calls_run_off_the_event_loop_thread(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
    clock: FakeClock,
    enqueued: DomainObject,
) -> None:
    """Test that job store calls never block the event loop shared by the pool."""
    thread_ids = []
    for name in ("recover_stale", "eligible_jobs", "acquire", "mark_succeeded"):
        original = getattr(job_store, name)

        def recording(*args: object, _original=original, **kwargs: object) -> object:
            thread_ids.append(threading.get_ident())
            return _original(*args, **kwargs)

        setattr(job_store, name, recording)
    client = FakeJiraClient(["ABC-131"])
    worker = make_worker(job_store, host, config_provider, client, clock)

    assert (await worker.run_once()).count(JobOutcome.SUCCEEDED) == 1
    assert len(thread_ids) == 4
    assert threading.get_ident() not in thread_ids


def test_default_client_factory_builds_jira_adapter(
    job_store: JobStore,
    host: SqlHostPersistence,
    config_provider: MappingConfigurationProvider,
) -> None:
    """Test that workers talk to Jira through the httpx adapter by default."""
    worker = SyncWorker(job_store, host, config_provider, settings=WorkerSettings(client_timeout=5.0))
    client = worker.client_factory(SyncConfiguration.from_provider(config_provider))

    assert isinstance(client, JiraAdapter)
    assert client.client.base_url.host == "example.atlassian.net"
    asyncio.run(client.aclose())
