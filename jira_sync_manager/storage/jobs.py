"""Durable sync job queue and idempotency guard.

Every state change is a compare-and-swap UPDATE that only applies when the
row is still in the expected state (and, for in-flight jobs, still owned by
the calling worker). A caller that loses the race sees ``False`` or ``None``
and must not act on the job.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Self

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from jira_sync_manager.storage.models import SyncJobRecord, utcnow
from jira_sync_manager.synchronize.models import CLAIMABLE_STATES, SyncJobState

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SyncJobSnapshot:
    """Read-only copy of a sync job row."""

    object_id: int
    state: SyncJobState
    attempts: int
    next_eligible_at: datetime
    last_error: str | None
    external_key: str | None
    worker_id: str | None
    claimed_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: SyncJobRecord) -> Self:
        """Copy the columns of an ORM row."""
        return cls(
            object_id=record.object_id,
            state=SyncJobState(record.state),
            attempts=record.attempts,
            next_eligible_at=record.next_eligible_at,
            last_error=record.last_error,
            external_key=record.external_key,
            worker_id=record.worker_id,
            claimed_at=record.claimed_at,
            started_at=record.started_at,
            completed_at=record.completed_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class JobStore:
    """SQLAlchemy-backed store of sync jobs."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        allow_terminal_reclaim: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory for sessions bound to the job database.
            allow_terminal_reclaim: Whether a save event may re-claim an object
                whose job failed terminally. Off by default: a terminal failure
                needs an operator to look at it.
            clock: Returns the current aware UTC time.
        """
        self._session_factory = session_factory
        self.allow_terminal_reclaim = allow_terminal_reclaim
        self._clock = clock

    # Idempotency guard

    def try_claim(self, object_id: int) -> bool:
        """Atomically reserve an object for synchronization.

        Claiming and job creation are the same INSERT; the UNIQUE constraint
        on object_id guarantees that of any number of concurrent claims for
        one object, exactly one succeeds.

        Returns:
            True if a new pending job was created (or a terminal one re-opened).
        """
        now = self._clock()
        with self._session_factory() as session:
            try:
                with session.begin():
                    session.add(
                        SyncJobRecord(
                            object_id=object_id,
                            state=SyncJobState.PENDING.value,
                            attempts=0,
                            next_eligible_at=now,
                            claimed_at=now,
                            created_at=now,
                            updated_at=now,
                        )
                    )
            except IntegrityError:
                logger.debug("Sync job already exists for object", object_id=object_id)
            else:
                logger.info("Claimed object for synchronization", object_id=object_id, job_state=SyncJobState.PENDING.value, attempts=0)
                return True

        if self.allow_terminal_reclaim and self._reopen_terminal(object_id, now):
            logger.info("Re-claimed terminally failed object for synchronization", object_id=object_id)
            return True
        return False

    def requeue_terminal(self, object_id: int) -> bool:
        """Operator action: move a terminally failed job back to pending.

        A recorded external key is kept, so the retried job commits the
        existing Jira issue instead of creating a second one.
        """
        reopened = self._reopen_terminal(object_id, self._clock())
        if reopened:
            logger.warning("Operator re-queued terminally failed sync job", object_id=object_id)
        return reopened

    def _reopen_terminal(self, object_id: int, now: datetime) -> bool:
        return self._compare_and_swap(
            object_id,
            expected_states=(SyncJobState.FAILED_TERMINAL,),
            values={
                "state": SyncJobState.PENDING.value,
                "attempts": 0,
                "next_eligible_at": now,
                "claimed_at": now,
                "worker_id": None,
                "started_at": None,
                "completed_at": None,
            },
        )

    # Queue

    def eligible_jobs(self, now: datetime | None = None, limit: int = 10) -> list[SyncJobSnapshot]:
        """List pending and retryable jobs whose next-eligible time has passed, oldest first."""
        now = now or self._clock()
        statement = (
            select(SyncJobRecord)
            .where(SyncJobRecord.state.in_([state.value for state in CLAIMABLE_STATES]))
            .where(SyncJobRecord.next_eligible_at <= now)
            .order_by(SyncJobRecord.next_eligible_at, SyncJobRecord.id)
            .limit(limit)
        )
        with self._session_factory() as session:
            return [SyncJobSnapshot.from_record(record) for record in session.scalars(statement)]

    def acquire(self, object_id: int, worker_id: str, now: datetime | None = None) -> SyncJobSnapshot | None:
        """Move an eligible job to in-flight for one worker.

        Returns:
            The acquired job, or None if another worker got there first or the
            job is no longer eligible.
        """
        now = now or self._clock()
        with self._session_factory() as session, session.begin():
            result = session.execute(
                update(SyncJobRecord)
                .where(SyncJobRecord.object_id == object_id)
                .where(SyncJobRecord.state.in_([state.value for state in CLAIMABLE_STATES]))
                .where(SyncJobRecord.next_eligible_at <= now)
                .values(state=SyncJobState.IN_FLIGHT.value, worker_id=worker_id, started_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            record = session.scalars(select(SyncJobRecord).where(SyncJobRecord.object_id == object_id)).one()
            return SyncJobSnapshot.from_record(record)

    def record_external_key(self, object_id: int, worker_id: str, external_key: str) -> bool:
        """Persist the key of a confirmed external creation on the in-flight job."""
        return self._finish_in_flight(object_id, worker_id, {"external_key": external_key})

    def mark_succeeded(self, object_id: int, worker_id: str, attempts: int, external_key: str | None = None) -> bool:
        """Complete an in-flight job."""
        values: dict[str, Any] = {
            "state": SyncJobState.SUCCEEDED.value,
            "attempts": attempts,
            "last_error": None,
            "worker_id": None,
            "completed_at": self._clock(),
        }
        if external_key is not None:
            values["external_key"] = external_key
        return self._finish_in_flight(object_id, worker_id, values)

    def mark_retryable(self, object_id: int, worker_id: str, attempts: int, error: str, next_eligible_at: datetime) -> bool:
        """Return an in-flight job to the queue after a transient failure."""
        return self._finish_in_flight(
            object_id,
            worker_id,
            {
                "state": SyncJobState.FAILED_RETRYABLE.value,
                "attempts": attempts,
                "last_error": error,
                "next_eligible_at": next_eligible_at,
                "worker_id": None,
            },
        )

    def mark_terminal(self, object_id: int, worker_id: str, attempts: int, error: str) -> bool:
        """End an in-flight job without further automatic retries."""
        return self._finish_in_flight(
            object_id,
            worker_id,
            {
                "state": SyncJobState.FAILED_TERMINAL.value,
                "attempts": attempts,
                "last_error": error,
                "worker_id": None,
                "completed_at": self._clock(),
            },
        )

    def recover_stale(self, processing_timeout: timedelta, now: datetime | None = None) -> int:
        """Return in-flight jobs whose worker stopped responding to the queue.

        A job is stale once it has been in flight longer than
        ``processing_timeout``. Its attempt is counted as failed and it becomes
        eligible again immediately. An external key recorded before the crash
        is kept, so the external issue is not created twice.

        Returns:
            The number of recovered jobs.
        """
        now = now or self._clock()
        with self._session_factory() as session, session.begin():
            result = session.execute(
                update(SyncJobRecord)
                .where(SyncJobRecord.state == SyncJobState.IN_FLIGHT.value)
                .where(SyncJobRecord.started_at < now - processing_timeout)
                .values(
                    state=SyncJobState.FAILED_RETRYABLE.value,
                    attempts=SyncJobRecord.attempts + 1,
                    last_error="Processing timed out; worker presumed lost",
                    next_eligible_at=now,
                    worker_id=None,
                )
                .execution_options(synchronize_session=False)
            )
            recovered = result.rowcount or 0
        if recovered:
            logger.warning("Recovered stale in-flight sync jobs", count=recovered, processing_timeout=str(processing_timeout))
        return recovered

    # Queries

    def get(self, object_id: int) -> SyncJobSnapshot | None:
        """Return the job for an object, if one exists."""
        with self._session_factory() as session:
            record = session.scalars(select(SyncJobRecord).where(SyncJobRecord.object_id == object_id)).one_or_none()
            return SyncJobSnapshot.from_record(record) if record is not None else None

    def list_jobs(self, state: SyncJobState | None = None, limit: int = 100) -> list[SyncJobSnapshot]:
        """List jobs, most recently updated first."""
        statement = select(SyncJobRecord).order_by(SyncJobRecord.updated_at.desc(), SyncJobRecord.id.desc()).limit(limit)
        if state is not None:
            statement = statement.where(SyncJobRecord.state == state.value)
        with self._session_factory() as session:
            return [SyncJobSnapshot.from_record(record) for record in session.scalars(statement)]

    # Compare-and-swap helpers

    def _finish_in_flight(self, object_id: int, worker_id: str, values: dict[str, Any]) -> bool:
        swapped = self._compare_and_swap(object_id, expected_states=(SyncJobState.IN_FLIGHT,), values=values, worker_id=worker_id)
        if not swapped:
            logger.warning("Lost ownership of in-flight sync job", object_id=object_id, worker_id=worker_id, attempted_state=values.get("state"))
        return swapped

    def _compare_and_swap(
        self,
        object_id: int,
        expected_states: tuple[SyncJobState, ...],
        values: dict[str, Any],
        worker_id: str | None = None,
    ) -> bool:
        statement = (
            update(SyncJobRecord)
            .where(SyncJobRecord.object_id == object_id)
            .where(SyncJobRecord.state.in_([state.value for state in expected_states]))
        )
        if worker_id is not None:
            statement = statement.where(SyncJobRecord.worker_id == worker_id)
        with self._session_factory() as session, session.begin():
            result = session.execute(statement.values(**values).execution_options(synchronize_session=False))
            return result.rowcount == 1
