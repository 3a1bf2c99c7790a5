"""Internal data models for the synchronization engine."""

from enum import Enum


class SyncJobState(str, Enum):
    """Lifecycle states of a sync job."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


CLAIMABLE_STATES = frozenset({SyncJobState.PENDING, SyncJobState.FAILED_RETRYABLE})


class TriggerDecision(Enum):
    """Outcome of evaluating a save event; names the first unmet condition."""

    FIRE = "fire"
    DISABLED = "disabled"
    CREATED = "created"
    NOT_ACCEPTED_TRANSITION = "not_accepted_transition"
    ALREADY_LINKED = "already_linked"
    ROLE_MISSING = "role_missing"


class HookOutcome(Enum):
    """What the save hook did with a domain event."""

    ENQUEUED = "enqueued"
    NOT_TRIGGERED = "not_triggered"
    ALREADY_SYNCED = "already_synced"
    UNAUTHORIZED = "unauthorized"
    INERT_CONFIGURATION = "inert_configuration"
    ERROR = "error"


class JobOutcome(Enum):
    """What a single processing attempt of a sync job resulted in."""

    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED_TERMINAL = "failed_terminal"
    SKIPPED = "skipped"
