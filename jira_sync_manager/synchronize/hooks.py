"""Entry point called synchronously from the host's save pipeline.

The hook only evaluates the trigger and claims the object; all network
work happens later on the worker pool. It never raises, so a problem with
synchronization can never abort the host's save.
"""

import structlog

from jira_sync_manager.configuration.exceptions import ConfigurationError
from jira_sync_manager.configuration.models import SyncConfiguration, sync_enabled
from jira_sync_manager.configuration.provider import ConfigurationProvider
from jira_sync_manager.schemas.domain import Actor, DomainObject
from jira_sync_manager.storage.jobs import JobStore
from jira_sync_manager.synchronize.exceptions import AlreadySynced, AuthorizationDenied
from jira_sync_manager.synchronize.models import HookOutcome, TriggerDecision
from jira_sync_manager.synchronize.trigger import evaluate_trigger

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class SyncHook:
    """Handles domain-object-saved events."""

    def __init__(self, config_provider: ConfigurationProvider, job_store: JobStore) -> None:
        """Initialize the hook with its configuration provider and job store."""
        self.config_provider = config_provider
        self.job_store = job_store

    def on_object_saved(self, before: DomainObject | None, after: DomainObject, actor: Actor) -> HookOutcome:
        """Handle a save event and enqueue a sync job if the trigger fires."""
        try:
            return self._handle(before, after, actor)
        except ConfigurationError as exc:
            logger.warning(
                "Synchronization configuration incomplete; skipping event",
                object_id=after.id,
                missing=exc.missing_keys,
                error=str(exc),
            )
            return HookOutcome.INERT_CONFIGURATION
        except AuthorizationDenied:
            logger.debug("Actor lacks the synchronization role", object_id=after.id, actor_id=actor.id, project_id=after.project_id)
            return HookOutcome.UNAUTHORIZED
        except AlreadySynced as exc:
            logger.info("Object already synchronized or claimed", object_id=after.id, reason=str(exc))
            return HookOutcome.ALREADY_SYNCED
        except Exception:
            logger.exception("Unexpected error while handling save event", object_id=after.id)
            return HookOutcome.ERROR

    def _handle(self, before: DomainObject | None, after: DomainObject, actor: Actor) -> HookOutcome:
        values = self.config_provider.read()
        if not sync_enabled(values):
            logger.debug("Synchronization disabled; skipping event", object_id=after.id)
            return HookOutcome.NOT_TRIGGERED
        config = SyncConfiguration.from_values(values)
        decision = evaluate_trigger(before, after, actor, config)
        if decision is TriggerDecision.ROLE_MISSING:
            raise AuthorizationDenied(f"Actor {actor.id} lacks role {config.role_id} in project {after.project_id}")
        if decision is TriggerDecision.ALREADY_LINKED:
            raise AlreadySynced(f"Object already linked to {after.external_key}")
        if decision is not TriggerDecision.FIRE:
            logger.debug("Save event did not trigger synchronization", object_id=after.id, decision=decision.value)
            return HookOutcome.NOT_TRIGGERED
        if not self.job_store.try_claim(after.id):
            raise AlreadySynced("A sync job already exists for this object")
        logger.info("Enqueued sync job", object_id=after.id, actor_id=actor.id)
        return HookOutcome.ENQUEUED


def on_object_saved(
    before: DomainObject | None,
    after: DomainObject,
    actor: Actor,
    config_provider: ConfigurationProvider,
    job_store: JobStore,
) -> HookOutcome:
    """Handle a single save event; see SyncHook.on_object_saved."""
    return SyncHook(config_provider, job_store).on_object_saved(before, after, actor)
