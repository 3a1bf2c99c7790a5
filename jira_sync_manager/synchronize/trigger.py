"""Decides whether a save event should start a Jira synchronization."""

from jira_sync_manager.configuration.models import SyncConfiguration
from jira_sync_manager.schemas.domain import Actor, DomainObject
from jira_sync_manager.synchronize.models import TriggerDecision


def evaluate_trigger(before: DomainObject | None, after: DomainObject, actor: Actor, config: SyncConfiguration) -> TriggerDecision:
    """Evaluate a save event against the synchronization rules.

    The trigger is edge-triggered: it fires only on the update that moves
    the object into the accepted status, never on later saves while the
    object stays there. Pure function; performs no I/O.

    Args:
        before: The object as it was before the update, or None for a creation event.
        after: The object as saved.
        actor: The user who performed the update.
        config: Configuration snapshot for this evaluation.

    Returns:
        TriggerDecision.FIRE, or the first condition that was not met.
    """
    if not config.enabled:
        return TriggerDecision.DISABLED
    if before is None:
        return TriggerDecision.CREATED
    if after.status_id != config.accepted_status_id or before.status_id == config.accepted_status_id:
        return TriggerDecision.NOT_ACCEPTED_TRANSITION
    if after.has_external_key:
        return TriggerDecision.ALREADY_LINKED
    if not actor.has_role(after.project_id, config.role_id):
        return TriggerDecision.ROLE_MISSING
    return TriggerDecision.FIRE


def should_trigger(before: DomainObject | None, after: DomainObject, actor: Actor, config: SyncConfiguration) -> bool:
    """Return True if the save event should start a synchronization."""
    return evaluate_trigger(before, after, actor, config) is TriggerDecision.FIRE
