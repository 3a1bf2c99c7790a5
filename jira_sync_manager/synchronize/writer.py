"""Writes the result of a synchronization back to the host."""

import structlog

from jira_sync_manager.storage.host import HostPersistence
from jira_sync_manager.synchronize.exceptions import LocalCommitFailure
from jira_sync_manager.utils.constants import EXTERNAL_ISSUE_CREATED_NOTE

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class StateWriter:
    """Commits external keys and audit notes to host persistence."""

    def __init__(self, host: HostPersistence) -> None:
        """Initialize the writer with the host persistence interface."""
        self.host = host

    def commit(self, object_id: int, external_key: str) -> None:
        """Set the external key and append the audit note as one atomic unit.

        Only called after Jira confirmed the creation.

        Raises:
            LocalCommitFailure: If the host could not commit; nothing was written.
        """
        note = EXTERNAL_ISSUE_CREATED_NOTE.format(key=external_key)
        try:
            self.host.set_external_key_and_note(object_id, external_key, note)
        except Exception as exc:
            logger.error("Failed to write external key back to host", object_id=object_id, external_key=external_key, error=str(exc))
            raise LocalCommitFailure(f"Could not write {external_key} back to object {object_id}: {exc}") from exc

    def annotate_failure(self, object_id: int, text: str) -> bool:
        """Append a failure note to the object. Best-effort; never raises.

        Returns:
            Whether the note was written.
        """
        try:
            self.host.append_note(object_id, text)
        except Exception as exc:
            logger.warning("Could not append failure note to host object", object_id=object_id, error=str(exc))
            return False
        return True
