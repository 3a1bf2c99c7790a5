"""Host application persistence consumed by the synchronization engine."""

from typing import Protocol, runtime_checkable

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from jira_sync_manager.schemas.domain import DomainObject
from jira_sync_manager.storage.models import HostNoteRecord, HostObjectRecord

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class HostObjectNotFoundError(LookupError):
    """Raised when the host has no object with the requested identifier."""

    def __init__(self, object_id: int) -> None:
        """Initializes the exception with the missing object identifier."""
        super().__init__(f"Host object not found: {object_id}")
        self.object_id = object_id


@runtime_checkable
class HostPersistence(Protocol):
    """Access to the host's issues, external key field and journal."""

    def get_object(self, object_id: int) -> DomainObject | None:
        """Load the current state of an object."""
        ...

    def get_external_key(self, object_id: int) -> str | None:
        """Return the object's external key, or None if it is empty."""
        ...

    def set_external_key_and_note(self, object_id: int, external_key: str, note_text: str) -> None:
        """Set the external key and append an audit note in one transaction."""
        ...

    def append_note(self, object_id: int, text: str) -> None:
        """Append an audit note to the object."""
        ...


class SqlHostPersistence:
    """SQLAlchemy reference implementation of the host persistence interface."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        """Initialize with a session factory bound to the host database."""
        self._session_factory = session_factory

    def save_object(self, domain_object: DomainObject) -> None:
        """Insert or replace an object, as the host's own save pipeline would."""
        with self._session_factory() as session, session.begin():
            session.merge(
                HostObjectRecord(
                    id=domain_object.id,
                    project_id=domain_object.project_id,
                    status_id=domain_object.status_id,
                    title=domain_object.title,
                    description=domain_object.description,
                    external_key=domain_object.external_key,
                )
            )

    def get_object(self, object_id: int) -> DomainObject | None:
        """Load the current state of an object."""
        with self._session_factory() as session:
            record = session.get(HostObjectRecord, object_id)
            if record is None:
                return None
            return DomainObject(
                id=record.id,
                project_id=record.project_id,
                status_id=record.status_id,
                title=record.title,
                description=record.description,
                external_key=record.external_key,
            )

    def get_external_key(self, object_id: int) -> str | None:
        """Return the object's external key, or None if it is empty."""
        with self._session_factory() as session:
            record = session.get(HostObjectRecord, object_id)
            if record is None:
                raise HostObjectNotFoundError(object_id)
            return record.external_key or None

    def set_external_key_and_note(self, object_id: int, external_key: str, note_text: str) -> None:
        """Set the external key and append an audit note in one transaction.

        Either both writes are committed or neither is.
        """
        with self._session_factory() as session, session.begin():
            record = session.get(HostObjectRecord, object_id, with_for_update=True)
            if record is None:
                raise HostObjectNotFoundError(object_id)
            record.external_key = external_key
            session.add(HostNoteRecord(object_id=object_id, text=note_text))
        logger.info("Wrote external key back to host object", object_id=object_id, external_key=external_key)

    def append_note(self, object_id: int, text: str) -> None:
        """Append an audit note to the object."""
        with self._session_factory() as session, session.begin():
            if session.get(HostObjectRecord, object_id) is None:
                raise HostObjectNotFoundError(object_id)
            session.add(HostNoteRecord(object_id=object_id, text=text))

    def list_notes(self, object_id: int) -> list[str]:
        """Return the texts of an object's notes, oldest first."""
        statement = select(HostNoteRecord.text).where(HostNoteRecord.object_id == object_id).order_by(HostNoteRecord.id)
        with self._session_factory() as session:
            return list(session.scalars(statement))
