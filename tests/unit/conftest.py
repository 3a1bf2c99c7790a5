"""Fixtures for unit tests."""

from pathlib import Path
from typing import Generator

import pytest
import structlog
from sqlalchemy.orm import Session, sessionmaker

from jira_sync_manager.configuration.provider import MappingConfigurationProvider
from jira_sync_manager.schemas.domain import Actor, DomainObject, Membership
from jira_sync_manager.storage.database import create_db_engine, create_session_factory, init_db
from jira_sync_manager.storage.host import SqlHostPersistence
from jira_sync_manager.storage.jobs import JobStore

from helpers import ACCEPTED, NEW, PROJECT, ROLE, FakeClock, sync_settings


@pytest.fixture(autouse=True)
def configure_structlog_for_caplog() -> Generator[None, None, None]:
    """Configure structlog for use with caplog."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    """A controllable clock."""
    return FakeClock()


@pytest.fixture
def config_provider() -> MappingConfigurationProvider:
    """A provider holding a complete, enabled configuration."""
    return MappingConfigurationProvider(sync_settings())


@pytest.fixture
def session_factory(tmp_path: Path) -> Generator[sessionmaker[Session], None, None]:
    """A session factory for a fresh SQLite database."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def job_store(session_factory: sessionmaker[Session], clock: FakeClock) -> JobStore:
    """A job store driven by the fake clock."""
    return JobStore(session_factory, clock=clock)


@pytest.fixture
def host(session_factory: sessionmaker[Session]) -> SqlHostPersistence:
    """Reference host persistence in the same database."""
    return SqlHostPersistence(session_factory)


@pytest.fixture
def accepted_object() -> DomainObject:
    """An object as saved after being moved to the accepted status."""
    return DomainObject(id=101, project_id=PROJECT, status_id=ACCEPTED, title="Printer on fire", description="Smoke everywhere.")


@pytest.fixture
def new_object(accepted_object: DomainObject) -> DomainObject:
    """The same object before the update."""
    return accepted_object.model_copy(update={"status_id": NEW})


@pytest.fixture
def actor() -> Actor:
    """An actor holding the synchronization role in the object's project."""
    return Actor(id=5, memberships=frozenset({Membership(project_id=PROJECT, role_id=ROLE)}))
