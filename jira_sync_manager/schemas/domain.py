"""Pydantic schemas for the host application's tracked work items and users."""

from pydantic import BaseModel, ConfigDict, Field


class DomainObject(BaseModel):
    """Snapshot of a tracked work item in the host issue tracker."""

    model_config = ConfigDict(frozen=True)

    id: int
    project_id: str
    status_id: str
    title: str = ""
    description: str | None = None
    external_key: str | None = None

    @property
    def has_external_key(self) -> bool:
        """Whether the single-valued external key field holds a value."""
        return bool(self.external_key and self.external_key.strip())


class Membership(BaseModel):
    """A role held by a user within one project."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    role_id: str


class Actor(BaseModel):
    """The user performing an update, with their project memberships."""

    model_config = ConfigDict(frozen=True)

    id: int
    memberships: frozenset[Membership] = Field(default_factory=frozenset)

    def has_role(self, project_id: str, role_id: str) -> bool:
        """Return True if the actor holds the given role within the given project."""
        return Membership(project_id=project_id, role_id=role_id) in self.memberships
