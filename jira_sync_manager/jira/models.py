"""Pydantic models for Jira issue creation requests and responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jira_sync_manager.utils.adf import text_to_adf
from jira_sync_manager.utils.constants import JIRA_CORE_FIELDS


class ExternalIssueRequest(BaseModel):
    """Fields of the Jira issue to create.

    ``extra_fields`` is an additive keyed mapping merged into the request's
    ``fields`` object, e.g. ``{"labels": ["host-sync"]}``. It cannot override the
    core fields.
    """

    project_key: str
    issue_type: str
    summary: str
    description: str | None = None
    extra_fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("extra_fields")
    @classmethod
    def reject_core_field_overrides(cls, value: dict[str, Any]) -> dict[str, Any]:
        """Extra fields may add to the payload but never replace a core field."""
        collisions = sorted(JIRA_CORE_FIELDS.intersection(value))
        if collisions:
            raise ValueError(f"extra_fields cannot override core fields: {', '.join(collisions)}")
        return value

    def to_payload(self) -> dict[str, Any]:
        """Serialize the request into the JSON body expected by POST /rest/api/3/issue."""
        fields: dict[str, Any] = {
            "project": {"key": self.project_key},
            "issuetype": {"name": self.issue_type},
            "summary": self.summary,
        }
        if self.description and self.description.strip():
            fields["description"] = text_to_adf(self.description)
        fields.update(self.extra_fields)
        return {"fields": fields}


class ExternalIssueResponse(BaseModel):
    """The created Jira issue, as returned by the create-issue endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    id: str | None = None
    self_url: str | None = Field(default=None, alias="self")
