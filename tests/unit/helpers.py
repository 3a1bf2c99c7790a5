"""Test doubles and data shared by the unit tests."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jira_sync_manager.jira.abc import JiraClientBase
from jira_sync_manager.jira.models import ExternalIssueRequest, ExternalIssueResponse

ACCEPTED = "3"
NEW = "1"
ROLE = "7"
PROJECT = "42"


class FakeClock:
    """A controllable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        """Start the clock at a fixed instant."""
        self.now = start or datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        """Move the clock forward."""
        self.now += timedelta(seconds=seconds)


class FakeJiraClient(JiraClientBase):
    """Jira client returning queued keys or raising queued exceptions."""

    def __init__(self, outcomes: list[Any] | None = None) -> None:
        """Queue outcomes: a string is returned as the created key, an exception is raised."""
        self.outcomes = list(outcomes or [])
        self.requests: list[ExternalIssueRequest] = []
        self.closed = 0

    async def create_issue(self, request: ExternalIssueRequest) -> ExternalIssueResponse:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return ExternalIssueResponse(key=outcome)

    async def aclose(self) -> None:
        self.closed += 1


def sync_settings(**overrides: Any) -> dict[str, Any]:
    """Return a complete synchronization configuration mapping."""
    values: dict[str, Any] = {
        "enabled": True,
        "accepted_status_id": ACCEPTED,
        "role_id": ROLE,
        "base_url": "https://example.atlassian.net",
        "project_key": "ABC",
        "issue_type": "Task",
        "email": "bot@example.com",
        "api_token": "secret-token",
        "summary_template": "#{{ id }} {{ title }}",
    }
    values.update(overrides)
    return values
