"""Base ABC for Jira clients."""

from abc import ABC, abstractmethod

from jira_sync_manager.jira.models import ExternalIssueRequest, ExternalIssueResponse


class JiraClientBase(ABC):
    """Base ABC for Jira clients."""

    @abstractmethod
    async def create_issue(self, request: ExternalIssueRequest) -> ExternalIssueResponse:
        """Create an issue in a Jira project.

        A single attempt: implementations must not retry.
        """
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """Release any network resources held by the client."""
        pass
