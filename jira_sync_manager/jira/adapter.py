"""Jira client adapter for the httpx library."""

from types import TracebackType
from typing import Any, Self

import httpx
import structlog

from jira_sync_manager.configuration.models import SyncConfiguration
from jira_sync_manager.synchronize.exceptions import (
    AuthenticationFailure,
    PermanentFailure,
    RateLimitedError,
    SyncError,
    TransientFailure,
)
from jira_sync_manager.utils.constants import JIRA_CREATE_ISSUE_PATH, MAX_ERROR_BODY_LENGTH
from jira_sync_manager.utils.retry import parse_retry_after

from .abc import JiraClientBase
from .client import get_jira_client
from .models import ExternalIssueRequest, ExternalIssueResponse

logger = structlog.get_logger(__name__)


def _summarize_jira_errors(response: httpx.Response) -> str:
    """Extract Jira's errorMessages/errors from an error response, falling back to the raw body."""
    try:
        error_data = response.json()
    except ValueError:
        return response.text[:MAX_ERROR_BODY_LENGTH]
    if not isinstance(error_data, dict):
        return response.text[:MAX_ERROR_BODY_LENGTH]
    messages: list[str] = list(error_data.get("errorMessages") or [])
    messages.extend(f"{field}: {message}" for field, message in (error_data.get("errors") or {}).items())
    return "; ".join(messages) if messages else response.text[:MAX_ERROR_BODY_LENGTH]


def map_jira_error_response(response: httpx.Response) -> SyncError:
    """Map a non-2xx Jira response onto the synchronization error taxonomy."""
    status = response.status_code
    body = response.text[:MAX_ERROR_BODY_LENGTH] if response.text else ""
    details = _summarize_jira_errors(response)

    if status == 429:
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        return RateLimitedError(f"Jira rate limit exceeded: {details}", retry_after=retry_after, status_code=status, body=body)
    if status in (401, 403):
        return AuthenticationFailure(
            f"Jira rejected the credentials ({status}). Check JIRA_EMAIL, JIRA_API_TOKEN and the account's project permissions.",
            status_code=status,
            body=body,
        )
    if status == 408 or status >= 500:
        return TransientFailure(f"Jira API error {status}: {details}", status_code=status, body=body)
    return PermanentFailure(f"Jira API error {status}: {details}", status_code=status, body=body)


class JiraAdapter(JiraClientBase):
    """Jira client adapter for the httpx library."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        """Initialize the Jira client adapter with an already-initialized client."""
        self.client = client

    @classmethod
    def create(cls, config: SyncConfiguration, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> Self:
        """Create a new Jira client adapter from a configuration snapshot.

        Args:
            config: Synchronization configuration holding the Jira URL and credentials
            timeout: Timeout in seconds applied to connecting, reading and writing
            transport: Optional httpx transport, e.g. a mock transport in tests

        Returns:
            Configured JiraAdapter instance
        """
        logger.debug("Creating client for Jira instance", base_url=config.base_url, project_key=config.project_key)
        client = get_jira_client(
            base_url=config.base_url,
            email=config.email,
            api_token=config.api_token.get_secret_value(),
            timeout=timeout,
            transport=transport,
        )
        return cls(client)

    async def __aenter__(self) -> Self:
        """Enter the async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Close the underlying client on exit."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        await self.client.aclose()

    async def create_issue(self, request: ExternalIssueRequest) -> ExternalIssueResponse:
        """Create an issue in Jira and return its key.

        Raises:
            RateLimitedError: On 429, with the Retry-After delay if provided.
            AuthenticationFailure: On 401 or 403.
            TransientFailure: On timeouts, connection errors, 408 and 5xx.
            PermanentFailure: On any other non-2xx response or a malformed success response.
        """
        payload = request.to_payload()
        try:
            response = await self.client.post(JIRA_CREATE_ISSUE_PATH, json=payload)
        except httpx.TimeoutException as exc:
            raise TransientFailure(f"Request to Jira timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientFailure(f"Connection to Jira failed: {exc}") from exc

        if not response.is_success:
            error = map_jira_error_response(response)
            logger.warning(
                "Jira rejected issue creation",
                status_code=response.status_code,
                error_type=type(error).__name__,
                project_key=request.project_key,
                error=str(error),
            )
            raise error

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise PermanentFailure(
                "Jira returned a non-JSON success response", status_code=response.status_code, body=response.text[:MAX_ERROR_BODY_LENGTH]
            ) from exc
        if not isinstance(data, dict) or not data.get("key"):
            raise PermanentFailure(
                "Jira success response did not contain an issue key", status_code=response.status_code, body=response.text[:MAX_ERROR_BODY_LENGTH]
            )
        created = ExternalIssueResponse.model_validate(data)
        logger.info("Created Jira issue", issue_key=created.key, project_key=request.project_key)
        return created
