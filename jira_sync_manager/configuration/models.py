"""Models for synchronization and worker configuration."""

from collections.abc import Mapping
from datetime import timedelta
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, ValidationError, field_validator

from jira_sync_manager.configuration.env import Settings
from jira_sync_manager.configuration.exceptions import ConfigurationError, RequiredConfigurationElementError
from jira_sync_manager.configuration.provider import SYNC_CONFIGURATION_ENV_NAMES, ConfigurationProvider

SYNC_CONFIGURATION_NAMES: dict[str, str] = {
    "enabled": "Synchronization enabled flag",
    "accepted_status_id": "Accepted status identifier",
    "role_id": "Authorized role identifier",
    "base_url": "Jira base URL",
    "project_key": "Jira project key",
    "issue_type": "Jira issue type",
    "email": "Jira account email",
    "api_token": "Jira API token",
    "summary_template": "Summary template",
}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


_BOOL_ADAPTER = TypeAdapter(bool)


def sync_enabled(values: Mapping[str, Any]) -> bool:
    """Read only the enabled flag from a configuration snapshot.

    An unset flag means disabled. A value that is not a boolean counts as
    enabled, so the full validation reports it as a configuration error.
    """
    value = values.get("enabled")
    if _is_missing(value):
        return False
    if isinstance(value, str):
        value = value.strip()
    try:
        return _BOOL_ADAPTER.validate_python(value)
    except ValidationError:
        return True


class SyncConfiguration(BaseModel):
    """Immutable snapshot of the synchronization settings.

    A snapshot is read once per trigger evaluation and once per job
    processing attempt, so edits made by an administrator take effect on the
    next event or retry.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    enabled: bool
    accepted_status_id: str
    role_id: str
    base_url: str
    project_key: str
    issue_type: str
    email: str
    api_token: SecretStr
    summary_template: str

    @field_validator("accepted_status_id", "role_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value: Any) -> Any:
        """Host identifiers are frequently integers; compare them as strings."""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        """Require an absolute http(s) URL and drop any trailing slash."""
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value.rstrip("/")

    @classmethod
    def from_provider(cls, provider: ConfigurationProvider) -> Self:
        """Build a snapshot from a configuration provider.

        Raises:
            ConfigurationError: If any required value is missing or invalid.
        """
        return cls.from_values(provider.read())

    @classmethod
    def from_values(cls, values: Mapping[str, Any]) -> Self:
        """Build a snapshot from values already read from a provider."""
        missing = [
            RequiredConfigurationElementError(
                name=SYNC_CONFIGURATION_NAMES[key],
                config_key=key,
                env_name=env_name,
            )
            for key, env_name in SYNC_CONFIGURATION_ENV_NAMES.items()
            if _is_missing(values.get(key))
        ]
        if missing:
            msg = "Incomplete synchronization configuration - missing settings include " + ", ".join(
                f"{element.name} (key {element.config_key}, environment variable {element.env_name})" for element in missing
            )
            raise ConfigurationError(msg, missing=missing)
        try:
            return cls.model_validate({key: values[key] for key in SYNC_CONFIGURATION_ENV_NAMES})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid synchronization configuration: {exc}") from exc


class WorkerSettings(BaseModel):
    """Tunables for the sync job queue and its workers."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    backoff_base: float = Field(default=2.0, gt=0)
    backoff_ceiling: float = Field(default=300.0, gt=0)
    max_retry_window: timedelta = timedelta(hours=24)
    processing_timeout: timedelta = timedelta(minutes=10)
    client_timeout: float = Field(default=30.0, gt=0)
    commit_timeout: float = Field(default=30.0, gt=0)
    poll_interval: float = Field(default=5.0, ge=0)
    batch_size: int = Field(default=10, ge=1)
    concurrency: int = Field(default=1, ge=1)
    allow_terminal_reclaim: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> Self:
        """Build worker settings from the environment settings model."""
        return cls(
            max_attempts=settings.SYNC_MAX_ATTEMPTS,
            backoff_base=settings.SYNC_BACKOFF_BASE_SECONDS,
            backoff_ceiling=settings.SYNC_BACKOFF_CEILING_SECONDS,
            max_retry_window=timedelta(seconds=settings.SYNC_MAX_RETRY_WINDOW_SECONDS),
            processing_timeout=timedelta(seconds=settings.SYNC_PROCESSING_TIMEOUT_SECONDS),
            client_timeout=settings.SYNC_CLIENT_TIMEOUT_SECONDS,
            commit_timeout=settings.SYNC_COMMIT_TIMEOUT_SECONDS,
            poll_interval=settings.SYNC_POLL_INTERVAL_SECONDS,
            batch_size=settings.SYNC_BATCH_SIZE,
            concurrency=settings.SYNC_CONCURRENCY,
            allow_terminal_reclaim=settings.SYNC_ALLOW_TERMINAL_RECLAIM,
        )
