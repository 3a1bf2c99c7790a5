"""Read-only configuration providers consumed by the synchronization engine."""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from jira_sync_manager.configuration.env import Settings, get_settings

SYNC_CONFIGURATION_ENV_NAMES: dict[str, str] = {
    "enabled": "JIRA_SYNC_ENABLED",
    "accepted_status_id": "JIRA_SYNC_ACCEPTED_STATUS_ID",
    "role_id": "JIRA_SYNC_ROLE_ID",
    "base_url": "JIRA_BASE_URL",
    "project_key": "JIRA_PROJECT_KEY",
    "issue_type": "JIRA_ISSUE_TYPE",
    "email": "JIRA_EMAIL",
    "api_token": "JIRA_API_TOKEN",
    "summary_template": "JIRA_SYNC_SUMMARY_TEMPLATE",
}
"""Maps each synchronization configuration key to its environment variable."""


@runtime_checkable
class ConfigurationProvider(Protocol):
    """Supplies a key-value snapshot of the synchronization settings."""

    def read(self) -> Mapping[str, Any]:
        """Return the current value of every configuration key (None if unset)."""
        ...


class MappingConfigurationProvider:
    """Configuration provider backed by an in-memory mapping.

    Used by hosts that keep their plugin settings in their own storage and
    hand them over as a dictionary.
    """

    def __init__(self, values: Mapping[str, Any]) -> None:
        """Initialize the provider with a mapping of configuration keys to values."""
        self._values = dict(values)

    def read(self) -> Mapping[str, Any]:
        """Return the configured values, with None for every key that is not set."""
        return {key: self._values.get(key) for key in SYNC_CONFIGURATION_ENV_NAMES}


class EnvironmentConfigurationProvider:
    """Configuration provider backed by environment variables and a .env file."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the provider.

        When no settings object is given, settings are re-read from the
        environment on every call to read().
        """
        self._settings = settings

    def read(self) -> Mapping[str, Any]:
        """Return the synchronization settings from the environment."""
        settings = self._settings if self._settings is not None else get_settings()
        return {key: getattr(settings, env_name) for key, env_name in SYNC_CONFIGURATION_ENV_NAMES.items()}
