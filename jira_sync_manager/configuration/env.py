"""Pydantic Settings model for application configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment variable settings for the application.

    Synchronization settings have no defaults: a missing value keeps
    synchronization inert rather than guessing. Worker tunables do have
    defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Generic application-wide settings
    DEBUG: bool = False
    DATABASE_URL: str = "sqlite:///jira_sync.db"

    # Synchronization settings
    JIRA_SYNC_ENABLED: str | None = None
    JIRA_SYNC_ACCEPTED_STATUS_ID: str | None = None
    JIRA_SYNC_ROLE_ID: str | None = None
    JIRA_SYNC_SUMMARY_TEMPLATE: str | None = None

    # Jira API settings
    JIRA_BASE_URL: str | None = None
    JIRA_PROJECT_KEY: str | None = None
    JIRA_ISSUE_TYPE: str | None = None
    JIRA_EMAIL: str | None = None
    JIRA_API_TOKEN: str | None = None

    # Worker settings
    SYNC_MAX_ATTEMPTS: int = 5
    SYNC_BACKOFF_BASE_SECONDS: float = 2.0
    SYNC_BACKOFF_CEILING_SECONDS: float = 300.0
    SYNC_MAX_RETRY_WINDOW_SECONDS: float = 86400.0
    SYNC_PROCESSING_TIMEOUT_SECONDS: float = 600.0
    SYNC_CLIENT_TIMEOUT_SECONDS: float = 30.0
    SYNC_COMMIT_TIMEOUT_SECONDS: float = 30.0
    SYNC_POLL_INTERVAL_SECONDS: float = 5.0
    SYNC_BATCH_SIZE: int = 10
    SYNC_CONCURRENCY: int = 1
    SYNC_ALLOW_TERMINAL_RECLAIM: bool = False


def get_settings() -> Settings:
    """Read settings fresh from the environment and the .env file."""
    return Settings()
