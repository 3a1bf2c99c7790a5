"""Contains exceptions raised when reading synchronization configuration."""


class RequiredConfigurationElementError(Exception):
    """Raised when a required configuration element is missing."""

    def __init__(self, name: str, config_key: str, env_name: str) -> None:
        """Initializes the exception with the name of the missing element."""
        super().__init__(f"Missing required configuration element: {name}")
        self.name = name
        self.config_key = config_key
        self.env_name = env_name


class ConfigurationError(Exception):
    """Raised when one or more required settings are missing or invalid.

    Synchronization is inert for the event (or job) that hit this error.
    """

    def __init__(self, message: str, missing: list[RequiredConfigurationElementError] | None = None) -> None:
        """Initializes the exception with the individual missing elements, if any."""
        super().__init__(message)
        self.missing = missing or []

    @property
    def missing_keys(self) -> list[str]:
        """Configuration keys of the missing elements."""
        return [element.config_key for element in self.missing]
