"""Shared constants used across the application."""

# Jira REST API Constants
# -----------------------

JIRA_API_VERSION = "3"
"""Version of the Jira Cloud REST API used for issue creation."""

JIRA_CREATE_ISSUE_PATH = f"/rest/api/{JIRA_API_VERSION}/issue"
"""Path, relative to the Jira base URL, of the create-issue endpoint."""

MAX_ERROR_BODY_LENGTH = 500
"""Maximum number of response body characters kept on an external API error."""

JIRA_CORE_FIELDS = frozenset({"project", "issuetype", "summary", "description"})
"""Fields populated from the request model itself and never from extra fields."""

# Audit Note Constants
# --------------------

EXTERNAL_ISSUE_CREATED_NOTE = "External issue created: {key}"
"""Audit note appended to the host object together with the external key."""

EXTERNAL_ISSUE_FAILED_NOTE = "External issue creation failed after {attempts} attempt(s): {error}"
"""Best-effort note appended to the host object when a sync job fails terminally."""

# Summary Constants
# -----------------

MAX_SUMMARY_LENGTH = 255
"""Jira rejects summaries longer than 255 characters."""
