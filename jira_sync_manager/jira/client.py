# This file is intended to hold the setup for the authenticated httpx client.

"""Sets up the authenticated httpx client for the Jira REST API."""

import httpx

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


def get_jira_client(
    base_url: str,
    email: str,
    api_token: str,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Returns an httpx client authenticated against Jira with Basic credentials.

    Jira Cloud expects the account email and an API token, encoded as a
    standard ``Authorization: Basic base64(email:token)`` header.
    """
    if not (email and api_token):
        raise RuntimeError("Jira authentication requires an account email and an API token.")
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        auth=httpx.BasicAuth(email, api_token),
        headers=DEFAULT_HEADERS,
        timeout=httpx.Timeout(timeout),
        transport=transport,
    )
