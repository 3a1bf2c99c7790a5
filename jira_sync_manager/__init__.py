"""Event-triggered, idempotent synchronization of host issues to Jira."""
