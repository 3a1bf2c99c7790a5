"""Jira REST API client."""
