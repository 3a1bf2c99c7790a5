"""Pydantic schemas for host objects."""
