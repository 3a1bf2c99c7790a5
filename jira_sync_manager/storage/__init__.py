"""Durable job queue and host persistence."""
