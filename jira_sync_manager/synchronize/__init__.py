"""Trigger evaluation, job processing and write-back."""
