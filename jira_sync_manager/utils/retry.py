"""Backoff calculation for retrying sync jobs after transient errors.

Sync jobs are not retried in-process. A failed attempt is written back to the
job queue with a next-eligible time computed here, and a worker picks the job
up again once that time has passed.
"""

import email.utils
import time
from datetime import datetime, timedelta

import structlog

logger = structlog.get_logger(__name__)


def compute_backoff_delay(
    attempts: int,
    initial_delay: float = 2.0,
    max_delay: float = 300.0,
    exponential_base: float = 2.0,
    retry_after: float | None = None,
) -> float:
    """Compute the delay in seconds before the next attempt of a job.

    The delay grows as ``initial_delay * exponential_base ** (attempts - 1)``
    and is capped at ``max_delay``. A server-provided Retry-After delay raises
    the result but never past the cap.

    Args:
        attempts: Number of failed attempts so far, including the one that just failed (1 or more).
        initial_delay: Delay after the first failure.
        max_delay: Upper bound for any delay.
        exponential_base: Growth factor between consecutive attempts.
        retry_after: Delay requested by the server, if any.

    Returns:
        Delay in seconds.
    """
    exponent = max(attempts - 1, 0)
    try:
        delay = initial_delay * (exponential_base**exponent)
    except OverflowError:
        delay = max_delay
    if retry_after is not None and retry_after > delay:
        logger.info("Using retry-after header value", retry_after=retry_after, computed_delay=delay)
        delay = retry_after
    return min(delay, max_delay)


def compute_next_eligible_at(now: datetime, delay: float) -> datetime:
    """Return the time at which a job delayed by ``delay`` seconds becomes eligible again."""
    return now + timedelta(seconds=delay)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given either as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("Invalid retry-after header value", retry_after=value)
        return None
    return max(parsed.timestamp() - time.time(), 0.0)
