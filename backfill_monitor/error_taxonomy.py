"""Structured error taxonomy and retry decorator for backfill_monitor.

Provides:
  - A custom exception hierarchy so callers can catch specific failure
    modes (bad submissions, transport failures, malformed status items,
    cancel failures) without resorting to bare ``Exception``.
  - A ``@retry()`` decorator with exponential backoff, jitter, exception-
    type filtering, and an on_retry callback.
"""
from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger("backfill_monitor.error_taxonomy")


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class BackfillMonitorError(Exception):
    """Base error for all backfill_monitor subsystems."""
    pass


class InvalidSubmission(BackfillMonitorError):
    """Batch submission returned no usable job ids; no tracking starts."""

    def __init__(self, message: str, *, field: str = ""):
        self.field = field
        super().__init__(message)


class PollTransportFailure(BackfillMonitorError):
    """A status round (or part of it) could not reach the backend."""

    def __init__(self, message: str, *, job_ids: Iterable[str] = ()):
        self.job_ids = tuple(job_ids)
        super().__init__(message)


class MalformedStatusItem(BackfillMonitorError):
    """A status payload is missing required fields."""

    def __init__(self, message: str, *, job_id: str = ""):
        self.job_id = job_id
        super().__init__(message)


class CancelFailure(BackfillMonitorError):
    """The backend did not acknowledge a cancel request."""

    def __init__(self, message: str, *, job_id: str = ""):
        self.job_id = job_id
        super().__init__(message)


class AlreadyRunning(BackfillMonitorError):
    """start/resume called while a run is still being tracked."""

    def __init__(self, message: str, *, state: str = ""):
        self.state = state
        super().__init__(message)


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------

def retry(
    attempts: int = 3,
    backoff: float = 2.0,
    max_delay: float = 30.0,
    jitter_pct: float = 0.10,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[..., Any] | None = None,
):
    """Decorator: retry a function with exponential backoff + jitter.

    Parameters
    ----------
    attempts : int
        Maximum number of tries (including the first).
    backoff : float
        Multiplier applied to the delay after each failure.
    max_delay : float
        Upper cap on the sleep between retries (seconds).
    jitter_pct : float
        ±N % random jitter added to the delay (0.10 = ±10 %).
    retryable_exceptions : tuple
        Only retry if the raised exception is an instance of one of these.
    on_retry : callable, optional
        ``on_retry(attempt, exception)`` called before each retry sleep.
    """
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            delay = 1.0
            for attempt in range(1, attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except retryable_exceptions as exc:
                    if attempt >= attempts:
                        raise
                    if on_retry is not None:
                        try:
                            on_retry(attempt, exc)
                        except Exception:
                            logger.debug("on_retry callback failed", exc_info=True)
                    jitter = delay * jitter_pct * (2 * random.random() - 1)
                    sleep_time = min(delay + jitter, max_delay)
                    logger.debug(
                        "retry %d/%d for %s after %.1fs: %s",
                        attempt, attempts, fn.__qualname__, sleep_time, exc,
                    )
                    time.sleep(max(sleep_time, 0))
                    delay = min(delay * backoff, max_delay)
            return None
        return wrapper
    return decorator
