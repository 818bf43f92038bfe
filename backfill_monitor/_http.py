"""Shared HTTP helpers for the backfill backend client.

Centralises exception sanitisation so that bearer credentials are never
logged in plain text, and provides the canonical ``request_with_retry``
helper used by every client call.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"(access_token|apikey|api_key|token|key)=[^&\s]+", re.IGNORECASE)
_BEARER_RE = re.compile(r"Bearer\s+\S+", re.IGNORECASE)

# Status codes eligible for automatic retry with backoff.
RETRYABLE_CODES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Maximum number of attempts (including the first request).
MAX_ATTEMPTS: int = 3


def sanitize_url(url: str) -> str:
    """Remove token query params from a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", url)


def sanitize_exc(exc: BaseException) -> str:
    """Strip tokens and bearer credentials from exception text."""
    return _BEARER_RE.sub("Bearer ***", sanitize_url(str(exc)))


def safe_json(r: httpx.Response) -> Any:
    """Parse JSON response; raise ValueError with sanitized URL on failure."""
    ct = r.headers.get("content-type", "")
    try:
        return r.json()
    except (json.JSONDecodeError, ValueError):
        raise ValueError(
            f"backend returned non-JSON (content-type={ct!r}, "
            f"status={r.status_code}, url={sanitize_url(str(r.url))})"
        ) from None


def request_with_retry(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    json_body: Any = None,
    attempts: int = MAX_ATTEMPTS,
) -> httpx.Response:
    """Send *method* *url* with exponential backoff on retryable failures.

    Retries on 429/5xx responses and on transient network errors
    (``ConnectError``, ``ReadTimeout``).  Other HTTP errors raise
    ``httpx.HTTPStatusError`` immediately.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            r = client.request(method, url, json=json_body)
            if r.status_code in RETRYABLE_CODES and attempt < attempts - 1:
                logger.warning(
                    "Backend HTTP %s on %s %s (attempt %d/%d) – retrying in %ds",
                    r.status_code, method, sanitize_url(url),
                    attempt + 1, attempts, 2 ** attempt,
                )
                time.sleep(2 ** attempt)
                continue
            r.raise_for_status()
            return r
        except (httpx.ConnectError, httpx.ReadTimeout) as exc:
            if attempt < attempts - 1:
                logger.warning(
                    "Backend network error on %s %s (attempt %d/%d): %s – retrying in %ds",
                    method, sanitize_url(url), attempt + 1, attempts,
                    sanitize_exc(exc), 2 ** attempt,
                )
                time.sleep(2 ** attempt)
                continue
            raise
    raise RuntimeError(f"backend: no response after {attempts} attempts for {sanitize_url(url)}")
