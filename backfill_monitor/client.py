"""Synchronous httpx client for the OHLCV backfill backend.

Endpoints:
 1. GET  /symbols/all                          (symbol master)
 2. POST /get_symbol_info/register_symbols     (refresh symbol master)
 3. POST /ohlcv/backfill                       (submit batch)
 4. POST /ohlcv/status/bulk                    (bulk status)
 5. GET  /ohlcv/status/{task_id}               (per-job status)
 6. GET  /ohlcv/active                         (session resume)
 7. POST /ohlcv/stop/{task_id}                 (cancel job)

The client only transports and normalises; it never tracks state.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List

import httpx

from ._http import request_with_retry, safe_json, sanitize_exc
from .common_types import ActiveSession, Submission
from .config import MonitorConfig
from .error_taxonomy import CancelFailure, InvalidSubmission, retry
from .normalize import normalize_statuses, normalize_tasks

logger = logging.getLogger(__name__)

# Status calls run every cycle; a slow retry would only delay the next tick.
_STATUS_ATTEMPTS = 2


def _as_list(x: Any, key: str) -> list:
    """Accept ``{key: [...]}`` or a bare list; anything else is empty."""
    if isinstance(x, dict):
        x = x.get(key)
    if not isinstance(x, list):
        if x is not None:
            logger.warning("Backend returned %s for %r instead of list.", type(x).__name__, key)
        return []
    return x


class BackfillApiClient:
    """Thin adapter over the backend REST API."""

    def __init__(self, cfg: MonitorConfig, transport: httpx.BaseTransport | None = None) -> None:
        self.cfg = cfg
        self.client = httpx.Client(
            base_url=cfg.base_url,
            timeout=cfg.request_timeout_s,
            headers=cfg.auth_headers,
            transport=transport,
        )

    # ── Symbols ─────────────────────────────────────────────────

    def list_symbols(self) -> List[str]:
        """GET /symbols/all"""
        r = request_with_retry(self.client, "GET", "/symbols/all")
        return [str(s) for s in _as_list(safe_json(r), "symbols") if s]

    def register_symbols(self) -> str:
        """POST /get_symbol_info/register_symbols – returns the backend message."""
        r = request_with_retry(self.client, "POST", "/get_symbol_info/register_symbols", attempts=1)
        data = safe_json(r)
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return "symbol info refreshed"

    # ── Submission ──────────────────────────────────────────────

    def submit_batch(self, symbols: Iterable[str] = ()) -> Submission:
        """POST /ohlcv/backfill – one job per (symbol, interval).

        Never retried: a repeated POST would create a second batch.
        Raises :class:`InvalidSubmission` when the response carries no tasks.
        """
        r = request_with_retry(self.client, "POST", "/ohlcv/backfill", json_body={}, attempts=1)
        try:
            data = safe_json(r)
        except ValueError as exc:
            raise InvalidSubmission(str(exc), field="body") from None
        if not isinstance(data, dict) or "tasks" not in data:
            raise InvalidSubmission("submission response has no 'tasks' field", field="tasks")
        return normalize_tasks(data["tasks"], symbols)

    # ── Status ──────────────────────────────────────────────────

    def bulk_status(self, job_ids: Iterable[str]) -> list:
        """POST /ohlcv/status/bulk – raw status payloads for *job_ids*."""
        r = request_with_retry(
            self.client, "POST", "/ohlcv/status/bulk",
            json_body={"task_ids": list(job_ids)}, attempts=_STATUS_ATTEMPTS,
        )
        return _as_list(safe_json(r), "statuses")

    def job_status(self, job_id: str) -> Any:
        """GET /ohlcv/status/{task_id} – raw status payload."""
        r = request_with_retry(self.client, "GET", f"/ohlcv/status/{job_id}", attempts=_STATUS_ATTEMPTS)
        return safe_json(r)

    def active_jobs(self) -> ActiveSession:
        """GET /ohlcv/active – jobs already running, with their current status."""
        r = request_with_retry(self.client, "GET", "/ohlcv/active")
        data = safe_json(r)
        tasks = _as_list(data, "tasks")
        if not tasks:
            return ActiveSession(submission=Submission(jobs={}))
        statuses = _as_list(data, "statuses") if isinstance(data, dict) else []
        return ActiveSession(
            submission=normalize_tasks(tasks),
            items=tuple(normalize_statuses(statuses)),
        )

    # ── Cancel ──────────────────────────────────────────────────

    @retry(attempts=2, backoff=2.0, retryable_exceptions=(httpx.TransportError,))
    def _post_stop(self, job_id: str) -> httpx.Response:
        r = self.client.post(f"/ohlcv/stop/{job_id}")
        r.raise_for_status()
        return r

    def cancel_job(self, job_id: str) -> bool:
        """POST /ohlcv/stop/{task_id} – best effort, raises :class:`CancelFailure`."""
        try:
            self._post_stop(job_id)
        except httpx.HTTPError as exc:
            raise CancelFailure(sanitize_exc(exc), job_id=job_id) from None
        return True

    def close(self) -> None:
        self.client.close()
