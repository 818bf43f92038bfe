"""Bulk status poller: one round of status retrieval for the tracked jobs.

Prefers the batched ``/ohlcv/status/bulk`` call (chunked).  When the
backend does not offer it, or bulk retrieval is disabled in config, the
round fans out one ``GET /ohlcv/status/{id}`` per job on a thread pool;
each job's failure is isolated from the others.
A 404/405/501 from the bulk endpoint switches to fan-out until
``reset()`` is called at the start of the next run.

``poll()`` never raises: every failure is logged, counted, and turned
into "no update this cycle" for the affected jobs.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Iterable, List

import httpx

from ._http import sanitize_exc
from .common_types import StatusItem
from .config import MonitorConfig
from .error_taxonomy import MalformedStatusItem, PollTransportFailure
from .normalize import normalize_status, normalize_statuses

logger = logging.getLogger(__name__)

# Responses meaning "this backend has no bulk endpoint".
_BULK_UNAVAILABLE_CODES: frozenset[int] = frozenset({404, 405, 501})


def _chunks(ids: list[str], size: int) -> Iterable[list[str]]:
    size = max(1, size)
    for i in range(0, len(ids), size):
        yield ids[i:i + size]


class BulkStatusPoller:
    """Retrieves status items for a set of job ids.

    Parameters
    ----------
    client : BackfillApiClient
        Anything exposing ``bulk_status(ids)`` and ``job_status(id)``.
    cfg : MonitorConfig
    """

    def __init__(self, client: Any, cfg: MonitorConfig) -> None:
        self._client = client
        self._cfg = cfg
        self._bulk_available = cfg.use_bulk_status

        # Observable status (read by the controller / dashboard)
        self.poll_count: int = 0
        self.last_poll_ts: float = 0.0
        self.last_poll_status: str = "—"
        self.last_poll_error: str = ""
        self.consecutive_failures: int = 0
        self.last_failed_jobs: frozenset[str] = frozenset()

    @property
    def uses_bulk(self) -> bool:
        return self._bulk_available

    def reset(self) -> None:
        """Clear round counters and retry bulk retrieval at the start of a new run."""
        self._bulk_available = self._cfg.use_bulk_status
        self.poll_count = 0
        self.last_poll_status = "—"
        self.last_poll_error = ""
        self.consecutive_failures = 0
        self.last_failed_jobs = frozenset()

    # ── Public API ──────────────────────────────────────────────

    def poll(self, job_ids: Iterable[str]) -> List[StatusItem]:
        """Run one status round.  Returns an empty list on total failure."""
        ids = sorted(set(job_ids))
        if not ids:
            return []
        try:
            if self._bulk_available:
                items, failed = self._poll_bulk(ids)
            else:
                items, failed = self._poll_fanout(ids)
        except Exception as exc:
            self._record(ids, [], set(ids), sanitize_exc(exc))
            logger.exception("Status round failed: %s", sanitize_exc(exc))
            return []
        self._record(ids, items, failed, "")
        return items

    # ── Round strategies ────────────────────────────────────────

    def _poll_bulk(self, ids: list[str]) -> tuple[List[StatusItem], set[str]]:
        items: List[StatusItem] = []
        failed: set[str] = set()
        for chunk in _chunks(ids, self._cfg.bulk_chunk_size):
            try:
                raw = self._client.bulk_status(chunk)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code in _BULK_UNAVAILABLE_CODES:
                    logger.warning(
                        "Bulk status endpoint unavailable (HTTP %d); falling back to per-job polling",
                        exc.response.status_code,
                    )
                    self._bulk_available = False
                    done = {it.job_id for it in items}
                    more, more_failed = self._poll_fanout([j for j in ids if j not in done])
                    return items + more, failed | more_failed
                self._log_failure(PollTransportFailure(sanitize_exc(exc), job_ids=chunk))
                failed.update(chunk)
                continue
            except (httpx.HTTPError, ValueError) as exc:
                self._log_failure(PollTransportFailure(sanitize_exc(exc), job_ids=chunk))
                failed.update(chunk)
                continue
            items.extend(normalize_statuses(raw))
        return items, failed

    def _poll_fanout(self, ids: list[str]) -> tuple[List[StatusItem], set[str]]:
        items: List[StatusItem] = []
        failed: set[str] = set()
        if not ids:
            return items, failed
        workers = max(1, min(int(self._cfg.fanout_workers), len(ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="status-fanout") as executor:
            future_map = {executor.submit(self._client.job_status, job_id): job_id for job_id in ids}
            for future in as_completed(future_map):
                job_id = future_map[future]
                try:
                    raw = future.result()
                except (httpx.HTTPError, ValueError) as exc:
                    failed.add(job_id)
                    logger.debug("Status fetch failed for %s: %s", job_id, sanitize_exc(exc))
                    continue
                try:
                    items.append(normalize_status(raw))
                except MalformedStatusItem as exc:
                    logger.warning("Dropping malformed status for %s: %s", job_id, exc)
        if failed:
            self._log_failure(PollTransportFailure(
                f"{len(failed)}/{len(ids)} per-job status calls failed", job_ids=failed,
            ))
        return items, failed

    # ── Bookkeeping ─────────────────────────────────────────────

    def _log_failure(self, exc: PollTransportFailure) -> None:
        logger.warning("Status poll transport failure (%d jobs): %s", len(exc.job_ids), exc)
        self.last_poll_error = str(exc)

    def _record(self, ids: list[str], items: List[StatusItem], failed: set[str], error: str) -> None:
        self.poll_count += 1
        self.last_poll_ts = time.time()
        self.last_failed_jobs = frozenset(failed)
        if error or (failed and len(failed) >= len(ids)):
            self.consecutive_failures += 1
            self.last_poll_status = "ERROR"
            if error:
                self.last_poll_error = error
            return
        self.consecutive_failures = 0
        mode = "bulk" if self._bulk_available else "per-job"
        if failed:
            self.last_poll_status = f"{len(items)} items [{mode}, {len(failed)} failed]"
        else:
            self.last_poll_status = f"{len(items)} items [{mode}]"
            self.last_poll_error = ""
