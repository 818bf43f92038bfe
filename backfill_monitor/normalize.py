"""Normalisation functions: raw backend payloads → internal records.

The functions are intentionally **schema-tolerant**: they try multiple
field names so that minor API changes don't silently drop data.  The
*primary* field names match the task-queue backend:

Task (submission / active jobs):
    task_id, symbol, interval

Task status (/ohlcv/status/{id}, /ohlcv/status/bulk):
    task_id, state, meta{pct, last_candle_time, status, error,
    completed_intervals, total_intervals, current_interval}
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Any, Dict, Iterable, List

from dateutil import parser as dtparser

from .common_types import JobRef, Status, StatusItem, Submission, clamp_pct
from .error_taxonomy import InvalidSubmission, MalformedStatusItem

logger = logging.getLogger(__name__)

# Raw task-queue states → Status.  Anything else is UNKNOWN.
_STATE_MAP: dict[str, Status] = {
    "PENDING": Status.PENDING,
    "RECEIVED": Status.PENDING,
    "STARTED": Status.PROGRESS,
    "PROGRESS": Status.PROGRESS,
    "RETRY": Status.PROGRESS,
    "SUCCESS": Status.SUCCESS,
    "FAILURE": Status.FAILURE,
    "REVOKED": Status.FAILURE,
}

# Shortest valid timestamp format: "YYYYMMDD".
_MIN_DATE_LEN = 8


def parse_status(raw: Any) -> Status:
    """Map a raw backend state string onto :class:`Status`."""
    if isinstance(raw, Status):
        return raw
    return _STATE_MAP.get(str(raw or "").strip().upper(), Status.UNKNOWN)


def _to_epoch(s: Any) -> float | None:
    """Parse a timestamp (string or epoch number) to epoch seconds.

    Returns ``None`` for empty or unparseable input.  Naive datetimes are
    assumed UTC.
    """
    if s is None or s == "":
        return None
    if isinstance(s, (int, float)) and not isinstance(s, bool):
        return float(s)
    s_stripped = str(s).strip()
    if len(s_stripped) < _MIN_DATE_LEN:
        return None
    try:
        dt = dtparser.parse(s_stripped)
    except (ValueError, OverflowError):
        logger.warning("Unparseable timestamp %r ignored.", s_stripped[:80])
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _opt_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _opt_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _first(d: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


# ── Task status ─────────────────────────────────────────────────

def normalize_status(it: Any) -> StatusItem:
    """Normalise one raw status payload.

    Raises :class:`MalformedStatusItem` when the payload is not a dict or
    lacks a job id or state.  A percent that is present but non-numeric
    becomes 0; an absent percent stays ``None`` so the merger can keep the
    previous value.
    """
    if not isinstance(it, dict):
        raise MalformedStatusItem(f"status item is {type(it).__name__}, not an object")

    job_id = _opt_str(_first(it, "task_id", "job_id", "id"))
    if not job_id:
        raise MalformedStatusItem("status item has no task id")

    raw_state = _first(it, "state", "status")
    if raw_state is None or not str(raw_state).strip():
        raise MalformedStatusItem(f"status item {job_id} has no state", job_id=job_id)

    meta = it.get("meta")
    if not isinstance(meta, dict):
        # FAILURE results carry the exception text in place of meta.
        meta = {"error": meta} if isinstance(meta, str) else {}

    raw_pct = _first(meta, "pct", "percent", "pct_time")
    percent = clamp_pct(raw_pct) if raw_pct is not None else None
    state = parse_status(raw_state)
    if state is Status.SUCCESS and percent is None:
        percent = 100.0

    error = _opt_str(_first(meta, "error", "exc_message") or it.get("error"))

    return StatusItem(
        job_id=job_id,
        state=state,
        raw_state=str(raw_state).strip().upper(),
        text=_opt_str(_first(meta, "status", "message")),
        percent=percent,
        interval=_opt_str(_first(it, "interval") or meta.get("interval")),
        last_updated_ts=_to_epoch(_first(meta, "last_candle_time", "last_updated")),
        error=error,
        completed_intervals=_opt_int(meta.get("completed_intervals")),
        total_intervals=_opt_int(meta.get("total_intervals")),
        current_interval=_opt_str(meta.get("current_interval")),
    )


def normalize_statuses(raw_items: Iterable[Any]) -> List[StatusItem]:
    """Normalise a batch, dropping (and logging) malformed items."""
    out: List[StatusItem] = []
    for raw in raw_items:
        try:
            out.append(normalize_status(raw))
        except MalformedStatusItem as exc:
            logger.warning("Dropping malformed status item: %s", exc)
    return out


# ── Task lists ──────────────────────────────────────────────────

def normalize_tasks(tasks: Any, symbols: Iterable[str] = ()) -> Submission:
    """Build a :class:`Submission` from a raw ``tasks`` list.

    Raises :class:`InvalidSubmission` if *tasks* is missing, empty, or any
    task lacks an id or symbol.
    """
    if not isinstance(tasks, list) or not tasks:
        raise InvalidSubmission("backend returned no job ids", field="tasks")

    jobs: dict[str, JobRef] = {}
    for task in tasks:
        if not isinstance(task, dict):
            raise InvalidSubmission(f"task entry is {type(task).__name__}", field="tasks")
        job_id = _opt_str(_first(task, "task_id", "job_id", "id"))
        symbol = _opt_str(task.get("symbol"))
        if not job_id:
            raise InvalidSubmission("task entry without task_id", field="task_id")
        if not symbol:
            raise InvalidSubmission(f"task {job_id} has no symbol", field="symbol")
        jobs[job_id] = JobRef(symbol=symbol, interval=_opt_str(task.get("interval")))

    extra = tuple(s for s in (_opt_str(x) for x in symbols) if s)
    return Submission(jobs=jobs, symbols=extra)
