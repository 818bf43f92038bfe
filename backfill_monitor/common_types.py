"""Internal schema shared by every stage of the monitor.

Status payloads from the backend are normalised into ``StatusItem``
records before they reach the merger; the merger and resolver only ever
produce frozen ``IntervalProgress`` / ``SymbolProgress`` / ``Snapshot``
objects, so a published snapshot can be read from any thread.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

# Fixed interval universe, in display / processing order.
INTERVAL_ORDER: tuple[str, ...] = ("1m", "3m", "5m", "15m", "30m", "1h", "4h", "1d", "1w", "1M")
_KNOWN_INTERVALS: frozenset[str] = frozenset(INTERVAL_ORDER)


def is_known_interval(interval: str) -> bool:
    return interval in _KNOWN_INTERVALS


class Status(str, Enum):
    """Job status.  Aggregation precedence: FAILURE > SUCCESS > PROGRESS > PENDING > UNKNOWN."""

    UNKNOWN = "UNKNOWN"
    PENDING = "PENDING"
    PROGRESS = "PROGRESS"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.SUCCESS, Status.FAILURE)


class PercentMode(str, Enum):
    """How a symbol's aggregate percent is computed for one run."""

    INTERVAL_AVERAGE = "interval_average"  # one concurrent job per interval
    COUNT_PLUS_FRACTION = "count_plus_fraction"  # one sequential job per symbol


def clamp_pct(value: Any) -> float:
    """Coerce *value* to a float in [0, 100]; non-numeric input becomes 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return max(0.0, min(100.0, num))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties rounding up (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def freeze_mapping(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a read-only copy of *mapping*."""
    return MappingProxyType(dict(mapping))


# ── Submission side ─────────────────────────────────────────────


@dataclass(frozen=True)
class JobRef:
    """What a job is working on: a symbol, optionally one interval of it."""

    symbol: str
    interval: str | None = None


@dataclass(frozen=True)
class Submission:
    """Result of a batch submission (or of an active-session lookup).

    ``jobs`` maps JobId -> JobRef.  ``symbols`` lists additional symbols to
    display even if no job was created for them.
    """

    jobs: Mapping[str, JobRef]
    symbols: tuple[str, ...] = ()


@dataclass
class StatusItem:
    """One normalised status report for one job."""

    job_id: str
    state: Status
    raw_state: str = ""
    text: str | None = None
    percent: float | None = None
    interval: str | None = None
    last_updated_ts: float | None = None
    error: str | None = None
    # Sequential (one job per symbol) progress fields
    completed_intervals: int | None = None
    total_intervals: int | None = None
    current_interval: str | None = None


@dataclass(frozen=True)
class ActiveSession:
    """Jobs already running on the backend, used for session resume."""

    submission: Submission
    items: tuple[StatusItem, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.submission.jobs


# ── Progress model ──────────────────────────────────────────────


@dataclass(frozen=True)
class IntervalProgress:
    """Progress of the job covering one (symbol, interval) pair."""

    interval: str
    state: Status = Status.PENDING
    percent: float = 0.0
    text: str | None = None
    last_updated_ts: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class SymbolProgress:
    """Per-symbol progress; ``intervals`` is partial (absent = no job)."""

    symbol: str
    state: Status = Status.PENDING
    status_text: str = "waiting"
    percent: int = 0
    intervals: Mapping[str, IntervalProgress] = field(default_factory=lambda: freeze_mapping({}))
    # Symbol-scoped job fields (COUNT_PLUS_FRACTION runs)
    job_state: Status | None = None
    job_text: str | None = None
    current_interval: str | None = None
    current_pct: float = 0.0
    completed_intervals: int = 0
    total_intervals: int = 0
    last_updated_ts: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class Snapshot:
    """Immutable, versioned progress model published once per poll cycle."""

    cycle: int
    mode: PercentMode
    symbols: Mapping[str, SymbolProgress]
    published_ts: float = field(default_factory=time.time, compare=False)

    def get(self, symbol: str) -> SymbolProgress | None:
        return self.symbols.get(symbol)

    def __len__(self) -> int:
        return len(self.symbols)

    def sorted_symbols(self) -> list[SymbolProgress]:
        return [self.symbols[s] for s in sorted(self.symbols)]

    def job_state(self, ref: JobRef) -> Status:
        """Last known status of the job addressed by *ref*."""
        sp = self.symbols.get(ref.symbol)
        if sp is None:
            return Status.UNKNOWN
        if ref.interval is None:
            return sp.job_state or Status.UNKNOWN
        ip = sp.intervals.get(ref.interval)
        return ip.state if ip is not None else Status.UNKNOWN
