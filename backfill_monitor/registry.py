"""Progress registry: the job ↔ (symbol, interval) index for one run.

The index is built once by :func:`seed` and never mutated afterwards, so
the forward (job → target) and reverse (target → job) lookups can never
disagree.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterator, Mapping

from .common_types import (
    INTERVAL_ORDER,
    IntervalProgress,
    JobRef,
    PercentMode,
    Snapshot,
    Status,
    Submission,
    SymbolProgress,
    freeze_mapping,
    is_known_interval,
)
from .error_taxonomy import InvalidSubmission
from .resolver import apply_resolution

logger = logging.getLogger(__name__)


class ProgressRegistry:
    """Read-only bidirectional index for one run."""

    def __init__(self, jobs: Mapping[str, JobRef], symbols: tuple[str, ...], mode: PercentMode) -> None:
        self._by_job: Mapping[str, JobRef] = MappingProxyType(dict(jobs))
        self._by_target: Mapping[JobRef, str] = MappingProxyType(
            {ref: job_id for job_id, ref in jobs.items()}
        )
        self._symbols = symbols
        self._mode = mode

    @property
    def mode(self) -> PercentMode:
        return self._mode

    @property
    def symbols(self) -> tuple[str, ...]:
        return self._symbols

    @property
    def job_ids(self) -> frozenset[str]:
        return frozenset(self._by_job)

    def lookup(self, job_id: str) -> JobRef | None:
        """Target of *job_id*, or ``None`` if the job is not part of this run."""
        return self._by_job.get(job_id)

    def job_for(self, symbol: str, interval: str | None = None) -> str | None:
        return self._by_target.get(JobRef(symbol, interval))

    def jobs_for_symbol(self, symbol: str) -> list[str]:
        return [j for j, ref in self._by_job.items() if ref.symbol == symbol]

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._by_job

    def __len__(self) -> int:
        return len(self._by_job)

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_job)


def _detect_mode(jobs: Mapping[str, JobRef]) -> PercentMode:
    scoped = [ref.interval is not None for ref in jobs.values()]
    if all(scoped):
        return PercentMode.INTERVAL_AVERAGE
    if not any(scoped):
        return PercentMode.COUNT_PLUS_FRACTION
    raise InvalidSubmission(
        "submission mixes interval-scoped and symbol-scoped jobs", field="interval",
    )


def _validate(jobs: Mapping[str, JobRef]) -> None:
    seen: dict[JobRef, str] = {}
    for job_id, ref in jobs.items():
        if not job_id or not ref.symbol:
            raise InvalidSubmission("job without id or symbol", field="task_id")
        if ref.interval is not None and not is_known_interval(ref.interval):
            raise InvalidSubmission(
                f"job {job_id} has unsupported interval {ref.interval!r}", field="interval",
            )
        if ref in seen:
            raise InvalidSubmission(
                f"jobs {seen[ref]} and {job_id} both target {ref.symbol}/{ref.interval}",
                field="task_id",
            )
        seen[ref] = job_id


def seed(submission: Submission) -> tuple[ProgressRegistry, Snapshot, frozenset[str]]:
    """Build the registry, the initial snapshot and the tracked set.

    Every symbol with a job starts Pending/0%; every (symbol, interval)
    pair gets a Pending/0% entry.  Symbols listed in
    ``submission.symbols`` without a job are shown with no intervals.

    Raises :class:`InvalidSubmission` before anything is built.
    """
    jobs = dict(submission.jobs or {})
    if not jobs:
        raise InvalidSubmission("backend returned no job ids", field="tasks")
    _validate(jobs)
    mode = _detect_mode(jobs)

    symbols = sorted({ref.symbol for ref in jobs.values()} | set(submission.symbols))
    intervals: dict[str, dict[str, IntervalProgress]] = {s: {} for s in symbols}
    with_job: set[str] = set()
    for ref in jobs.values():
        with_job.add(ref.symbol)
        if ref.interval is not None:
            intervals[ref.symbol][ref.interval] = IntervalProgress(interval=ref.interval)

    progress: dict[str, SymbolProgress] = {}
    for symbol in symbols:
        sp = SymbolProgress(symbol=symbol, intervals=freeze_mapping(intervals[symbol]))
        if mode is PercentMode.COUNT_PLUS_FRACTION and symbol in with_job:
            sp = SymbolProgress(
                symbol=symbol,
                job_state=Status.PENDING,
                total_intervals=len(INTERVAL_ORDER),
            )
        progress[symbol] = apply_resolution(sp, mode)

    registry = ProgressRegistry(jobs, tuple(symbols), mode)
    snapshot = Snapshot(cycle=0, mode=mode, symbols=freeze_mapping(progress))
    logger.info(
        "Seeded %d jobs across %d symbols (%s)", len(jobs), len(symbols), mode.value,
    )
    return registry, snapshot, registry.job_ids
