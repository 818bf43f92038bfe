"""Derived-state resolver: one aggregate state and percent per symbol.

Aggregate state precedence over all sub-statuses:

1. any FAILURE                    → FAILURE
2. every entry SUCCESS            → SUCCESS
3. any PROGRESS, or SUCCESS mixed
   with PENDING/UNKNOWN            → PROGRESS
4. every entry PENDING            → PENDING
5. otherwise (incl. no entries)   → UNKNOWN

Rule 3 is checked before rule 4 and deliberately counts a finished
interval next to waiting or unreported ones as PROGRESS rather than
letting the mix fall through to UNKNOWN: part of the symbol is done.

Percent is computed by one of two formulas, fixed per run
(see :class:`~backfill_monitor.common_types.PercentMode`).
"""

from __future__ import annotations

import dataclasses

from .common_types import (
    INTERVAL_ORDER,
    PercentMode,
    Status,
    SymbolProgress,
    clamp_pct,
    round_half_up,
)

STATUS_TEXT: dict[Status, str] = {
    Status.FAILURE: "one or more intervals failed",
    Status.SUCCESS: "all intervals collected",
    Status.PROGRESS: "collecting data...",
    Status.PENDING: "waiting",
    Status.UNKNOWN: "waiting to collect",
}


def _entries(sp: SymbolProgress) -> list[Status]:
    if sp.intervals:
        return [ip.state for ip in sp.intervals.values()]
    if sp.job_state is not None:
        return [sp.job_state]
    return []


def aggregate_state(states: list[Status]) -> Status:
    """Apply the precedence rules to a list of sub-statuses."""
    if not states:
        return Status.UNKNOWN
    if any(s is Status.FAILURE for s in states):
        return Status.FAILURE
    if all(s is Status.SUCCESS for s in states):
        return Status.SUCCESS
    if any(s is Status.PROGRESS or s is Status.SUCCESS for s in states):
        return Status.PROGRESS
    if all(s is Status.PENDING for s in states):
        return Status.PENDING
    return Status.UNKNOWN


def interval_average_pct(sp: SymbolProgress) -> int:
    """Mean percent over every observed interval; 0 if none."""
    values = [clamp_pct(ip.percent) for ip in sp.intervals.values()]
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


def count_plus_fraction_pct(sp: SymbolProgress) -> int:
    """(completed + current/100) / total, as a percent."""
    total = sp.total_intervals or len(INTERVAL_ORDER)
    if total <= 0:
        return 0
    completed = max(0, min(sp.completed_intervals, total))
    raw = (completed + clamp_pct(sp.current_pct) / 100.0) / total * 100.0
    return round_half_up(max(0.0, min(100.0, raw)))


def resolve(sp: SymbolProgress, mode: PercentMode) -> tuple[Status, int]:
    """Return ``(aggregate_state, aggregate_percent)`` for *sp*."""
    state = aggregate_state(_entries(sp))
    if mode is PercentMode.COUNT_PLUS_FRACTION and not sp.intervals:
        pct = count_plus_fraction_pct(sp) if sp.job_state is not None else 0
    else:
        pct = interval_average_pct(sp)
    return state, pct


def describe(sp: SymbolProgress, state: Status) -> str:
    """Human-readable status line for the resolved *state*."""
    if sp.job_state is not None and not sp.intervals:
        if state is Status.FAILURE and sp.error:
            return f"collection failed: {sp.error}"
        if state is Status.PROGRESS and sp.job_text:
            return sp.job_text
        if state is Status.PROGRESS and sp.current_interval:
            return f"collecting {sp.current_interval} ({sp.completed_intervals}/{sp.total_intervals} done)"
    return STATUS_TEXT[state]


def apply_resolution(sp: SymbolProgress, mode: PercentMode) -> SymbolProgress:
    """Return a copy of *sp* with state, percent and text recomputed."""
    state, pct = resolve(sp, mode)
    return dataclasses.replace(sp, state=state, percent=pct, status_text=describe(sp, state))
