"""State merger: ``(previous snapshot, status items) -> new snapshot``.

Pure transform.  The new symbol map is a shallow copy of the previous
one with a freshly built ``SymbolProgress`` for every affected symbol;
no object reachable from the previous snapshot is ever modified.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterable

from .common_types import (
    IntervalProgress,
    JobRef,
    Snapshot,
    Status,
    StatusItem,
    SymbolProgress,
    freeze_mapping,
)
from .registry import ProgressRegistry
from .resolver import apply_resolution

logger = logging.getLogger(__name__)


def _merge_interval(prev: IntervalProgress | None, interval: str, item: StatusItem) -> IntervalProgress:
    """New interval entry from *item*; omitted fields keep *prev* values."""
    base = prev or IntervalProgress(interval=interval)
    return IntervalProgress(
        interval=interval,
        state=item.state,
        percent=item.percent if item.percent is not None else base.percent,
        text=item.text if item.text is not None else base.text,
        last_updated_ts=item.last_updated_ts if item.last_updated_ts is not None else base.last_updated_ts,
        error=item.error if item.error is not None else base.error,
    )


def _merge_job_fields(sp: SymbolProgress, item: StatusItem) -> SymbolProgress:
    """Apply a symbol-scoped (sequential) job report to *sp*."""
    total = item.total_intervals if item.total_intervals is not None else sp.total_intervals
    completed = item.completed_intervals if item.completed_intervals is not None else sp.completed_intervals
    current_pct = item.percent if item.percent is not None else sp.current_pct
    if item.percent is None and completed > sp.completed_intervals:
        # The reported interval finished; the next one starts from zero.
        current_pct = 0.0
    if item.state is Status.SUCCESS and item.completed_intervals is None:
        completed, current_pct = total, 100.0
    return dataclasses.replace(
        sp,
        job_state=item.state,
        job_text=item.text if item.text is not None else sp.job_text,
        current_interval=item.current_interval if item.current_interval is not None else sp.current_interval,
        current_pct=current_pct,
        completed_intervals=completed,
        total_intervals=total,
        last_updated_ts=item.last_updated_ts if item.last_updated_ts is not None else sp.last_updated_ts,
        error=item.error if item.error is not None else sp.error,
    )


def merge(prev: Snapshot, items: Iterable[StatusItem], registry: ProgressRegistry) -> Snapshot:
    """Fold *items* into *prev* and return the next snapshot.

    Items whose job id is not in *registry* are dropped; they never create
    new symbols.  Re-applying an item that is already reflected in *prev*
    yields an equal symbol map.
    """
    # Latest item per job wins within one batch.
    latest: dict[str, tuple[JobRef, StatusItem]] = {}
    for item in items:
        ref = registry.lookup(item.job_id)
        if ref is None:
            logger.debug("Ignoring status for unknown job %s", item.job_id)
            continue
        if ref.symbol not in prev.symbols:
            logger.debug("Ignoring status for job %s: symbol %s not in snapshot", item.job_id, ref.symbol)
            continue
        latest[item.job_id] = (ref, item)

    if not latest:
        return dataclasses.replace(prev, cycle=prev.cycle + 1)

    pending_intervals: dict[str, dict[str, IntervalProgress]] = {}
    job_updates: dict[str, SymbolProgress] = {}
    for ref, item in latest.values():
        if ref.interval is not None:
            ivs = pending_intervals.get(ref.symbol)
            if ivs is None:
                ivs = dict(prev.symbols[ref.symbol].intervals)
                pending_intervals[ref.symbol] = ivs
            ivs[ref.interval] = _merge_interval(ivs.get(ref.interval), ref.interval, item)
        else:
            base = job_updates.get(ref.symbol, prev.symbols[ref.symbol])
            job_updates[ref.symbol] = _merge_job_fields(base, item)

    replacements: dict[str, SymbolProgress] = {}
    for symbol in set(pending_intervals) | set(job_updates):
        sp = job_updates.get(symbol, prev.symbols[symbol])
        if symbol in pending_intervals:
            sp = dataclasses.replace(sp, intervals=freeze_mapping(pending_intervals[symbol]))
        replacements[symbol] = apply_resolution(sp, prev.mode)

    symbols = dict(prev.symbols)
    symbols.update(replacements)
    return Snapshot(cycle=prev.cycle + 1, mode=prev.mode, symbols=freeze_mapping(symbols))
