"""Pure helper functions for the backfill dashboard.

Every function here is free of Streamlit / session-state side-effects
and can be tested in regular pytest without launching a Streamlit app.
They only ever read a published ``Snapshot``.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import Any

import pandas as pd

from backfill_monitor.common_types import (
    INTERVAL_ORDER,
    IntervalProgress,
    Snapshot,
    Status,
    SymbolProgress,
    clamp_pct,
    round_half_up,
)

# ── Icon / tag maps ─────────────────────────────────────────────

STATE_ICONS: dict[Status, str] = {
    Status.SUCCESS: "🟢",
    Status.FAILURE: "🔴",
    Status.PROGRESS: "🔵",
    Status.PENDING: "⚪",
    Status.UNKNOWN: "⚫",
}

# Per-interval tag shown next to the percent.  Missing interval = "-".
INTERVAL_TAGS: dict[Status, str] = {
    Status.SUCCESS: "done",
    Status.FAILURE: "failed",
    Status.PROGRESS: "running",
    Status.PENDING: "waiting",
    Status.UNKNOWN: "-",
}


def interval_tag(ip: IntervalProgress | None) -> str:
    """Display tag for one interval cell (``"-"`` when no job exists)."""
    if ip is None:
        return "-"
    return INTERVAL_TAGS.get(ip.state, "-")


def interval_cell(ip: IntervalProgress | None) -> str:
    """``"42% · running"`` for an observed interval, ``"-"`` otherwise."""
    if ip is None:
        return "-"
    return f"{round_half_up(clamp_pct(ip.percent))}% · {interval_tag(ip)}"


def progress_bar(pct: float, width: int = 20) -> str:
    """Text progress bar, e.g. ``[#####---------------]``."""
    width = max(1, width)
    filled = round_half_up(clamp_pct(pct) / 100.0 * width)
    return "[" + "#" * filled + "-" * (width - filled) + "]"


def format_age(ts: float | None, now: float | None = None) -> str:
    """Human-readable age of an epoch timestamp ("12s ago", "3m ago")."""
    if not ts:
        return "—"
    age = max(0.0, (now if now is not None else time.time()) - ts)
    if age < 60:
        return f"{int(age)}s ago"
    if age < 3600:
        return f"{int(age // 60)}m ago"
    return f"{int(age // 3600)}h ago"


def format_ts(ts: float | None) -> str:
    if not ts:
        return "—"
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%d %H:%M UTC")


# ── Snapshot → rows ─────────────────────────────────────────────


def symbol_row(idx: int, sp: SymbolProgress) -> dict[str, Any]:
    """One display row for a symbol (interval columns in fixed order)."""
    row: dict[str, Any] = {
        "#": idx,
        "symbol": sp.symbol,
        "state": f"{STATE_ICONS.get(sp.state, '')} {sp.state.value}".strip(),
        "status": sp.status_text or "-",
        "progress": sp.percent,
    }
    for iv in INTERVAL_ORDER:
        row[iv] = interval_cell(sp.intervals.get(iv))
    return row


def snapshot_rows(snapshot: Snapshot | None) -> list[dict[str, Any]]:
    """Rows for every symbol, sorted by symbol, numbered from 1."""
    if snapshot is None:
        return []
    return [symbol_row(i, sp) for i, sp in enumerate(snapshot.sorted_symbols(), start=1)]


def snapshot_frame(snapshot: Snapshot | None) -> pd.DataFrame:
    """DataFrame view of :func:`snapshot_rows` (empty frame if no snapshot)."""
    rows = snapshot_rows(snapshot)
    if not rows:
        return pd.DataFrame(columns=["#", "symbol", "state", "status", "progress", *INTERVAL_ORDER])
    return pd.DataFrame(rows)


def summarize(snapshot: Snapshot | None) -> dict[str, Any]:
    """Counts per aggregate state plus the overall mean progress."""
    counts = {s.value: 0 for s in Status}
    if snapshot is None or not len(snapshot):
        return {"cycle": 0, "symbols": 0, "overall_pct": 0, **counts}
    pcts: list[int] = []
    for sp in snapshot.symbols.values():
        counts[sp.state.value] += 1
        pcts.append(sp.percent)
    return {
        "cycle": snapshot.cycle,
        "symbols": len(snapshot),
        "overall_pct": round_half_up(sum(pcts) / len(pcts)),
        **counts,
    }


def progress_line(sp: SymbolProgress, width: int = 20) -> str:
    """Single-line console rendering of one symbol."""
    return f"{sp.symbol:<12} {progress_bar(sp.percent, width)} {sp.percent:>3}%  {sp.state.value:<8} {sp.status_text}"
