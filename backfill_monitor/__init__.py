"""backfill_monitor – progress tracking for batches of OHLCV backfill jobs.

Seeds a per-symbol progress model from a batch submission, polls job
status in bulk (or per job when bulk retrieval is unavailable), merges
the reports into immutable snapshots and stops by itself once every
job has finished.

Designed to be driven either by its own timer thread
(``LifecycleController``) or tick-by-tick from a Streamlit rerun loop.
"""

from .common_types import (
    INTERVAL_ORDER,
    PercentMode,
    Snapshot,
    Status,
    SymbolProgress,
)
from .config import MonitorConfig
from .lifecycle import ControllerState, HeartbeatVisibility, LifecycleController

__all__: list[str] = [
    "ControllerState",
    "HeartbeatVisibility",
    "INTERVAL_ORDER",
    "LifecycleController",
    "MonitorConfig",
    "PercentMode",
    "Snapshot",
    "Status",
    "SymbolProgress",
]
